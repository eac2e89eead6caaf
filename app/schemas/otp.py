from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from app.services.otp import OtpPurpose

MAX_CODE_LENGTH = 12
MIN_PASSWORD_LENGTH = 8


class OtpRequest(BaseModel):
    email: EmailStr
    type: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION


class OtpResponse(BaseModel):
    message: str
    expires_in_seconds: Optional[int] = None
    otp: Optional[str] = None
    dev_note: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=1, max_length=MAX_CODE_LENGTH)
    type: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION


class OtpVerifyResponse(BaseModel):
    message: str
    verified: bool


class PasswordResetRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=1, max_length=MAX_CODE_LENGTH)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=72)


class MessageResponse(BaseModel):
    message: str


class OtpStatusResponse(BaseModel):
    has_valid_otp: bool
    remaining_time: int
    can_resend: bool


class OtpStatsResponse(BaseModel):
    total_outstanding: int
    count_by_purpose: dict[str, int]


class CsrfTokenResponse(BaseModel):
    csrf_token: str
