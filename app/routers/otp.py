import logging
import math
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from app.config import Settings
from app.schemas.otp import (
    MessageResponse,
    OtpRequest,
    OtpResponse,
    OtpStatsResponse,
    OtpStatusResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PasswordResetRequest,
)
from app.services.email import EmailSendError, EmailSender
from app.services.otp import IssuedOtp, OtpManager, OtpPurpose
from app.services.passwords import hash_password
from app.services.users import UserStore

LOGGER = logging.getLogger(__name__)

DEV_NOTE = "OTP code included for development only"
RESET_REQUEST_ACCEPTED = "If an account exists with this email, an OTP has been sent."

router = APIRouter(prefix="/otp", tags=["otp"])


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_otp_manager(request: Request) -> OtpManager:
    return request.app.state.otp_manager


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def require_admin_key(
    x_admin_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not secrets.compare_digest(
        x_admin_key.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _deliver(
    sender: EmailSender, email: str, issued: IssuedOtp, purpose: OtpPurpose
) -> None:
    try:
        sender.send_otp_email(email, issued.code, purpose)
    except EmailSendError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc


def _require_code_length(code: str, settings: Settings) -> None:
    if len(code) != settings.otp_length:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"OTP must be {settings.otp_length} characters",
        )


def _issued_response(message: str, issued: IssuedOtp, settings: Settings) -> OtpResponse:
    if settings.otp_echo_enabled:
        return OtpResponse(
            message=message,
            expires_in_seconds=issued.expires_in_seconds,
            otp=issued.code,
            dev_note=DEV_NOTE,
        )
    return OtpResponse(message=message, expires_in_seconds=issued.expires_in_seconds)


@router.post("/send", response_model=OtpResponse, response_model_exclude_none=True)
def send_otp(
    payload: OtpRequest,
    settings: Settings = Depends(get_settings),
    otp_manager: OtpManager = Depends(get_otp_manager),
    user_store: UserStore = Depends(get_user_store),
    email_sender: EmailSender = Depends(get_email_sender),
) -> OtpResponse:
    email = _normalize_email(payload.email)
    # Password reset never reveals whether the account exists.
    if payload.type is OtpPurpose.PASSWORD_RESET and not user_store.exists(email):
        return OtpResponse(message=RESET_REQUEST_ACCEPTED)

    issued = otp_manager.generate(email, payload.type)
    _deliver(email_sender, email, issued, payload.type)
    return _issued_response("OTP sent successfully", issued, settings)


@router.post("/verify", response_model=OtpVerifyResponse)
def verify_otp(
    payload: OtpVerifyRequest,
    settings: Settings = Depends(get_settings),
    otp_manager: OtpManager = Depends(get_otp_manager),
    user_store: UserStore = Depends(get_user_store),
) -> OtpVerifyResponse:
    email = _normalize_email(payload.email)
    _require_code_length(payload.code, settings)
    result = otp_manager.verify(email, payload.code, payload.type)
    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.message,
        )
    if payload.type is OtpPurpose.EMAIL_VERIFICATION:
        user_store.mark_email_verified(email)
    return OtpVerifyResponse(message="OTP verified successfully", verified=True)


@router.post("/resend", response_model=OtpResponse, response_model_exclude_none=True)
def resend_otp(
    payload: OtpRequest,
    settings: Settings = Depends(get_settings),
    otp_manager: OtpManager = Depends(get_otp_manager),
    email_sender: EmailSender = Depends(get_email_sender),
) -> OtpResponse:
    email = _normalize_email(payload.email)
    if otp_manager.has_valid_otp(email, payload.type):
        remaining = otp_manager.get_remaining_time(email, payload.type)
        threshold = settings.otp_resend_threshold_seconds
        if remaining > threshold:
            wait_minutes = math.ceil((remaining - threshold) / 60)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Please wait {wait_minutes} minute(s) before requesting a new OTP",
            )

    issued = otp_manager.resend(email, payload.type)
    _deliver(email_sender, email, issued, payload.type)
    return _issued_response("OTP resent successfully", issued, settings)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: PasswordResetRequest,
    settings: Settings = Depends(get_settings),
    otp_manager: OtpManager = Depends(get_otp_manager),
    user_store: UserStore = Depends(get_user_store),
) -> MessageResponse:
    email = _normalize_email(payload.email)
    _require_code_length(payload.code, settings)
    result = otp_manager.verify(email, payload.code, OtpPurpose.PASSWORD_RESET)
    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.message,
        )
    if not user_store.update_password(email, hash_password(payload.new_password)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    LOGGER.info("Password reset completed for %s", email)
    return MessageResponse(message="Password reset successfully")


@router.get("/status/{email}", response_model=OtpStatusResponse)
def otp_status(
    email: str,
    type: OtpPurpose = OtpPurpose.EMAIL_VERIFICATION,
    settings: Settings = Depends(get_settings),
    otp_manager: OtpManager = Depends(get_otp_manager),
) -> OtpStatusResponse:
    email = _normalize_email(email)
    has_valid = otp_manager.has_valid_otp(email, type)
    remaining = otp_manager.get_remaining_time(email, type)
    return OtpStatusResponse(
        has_valid_otp=has_valid,
        remaining_time=remaining,
        can_resend=remaining < settings.otp_resend_window_seconds,
    )


@router.get(
    "/stats",
    response_model=OtpStatsResponse,
    dependencies=[Depends(require_admin_key)],
)
def otp_stats(otp_manager: OtpManager = Depends(get_otp_manager)) -> OtpStatsResponse:
    stats = otp_manager.stats()
    return OtpStatsResponse(
        total_outstanding=stats.total_outstanding,
        count_by_purpose=stats.count_by_purpose,
    )
