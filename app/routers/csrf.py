import secrets

from fastapi import APIRouter

from app.schemas.otp import CsrfTokenResponse

CSRF_TOKEN_BYTES = 32

router = APIRouter(tags=["csrf"])


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def csrf_token() -> CsrfTokenResponse:
    return CsrfTokenResponse(csrf_token=secrets.token_hex(CSRF_TOKEN_BYTES))
