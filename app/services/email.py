from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from app.config import Settings
from app.services.otp import OtpPurpose

LOGGER = logging.getLogger(__name__)

EMAIL_BACKENDS = {"log", "smtp"}


class EmailSendError(RuntimeError):
    pass


_PURPOSE_LABELS = {
    OtpPurpose.EMAIL_VERIFICATION: "verify your email address",
    OtpPurpose.PASSWORD_RESET: "reset your password",
    OtpPurpose.TWO_FACTOR: "complete your sign in",
}


def build_body(code: str, purpose: OtpPurpose, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your verification code is {code}.\n\n"
        f"Use it to {_PURPOSE_LABELS[purpose]}. "
        f"It expires in {minutes} minute(s).\n\n"
        "If you did not request this code, you can ignore this email."
    )


class EmailSender:
    """Delivers OTP codes. The ``log`` backend only records the dispatch."""

    def __init__(self, settings: Settings) -> None:
        if settings.otp_email_backend not in EMAIL_BACKENDS:
            raise ValueError(
                f"Unknown OTP email backend: {settings.otp_email_backend!r}"
            )
        self._settings = settings

    @property
    def backend(self) -> str:
        return self._settings.otp_email_backend

    def send_otp_email(self, to_email: str, code: str, purpose: OtpPurpose) -> None:
        if self.backend == "log":
            LOGGER.info(
                "OTP email queued to=%s purpose=%s (log backend, not delivered)",
                to_email,
                purpose.value,
            )
            return
        message = self._build_message(to_email, code, purpose)
        self._send_smtp(message, to_email)

    def _build_message(self, to_email: str, code: str, purpose: OtpPurpose) -> EmailMessage:
        sender = self._settings.otp_email_sender
        if not sender:
            raise EmailSendError("OTP email sender is not configured")
        message = EmailMessage()
        message["From"] = sender
        message["To"] = to_email
        message["Subject"] = self._settings.otp_email_subject
        message.set_content(build_body(code, purpose, self._settings.otp_ttl_seconds))
        return message

    def _send_smtp(self, message: EmailMessage, to_email: str) -> None:
        settings = self._settings
        if not settings.smtp_host:
            raise EmailSendError("SMTP host is not configured")
        context = ssl.create_default_context()
        try:
            if settings.smtp_port == 465:
                with smtplib.SMTP_SSL(
                    settings.smtp_host, settings.smtp_port, context=context, timeout=10
                ) as server:
                    self._deliver(server, message, to_email)
            else:
                with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
                    server.starttls(context=context)
                    self._deliver(server, message, to_email)
        except (smtplib.SMTPException, OSError) as exc:
            LOGGER.error("SMTP delivery failed to=%s: %s", to_email, exc)
            raise EmailSendError("Failed to send OTP email") from exc

    def _deliver(self, server: smtplib.SMTP, message: EmailMessage, to_email: str) -> None:
        if self._settings.smtp_user:
            server.login(self._settings.smtp_user, self._settings.smtp_password)
        server.send_message(
            message, from_addr=self._settings.otp_email_sender, to_addrs=[to_email]
        )
