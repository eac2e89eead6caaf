import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str = os.getenv("APP_ENV", "production").strip().lower()
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "600"))
    otp_max_attempts: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    otp_sweep_interval_seconds: int = int(
        os.getenv("OTP_SWEEP_INTERVAL_SECONDS", "300")
    )
    otp_resend_cooldown_seconds: int = int(
        os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60")
    )
    otp_resend_window_seconds: int = int(os.getenv("OTP_RESEND_WINDOW_SECONDS", "60"))
    otp_debug: bool = _env_bool("OTP_DEBUG", False)
    otp_email_backend: str = os.getenv("OTP_EMAIL_BACKEND", "log").strip().lower()
    otp_email_sender: str = (
        os.getenv("OTP_EMAIL_SENDER") or os.getenv("FROM_EMAIL", "")
    )
    otp_email_subject: str = os.getenv("OTP_EMAIL_SUBJECT", "Your verification code")
    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_password: str = os.getenv("SMTP_PASS", "")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./bullion.db")
    admin_api_key: str = os.getenv("ADMIN_API_KEY", "")
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _env_list("CORS_ORIGINS", "http://localhost:5173")
    )
    seed_email: str = os.getenv("SEED_EMAIL", "").strip().lower()

    @property
    def otp_resend_threshold_seconds(self) -> int:
        # Resend is refused while more than this many seconds remain.
        return max(0, self.otp_ttl_seconds - self.otp_resend_cooldown_seconds)

    @property
    def otp_echo_enabled(self) -> bool:
        return self.otp_debug and self.app_env != "production"


settings = Settings()
