from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Replaced codes remembered per key so a stale code reads as gone.
MAX_SUPERSEDED_CODES = 5


class OtpPurpose(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    TWO_FACTOR = "2fa"


class OtpError(str, Enum):
    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"
    EXPIRED = "expired"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    INVALID_CODE = "invalid_code"


@dataclass
class OtpRecord:
    identity: str
    purpose: OtpPurpose
    code: str
    issued_at: datetime
    expires_at: datetime
    attempts: int = 0
    superseded: tuple[str, ...] = ()

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_in_seconds: int


@dataclass(frozen=True)
class OtpVerification:
    valid: bool
    error: Optional[OtpError] = None
    message: Optional[str] = None
    attempts_remaining: Optional[int] = None


@dataclass(frozen=True)
class OtpStats:
    total_outstanding: int
    count_by_purpose: dict[str, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpManager:
    """Holds at most one live code per (identity, purpose).

    Every operation runs under one lock, so ``verify``'s
    check-increment-compare-delete sequence is a single critical section
    even when handlers run on a threadpool. The background sweeper is
    owned by the instance and must be stopped with ``stop_sweeper``.
    """

    def __init__(
        self,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        code_length: int = 6,
        sweep_interval_seconds: float = 300,
        clock: Optional[Clock] = None,
    ) -> None:
        if code_length < 1:
            raise ValueError("code_length must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._ttl_seconds = ttl_seconds
        self._max_attempts = max_attempts
        self._code_length = code_length
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock or _utcnow
        self._records: dict[tuple[str, OtpPurpose], OtpRecord] = {}
        self._lock = threading.Lock()
        self._sweep_stop = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def generate(self, identity: str, purpose: OtpPurpose) -> IssuedOtp:
        with self._lock:
            self._purge_expired_locked()
            previous = self._records.get((identity, purpose))
            return self._issue_locked(identity, purpose, previous)

    def resend(self, identity: str, purpose: OtpPurpose) -> IssuedOtp:
        with self._lock:
            previous = self._records.pop((identity, purpose), None)
            self._purge_expired_locked()
            return self._issue_locked(identity, purpose, previous)

    def verify(self, identity: str, code: str, purpose: OtpPurpose) -> OtpVerification:
        key = (identity, purpose)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return self._not_found()

            if record.is_expired(self._clock()):
                del self._records[key]
                return OtpVerification(
                    valid=False,
                    error=OtpError.EXPIRED,
                    message="OTP has expired. Please request a new one.",
                )

            if record.attempts >= self._max_attempts:
                del self._records[key]
                LOGGER.info(
                    "OTP locked out identity=%s purpose=%s", identity, purpose.value
                )
                return OtpVerification(
                    valid=False,
                    error=OtpError.ATTEMPTS_EXCEEDED,
                    message=(
                        "Maximum verification attempts exceeded. "
                        "Please request a new OTP."
                    ),
                )

            # The attempt is consumed whether or not the code matches.
            record.attempts += 1

            if not secrets.compare_digest(record.code.encode(), code.encode()):
                if code in record.superseded:
                    return self._not_found()
                remaining = self._max_attempts - record.attempts
                return OtpVerification(
                    valid=False,
                    error=OtpError.INVALID_CODE,
                    message=f"Invalid OTP code. {remaining} attempts remaining.",
                    attempts_remaining=remaining,
                )

            del self._records[key]
            LOGGER.info("OTP verified identity=%s purpose=%s", identity, purpose.value)
            return OtpVerification(valid=True)

    def has_valid_otp(self, identity: str, purpose: OtpPurpose) -> bool:
        key = (identity, purpose)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return False
            if record.is_expired(self._clock()):
                del self._records[key]
                return False
            return True

    def get_remaining_time(self, identity: str, purpose: OtpPurpose) -> int:
        with self._lock:
            record = self._records.get((identity, purpose))
            if record is None:
                return 0
            remaining = (record.expires_at - self._clock()).total_seconds()
        return max(0, int(remaining))

    def delete(self, identity: str, purpose: OtpPurpose) -> None:
        with self._lock:
            self._records.pop((identity, purpose), None)

    def stats(self) -> OtpStats:
        with self._lock:
            counts = {purpose.value: 0 for purpose in OtpPurpose}
            for record in self._records.values():
                counts[record.purpose.value] += 1
            return OtpStats(total_outstanding=len(self._records), count_by_purpose=counts)

    def sweep_expired(self) -> int:
        with self._lock:
            return self._purge_expired_locked()

    def start_sweeper(self) -> None:
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            # A thread left over from a timed-out stop resumes its loop.
            self._sweep_stop.clear()
            return
        self._sweep_stop.clear()
        self._sweep_thread = threading.Thread(
            target=self._sweep_loop, name="otp-sweeper", daemon=True
        )
        self._sweep_thread.start()

    def stop_sweeper(self, timeout: Optional[float] = 5.0) -> None:
        thread = self._sweep_thread
        if thread is None:
            return
        self._sweep_stop.set()
        thread.join(timeout)
        if not thread.is_alive():
            self._sweep_thread = None
        else:
            LOGGER.warning("OTP sweeper did not stop within %ss", timeout)

    @property
    def sweeper_running(self) -> bool:
        return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def _sweep_loop(self) -> None:
        while not self._sweep_stop.wait(self._sweep_interval):
            try:
                self.sweep_expired()
            except Exception:
                LOGGER.exception("OTP sweep failed")

    def _issue_locked(
        self, identity: str, purpose: OtpPurpose, previous: Optional[OtpRecord]
    ) -> IssuedOtp:
        now = self._clock()
        key = (identity, purpose)
        code = self._generate_code()
        superseded: tuple[str, ...] = ()
        if previous is not None:
            retired = (*previous.superseded, previous.code)
            while code in retired:
                code = self._generate_code()
            LOGGER.debug(
                "Replacing outstanding OTP identity=%s purpose=%s",
                identity,
                purpose.value,
            )
            superseded = retired[-MAX_SUPERSEDED_CODES:]
        self._records[key] = OtpRecord(
            identity=identity,
            purpose=purpose,
            code=code,
            issued_at=now,
            expires_at=now + self._ttl,
            superseded=superseded,
        )
        LOGGER.info(
            "OTP issued identity=%s purpose=%s expires_in=%ss",
            identity,
            purpose.value,
            self._ttl_seconds,
        )
        return IssuedOtp(code=code, expires_in_seconds=self._ttl_seconds)

    @staticmethod
    def _not_found() -> OtpVerification:
        return OtpVerification(
            valid=False,
            error=OtpError.NOT_FOUND_OR_EXPIRED,
            message="OTP not found or expired. Please request a new one.",
        )

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [key for key, record in self._records.items() if record.is_expired(now)]
        for key in expired:
            del self._records[key]
        if expired:
            LOGGER.info("Cleaned up %d expired OTPs", len(expired))
        return len(expired)

    def _generate_code(self) -> str:
        low = 10 ** (self._code_length - 1)
        return str(low + secrets.randbelow(9 * low))
