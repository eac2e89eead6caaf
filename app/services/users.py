from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from app.database import session_scope
from app.models.user import UserEntry


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_by_email(self, email: str) -> UserEntry | None:
        key = _normalize_email(email)
        with session_scope(self._session_factory) as session:
            result = session.execute(select(UserEntry).where(UserEntry.email == key))
            return result.scalar_one_or_none()

    def exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def ensure_user(
        self, email: str, password_hash: str | None = None
    ) -> tuple[UserEntry, bool]:
        key = _normalize_email(email)
        if "@" not in key:
            raise ValueError("Email address is invalid")
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if entry:
                return entry, True

            now = _utcnow()
            entry = UserEntry(
                email=key,
                password_hash=password_hash,
                email_verified=False,
                created_at=now,
                updated_at=now,
            )
            session.add(entry)
            session.flush()
            return entry, False

    def mark_email_verified(self, email: str) -> bool:
        key = _normalize_email(email)
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if entry is None:
                return False
            if entry.email_verified is not True:
                entry.email_verified = True
                entry.updated_at = _utcnow()
            return True

    def update_password(self, email: str, password_hash: str) -> bool:
        key = _normalize_email(email)
        with session_scope(self._session_factory) as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if entry is None:
                return False
            entry.password_hash = password_hash
            entry.updated_at = _utcnow()
            return True
