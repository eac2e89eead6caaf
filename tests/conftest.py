from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.database import create_db_engine, create_session_factory, init_db
from app.main import create_app
from app.services.otp import OtpManager
from app.services.users import UserStore

ADMIN_KEY = "test-admin-key"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "app_env": "test",
        "log_level": "INFO",
        "otp_length": 6,
        "otp_ttl_seconds": 600,
        "otp_max_attempts": 5,
        "otp_sweep_interval_seconds": 300,
        "otp_resend_cooldown_seconds": 60,
        "otp_resend_window_seconds": 60,
        "otp_debug": True,
        "otp_email_backend": "log",
        "otp_email_sender": "no-reply@bullionmarkets.com",
        "database_url": "sqlite://",
        "admin_api_key": ADMIN_KEY,
        "cors_origins": ("http://localhost:5173",),
        "seed_email": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> OtpManager:
    otp_manager = OtpManager(clock=clock)
    yield otp_manager
    otp_manager.stop_sweeper()


@pytest.fixture
def engine():
    db_engine = create_db_engine("sqlite://")
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(create_session_factory(engine))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings: Settings, engine, clock: FakeClock):
    return create_app(settings=settings, engine=engine, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
