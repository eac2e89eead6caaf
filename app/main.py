import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from app.config import Settings, settings as default_settings
from app.database import create_db_engine, create_session_factory, init_db
from app.logging_config import setup_logging
from app.routers import csrf, health, otp
from app.services.email import EmailSender
from app.services.otp import Clock, OtpManager
from app.services.users import UserStore

LOGGER = logging.getLogger(__name__)


def create_app(
    settings: Settings = default_settings,
    engine: Engine | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    setup_logging(settings.log_level)

    if engine is None:
        engine = create_db_engine(settings.database_url)
    session_factory = create_session_factory(engine)

    app = FastAPI(title="Bullion OTP Service")
    app.state.settings = settings
    app.state.otp_manager = OtpManager(
        ttl_seconds=settings.otp_ttl_seconds,
        max_attempts=settings.otp_max_attempts,
        code_length=settings.otp_length,
        sweep_interval_seconds=settings.otp_sweep_interval_seconds,
        clock=clock,
    )
    app.state.user_store = UserStore(session_factory)
    app.state.email_sender = EmailSender(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(csrf.router, prefix="/api")
    app.include_router(otp.router, prefix="/api")

    @app.on_event("startup")
    def startup() -> None:
        init_db(engine)
        if settings.seed_email:
            try:
                app.state.user_store.ensure_user(settings.seed_email)
            except ValueError:
                LOGGER.warning("Ignoring invalid SEED_EMAIL %r", settings.seed_email)
        if settings.otp_debug and settings.app_env == "production":
            LOGGER.warning("OTP_DEBUG is ignored in production; codes are not echoed")
        app.state.otp_manager.start_sweeper()

    @app.on_event("shutdown")
    def shutdown() -> None:
        app.state.otp_manager.stop_sweeper()

    @app.get("/")
    def root():
        return {"status": "Backend running"}

    return app


app = create_app()
