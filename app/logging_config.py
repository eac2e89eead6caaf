"""
Logging configuration for the OTP service.

Service modules log through ``logging.getLogger(__name__)``; this module
attaches a single console handler to the ``app`` logger tree.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SERVICE_LOGGER = "app"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the service logger. Safe to call more than once.
    """
    resolved = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(SERVICE_LOGGER)
    logger.setLevel(resolved)
    # Avoid duplicate handlers when several apps are built in one process
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(resolved)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(console_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return logger
