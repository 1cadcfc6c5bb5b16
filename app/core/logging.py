"""
Logging setup for the API process.

Modules log through ``logging.getLogger(__name__)``; this only installs the
console handler and quiets third-party libraries.
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)-28s | %(message)s"
DATE_FORMAT = "%H:%M:%S"

NOISY_LOGGERS = (
    "sqlalchemy",
    "aiosqlite",
    "passlib",
    "uvicorn.access",
    "httpx",
    "httpcore",
)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
