"""
Logging configuration for the Safeguard moderation service.

Everything logs under the "safeguard" namespace to stdout. Compliance
risks are logged at CRITICAL, so alerting can key on level alone.
"""
import logging
import sys
from typing import Iterable, Optional

ROOT_LOGGER = "safeguard"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-request client chatter; detector and collaborator calls are logged by us
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "celery.redirected")


def setup_logging(level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> logging.Logger:
    """Setup application logging."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    app_logger = logging.getLogger(ROOT_LOGGER)
    app_logger.setLevel(numeric_level)
    return app_logger


# Global logger instance
logger = setup_logging()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the safeguard namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logger
