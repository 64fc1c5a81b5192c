# marketlink/core/logging_config.py
"""
Centralized logging configuration for the application.

Keeps marketlink's own loggers at the configured level and quietens the
HTTP, database and scheduler libraries that log every request.
"""

import logging
import os
from typing import Optional


NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "sqlalchemy",
    "sqlalchemy.engine",
    "asyncpg",
    "aiosqlite",
    "apscheduler",
    "redis",
)


def configure_logging(level: Optional[str] = None):
    """
    Configure logging for the application.

    The level comes from the argument, then LOG_LEVEL, then INFO.
    """
    log_level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=resolved,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("marketlink").setLevel(resolved)
    logging.getLogger("__main__").setLevel(resolved)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at level: {log_level}")
