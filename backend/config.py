"""
Runtime configuration for the task placement engine.

All settings come from environment variables with safe defaults for local
development. Values are read once at import time.
"""

import logging
import os

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={value!r}, falling back to {default}")
        return default


def is_production_like() -> bool:
    """
    Check if the current environment is production-like (production or staging).

    Returns:
        True if ENVIRONMENT is "production" or "staging", False otherwise
    """
    env = os.environ.get("ENVIRONMENT", "development").lower()
    return env in ("production", "staging")


# Database configuration
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./tasks.db")
SQL_ECHO = _env_bool("SQL_ECHO")

if DATABASE_URL.startswith("sqlite") and is_production_like():
    logger.warning(
        "⚠️  DATABASE_URL points at SQLite in a production-like environment. "
        "SQLite has no row-level locking; concurrent reorders may collide."
    )

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Engine limits
MAX_BULK_TASKS = _env_int("MAX_BULK_TASKS", 500)
HIERARCHY_MAX_DEPTH = _env_int("HIERARCHY_MAX_DEPTH", 100)


def configure_logging(level: str = None) -> None:
    """Configure root logging for processes embedding the engine."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
