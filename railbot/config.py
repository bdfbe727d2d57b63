"""
Runtime configuration, read from the environment at import time.

Variables:
    ENABLE_AI_BOTS      Master switch for automatic bot turns (default: true)
    RAILBOT_DB_PATH     SQLite database file (default: railbot.db)
    RAILBOT_LOG_LEVEL   Root log level for the railbot loggers (default: INFO)
    ALLOWED_ORIGINS     Comma separated CORS origins for the audit API
"""

import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


ENABLE_AI_BOTS = _env_flag("ENABLE_AI_BOTS", True)
RAILBOT_DB_PATH = os.getenv("RAILBOT_DB_PATH", "railbot.db")
RAILBOT_LOG_LEVEL = os.getenv("RAILBOT_LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")


def ai_bots_enabled() -> bool:
    """Re-read the gate so tests and long-running servers see changes."""
    return _env_flag("ENABLE_AI_BOTS", ENABLE_AI_BOTS)
