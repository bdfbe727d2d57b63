"""
Logging setup for railbot.

All modules log through `get_logger(__name__)`. Per-turn code wraps its
logger with `bot_logger(...)` so every line carries the game and bot it
belongs to:

    [BOT:INFO ] [strategy_engine] [game:3f2a9c1d] [bot:77b0e412] Turn 5 starting
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

from .config import RAILBOT_LOG_LEVEL

ROOT_LOGGER_NAME = "railbot"


class BotFormatter(logging.Formatter):
    """Formats records as `[BOT:LEVEL] [module] message`."""

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith(ROOT_LOGGER_NAME + "."):
            name = name.rsplit(".", 1)[-1]
        line = f"[BOT:{record.levelname:5}] [{name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class BotLogAdapter(logging.LoggerAdapter):
    """
    Logger bound to one game and one bot player.

    Ids are shortened to eight characters, matching what the UI shows.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        parts = []
        if extra.get("game_id"):
            parts.append(f"[game:{str(extra['game_id'])[:8]}]")
        if extra.get("player_id"):
            parts.append(f"[bot:{str(extra['player_id'])[:8]}]")
        prefix = " ".join(parts)
        return (f"{prefix} {msg}" if prefix else msg), kwargs


def setup_logging(level: str | int | None = None) -> None:
    """
    Configure the `railbot` logger hierarchy to write to stderr.

    Safe to call more than once; existing handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    level = level or RAILBOT_LOG_LEVEL
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(BotFormatter())
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the `railbot` namespace."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def bot_logger(name: str, game_id: str, player_id: str) -> BotLogAdapter:
    """Get a logger that prefixes every message with game and bot ids."""
    return BotLogAdapter(get_logger(name), {"game_id": game_id, "player_id": player_id})
