"""
Errors and rejection reasons.

Two kinds of failure flow through a bot turn:

1. Exceptions (RailbotError subclasses) for fatal lookups. These abort
   the turn and reach the caller.
2. Rejections for plans that are not legal right now. These are values,
   not exceptions: a tagged RejectionReason plus the message shown in
   audits and logs. The strategy engine retries on them.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


class RailbotError(Exception):
    """Base class for railbot errors."""


class GameNotFound(RailbotError):
    def __init__(self, game_id: str):
        super().__init__(f"No game found with id {game_id}")
        self.game_id = game_id


class BotPlayerNotFound(RailbotError):
    def __init__(self, player_id: str, game_id: str):
        super().__init__(f"Bot player {player_id} not found in game {game_id}")
        self.player_id = player_id
        self.game_id = game_id


class AIPlayerNotFound(RailbotError):
    def __init__(self, player_id: str):
        super().__init__(f"AI player {player_id} not found")
        self.player_id = player_id


class AIBotsDisabled(RailbotError):
    """Raised when a bot turn is requested while ENABLE_AI_BOTS is off."""


class RejectionReason(Enum):
    """Closed set of reasons an option or plan action can be refused."""
    NOT_CONNECTED = "not_connected"
    AT_CAPACITY = "at_capacity"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_USED = "already_used"
    BUDGET_EXHAUSTED = "budget_exhausted"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN_ACTION = "unknown_action"
    NOT_CARRIED = "not_carried"
    CARD_NOT_FOUND = "card_not_found"
    NONE_AVAILABLE = "none_available"
    BUILD_AFTER_UPGRADE = "build_after_upgrade"
    UPGRADE_AFTER_BUILD = "upgrade_after_build"
    ALREADY_UPGRADED = "already_upgraded"
    CROSSGRADE_OVERSPEND = "crossgrade_overspend"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NO_PATH = "no_path"
    NO_SUCH_DEMAND = "no_such_demand"
    STORAGE_ERROR = "storage_error"


@dataclass(frozen=True)
class Rejection:
    """A rejection tag with its human-readable message."""
    reason: RejectionReason
    message: str

    def __str__(self) -> str:
        return self.message
