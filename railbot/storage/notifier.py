"""
Notifiers for bot events.

- InMemoryNotifier keeps every event in a list (tests, CLI output)
- LoggingNotifier writes each event to the railbot log
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from .interfaces import Notifier
from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmittedEvent:
    game_id: str
    event: str
    payload: dict[str, Any]


@dataclass
class InMemoryNotifier(Notifier):
    events: list[EmittedEvent] = field(default_factory=list)

    async def emit(self, game_id: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(EmittedEvent(game_id, event, dict(payload)))

    def names(self) -> list[str]:
        return [e.event for e in self.events]

    def of(self, event: str) -> list[EmittedEvent]:
        return [e for e in self.events if e.event == event]


class LoggingNotifier(Notifier):
    async def emit(self, game_id: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("[game:%s] %s %s", game_id[:8], event, payload)
