"""
Storage - Persistence and side channels used by the bots.
"""

from .interfaces import DemandDeck, GameStore, Notifier, TrackStateService, UnitOfWork
from .database import SqliteGameStore
from .deck import InMemoryDemandDeck
from .notifier import InMemoryNotifier, LoggingNotifier

__all__ = [
    "DemandDeck",
    "GameStore",
    "Notifier",
    "TrackStateService",
    "UnitOfWork",
    "SqliteGameStore",
    "InMemoryDemandDeck",
    "InMemoryNotifier",
    "LoggingNotifier",
]
