"""
Collaborator interfaces - what the bot core needs from the outside world.

The core only talks to storage, the demand deck, and the notification
channel through these abstract classes. Concrete implementations live
next to this module (sqlite store, in-memory deck, in-memory notifier);
tests substitute their own.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from ..engine_core.state import DemandCard, TrackState


class TrackStateService(ABC):
    """Authoritative source for who owns which track."""

    @abstractmethod
    async def get_track_state(self, game_id: str, player_id: str) -> TrackState | None:
        ...

    @abstractmethod
    async def get_all_tracks(self, game_id: str) -> dict[str, TrackState]:
        """Track of every player in the game, keyed by player id."""
        ...

    @abstractmethod
    async def save_track_state(self, game_id: str, player_id: str, state: TrackState) -> None:
        ...


class UnitOfWork(ABC):
    """
    One all-or-nothing database transaction.

    Reads inside the unit see its own uncommitted writes. Exactly one of
    commit() or rollback() ends the unit.
    """

    @abstractmethod
    async def get_player(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def update_player(self, game_id: str, player_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    async def get_track_state(self, game_id: str, player_id: str) -> TrackState | None:
        ...

    @abstractmethod
    async def save_track_state(self, game_id: str, player_id: str, state: TrackState) -> None:
        ...

    @abstractmethod
    async def adjust_load_availability(self, game_id: str, load_type: str, delta: int) -> None:
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class GameStore(TrackStateService):
    """Relational store for games, players, track, load chips, and audits."""

    @abstractmethod
    async def fetch_game_rows(self, game_id: str) -> list[dict[str, Any]]:
        """
        Every player of the game joined with the game row and the
        player's track, in one query. Empty when the game does not exist.
        """
        ...

    @abstractmethod
    async def load_availability(self, game_id: str) -> dict[str, int]:
        ...

    @abstractmethod
    async def get_ai_player(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        """Bot configuration row (is_bot, ai_difficulty, ai_archetype) or None."""
        ...

    @abstractmethod
    async def begin(self) -> UnitOfWork:
        ...

    @abstractmethod
    async def set_position(self, game_id: str, player_id: str, row: int, col: int) -> None:
        ...

    @abstractmethod
    async def end_turn(self, game_id: str, player_id: str) -> None:
        """Close a player's turn: the per-turn track spend goes back to 0."""
        ...

    @abstractmethod
    async def save_audit(self, audit: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def latest_audit(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        ...


class DemandDeck(ABC):
    """
    Shared demand-card deck.

    Deck changes are not part of any database transaction, so each move
    has an inverse used when a plan rolls back.
    """

    @abstractmethod
    def get_card(self, card_id: int) -> DemandCard | None:
        ...

    @abstractmethod
    def draw_card(self) -> DemandCard | None:
        """Deal the top card, or None when the draw pile is empty."""
        ...

    @abstractmethod
    def discard_card(self, card_id: int) -> None:
        ...

    @abstractmethod
    def return_dealt_card_to_top(self, card_id: int) -> None:
        """Undo draw_card: put a dealt card back on top of the draw pile."""
        ...

    @abstractmethod
    def return_discarded_card_to_dealt(self, card_id: int) -> None:
        """Undo discard_card: take the card back out of the discard pile."""
        ...

    @abstractmethod
    def reshuffle(self) -> tuple[int, ...]:
        """Shuffle the discard pile into the draw pile; returns the cards moved."""
        ...

    @abstractmethod
    def undo_reshuffle(self, card_ids: Iterable[int]) -> None:
        """Undo reshuffle: put the moved cards back on the discard pile."""
        ...


class Notifier(ABC):
    """Fire-and-forget game event channel."""

    @abstractmethod
    async def emit(self, game_id: str, event: str, payload: dict[str, Any]) -> None:
        ...
