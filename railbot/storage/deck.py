"""
In-memory demand-card deck.

Cards move between three places:

    draw pile --draw_card--> dealt --discard_card--> discard pile

When the draw pile runs out, draw_card returns None and reshuffle puts
the discard pile back in. Every move has an inverse (the return_*
methods and undo_reshuffle) so the turn executor can undo a delivery
that rolled back.
"""

from __future__ import annotations
import json
import random
from pathlib import Path
from typing import Any, Iterable, Mapping

from .interfaces import DemandDeck
from ..engine_core.state import Demand, DemandCard
from ..logging_config import get_logger

logger = get_logger(__name__)


def card_from_record(record: Mapping[str, Any]) -> DemandCard:
    """{"id": 12, "demands": [{"city", "resource", "payment"}, ...]} -> DemandCard"""
    return DemandCard(
        card_id=int(record["id"]),
        demands=tuple(
            Demand(city=d["city"], resource=d["resource"], payment=int(d["payment"]))
            for d in record.get("demands", [])
        ),
    )


class InMemoryDemandDeck(DemandDeck):
    """
    Demand deck held in process memory.

    Usage:
        deck = InMemoryDemandDeck(cards, seed=7)
        hand = [deck.draw_card().card_id for _ in range(3)]
    """

    def __init__(self, cards: Iterable[DemandCard], seed: int | None = None):
        self._cards: dict[int, DemandCard] = {card.card_id: card for card in cards}
        self._rng = random.Random(seed)
        self._draw_pile: list[int] = list(self._cards)
        if seed is not None:
            self._rng.shuffle(self._draw_pile)
        self._dealt: set[int] = set()
        self._discard_pile: list[int] = []

    @classmethod
    def load(cls, path: str | Path, seed: int | None = None) -> InMemoryDemandDeck:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
        return cls((card_from_record(r) for r in records), seed=seed)

    # The draw pile's top is the end of the list
    @property
    def draw_pile(self) -> tuple[int, ...]:
        return tuple(reversed(self._draw_pile))

    @property
    def discard_pile(self) -> tuple[int, ...]:
        return tuple(self._discard_pile)

    @property
    def dealt(self) -> frozenset[int]:
        return frozenset(self._dealt)

    def mark_dealt(self, card_ids: Iterable[int]) -> None:
        """Take cards already held in hands out of the draw pile."""
        for card_id in card_ids:
            if card_id in self._draw_pile:
                self._draw_pile.remove(card_id)
                self._dealt.add(card_id)

    def get_card(self, card_id: int) -> DemandCard | None:
        return self._cards.get(card_id)

    def draw_card(self) -> DemandCard | None:
        if not self._draw_pile:
            return None
        card_id = self._draw_pile.pop()
        self._dealt.add(card_id)
        return self._cards[card_id]

    def reshuffle(self) -> tuple[int, ...]:
        moved = tuple(self._discard_pile)
        if moved:
            logger.info("Reshuffling %d discarded cards into the draw pile", len(moved))
            self._draw_pile.extend(moved)
            self._discard_pile = []
            self._rng.shuffle(self._draw_pile)
        return moved

    def undo_reshuffle(self, card_ids: Iterable[int]) -> None:
        moved = list(card_ids)
        missing = [c for c in moved if c not in self._draw_pile]
        if missing:
            raise ValueError(f"Cards {missing} are not in the draw pile")
        self._draw_pile = [c for c in self._draw_pile if c not in moved]
        self._discard_pile = moved + self._discard_pile

    def discard_card(self, card_id: int) -> None:
        if card_id not in self._dealt:
            raise ValueError(f"Card {card_id} is not dealt")
        self._dealt.discard(card_id)
        self._discard_pile.append(card_id)

    def return_dealt_card_to_top(self, card_id: int) -> None:
        if card_id not in self._dealt:
            raise ValueError(f"Card {card_id} is not dealt")
        self._dealt.discard(card_id)
        self._draw_pile.append(card_id)

    def return_discarded_card_to_dealt(self, card_id: int) -> None:
        if card_id not in self._discard_pile:
            raise ValueError(f"Card {card_id} is not in the discard pile")
        self._discard_pile.remove(card_id)
        self._dealt.add(card_id)
