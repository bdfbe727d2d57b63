"""
Snapshot Builder - Captures the world as one bot sees it at turn start.

One read of the store produces every row the turn needs. Rows are
normalized (missing money becomes 50, missing hand and loads become
empty lists, JSON strings are decoded) before anything else looks at
them, so the content hash is stable across storage backends.
"""

from __future__ import annotations
import hashlib
import json
from types import MappingProxyType
from typing import Any, Iterable, TYPE_CHECKING

from .map_grid import MapGrid
from .state import (
    DEFAULT_MONEY,
    CompetitorSummary,
    DemandCard,
    GridPoint,
    TrackSegment,
    TrainType,
    WorldSnapshot,
    build_adjacency,
    parse_train_type,
)
from ..errors import BotPlayerNotFound, GameNotFound
from ..logging_config import get_logger

if TYPE_CHECKING:
    from ..storage.interfaces import DemandDeck, GameStore

logger = get_logger(__name__)


# ============================================================================
# Row normalization
# ============================================================================

def _json_list(value: Any) -> list[Any]:
    """Accept a list, a JSON-encoded list, or nothing."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        decoded = json.loads(value)
        return list(decoded) if decoded else []
    return list(value)


def _int_or(value: Any, default: int) -> int:
    return default if value is None else int(value)


def normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    """Player row with defaults applied and structured columns decoded."""
    return {
        "player_id": str(row["player_id"]),
        "name": row.get("name") or "",
        "money": _int_or(row.get("money"), DEFAULT_MONEY),
        "hand": [int(card_id) for card_id in _json_list(row.get("hand"))],
        "loads": [str(load) for load in _json_list(row.get("loads"))],
        "train_type": parse_train_type(row.get("train_type")).value,
        "position_row": row.get("position_row"),
        "position_col": row.get("position_col"),
        "turn_number": _int_or(row.get("turn_number"), 1),
        "segments": _json_list(row.get("segments")),
        "turn_build_cost": _int_or(row.get("turn_build_cost"), 0),
        "is_bot": bool(row.get("is_bot", False)),
    }


def snapshot_hash(rows: list[dict[str, Any]], availability: dict[str, int]) -> str:
    """First 16 hex chars of sha256 over the normalized rows."""
    payload = json.dumps({"rows": rows, "availability": availability}, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def major_city_connections(grid: MapGrid, segments: Iterable[TrackSegment]) -> dict[str, bool]:
    """City name -> whether any milepost of the major city touches the track."""
    points: set[str] = set()
    for seg in segments:
        points.add(seg.from_key)
        points.add(seg.to_key)
    return {
        city.name: any(p in points for p in city.points)
        for city in grid.major_cities
    }


def _position(row: dict[str, Any]) -> GridPoint | None:
    if row["position_row"] is None or row["position_col"] is None:
        return None
    return GridPoint(int(row["position_row"]), int(row["position_col"]))


# ============================================================================
# Builder
# ============================================================================

class SnapshotBuilder:
    """
    Builds WorldSnapshots from the game store.

    Usage:
        builder = SnapshotBuilder(store, deck, grid)
        snapshot = await builder.capture(game_id, bot_player_id)
    """

    def __init__(self, store: GameStore, deck: DemandDeck, grid: MapGrid):
        self.store = store
        self.deck = deck
        self.grid = grid

    async def capture(self, game_id: str, bot_player_id: str) -> WorldSnapshot:
        """
        Read every player of the game and build the bot's snapshot.

        Raises GameNotFound when the game has no player rows, and
        BotPlayerNotFound when the bot is not among them.
        """
        raw_rows = await self.store.fetch_game_rows(game_id)
        if not raw_rows:
            raise GameNotFound(game_id)

        rows = sorted((normalize_row(r) for r in raw_rows), key=lambda r: r["player_id"])
        bot_row = next((r for r in rows if r["player_id"] == bot_player_id), None)
        if bot_row is None:
            raise BotPlayerNotFound(bot_player_id, game_id)

        availability = dict(sorted((await self.store.load_availability(game_id)).items()))

        own_segments = tuple(TrackSegment.from_dict(s) for s in bot_row["segments"])
        other_segments: list[TrackSegment] = []
        competitors: list[CompetitorSummary] = []
        for row in rows:
            if row["player_id"] == bot_player_id:
                continue
            segments = [TrackSegment.from_dict(s) for s in row["segments"]]
            other_segments.extend(segments)
            connections = major_city_connections(self.grid, segments)
            competitors.append(CompetitorSummary(
                player_id=row["player_id"],
                name=row["name"],
                position=_position(row),
                loads=tuple(row["loads"]),
                money=row["money"],
                train_type=TrainType(row["train_type"]),
                track_segment_count=len(segments),
                major_cities_connected=sum(connections.values()),
            ))

        snapshot = WorldSnapshot(
            game_id=game_id,
            bot_player_id=bot_player_id,
            turn_number=bot_row["turn_number"],
            position=_position(bot_row),
            money=bot_row["money"],
            hand=tuple(self._resolve_hand(bot_row["hand"])),
            loads=tuple(bot_row["loads"]),
            train_type=TrainType(bot_row["train_type"]),
            grid=self.grid,
            track_segments=own_segments,
            track_adjacency=MappingProxyType(build_adjacency(own_segments)),
            turn_build_cost=bot_row["turn_build_cost"],
            competitors=tuple(competitors),
            other_segments=tuple(other_segments),
            load_availability=MappingProxyType(availability),
            major_city_connections=MappingProxyType(major_city_connections(self.grid, own_segments)),
            snapshot_hash=snapshot_hash(rows, availability),
        )

        logger.debug(
            "Captured snapshot %s for %s in %s: money=%s loads=%s segments=%s",
            snapshot.snapshot_hash, bot_player_id, game_id,
            snapshot.money, list(snapshot.loads), len(own_segments),
        )
        return snapshot

    def _resolve_hand(self, card_ids: list[int]) -> list[DemandCard]:
        cards = []
        for card_id in card_ids:
            card = self.deck.get_card(card_id)
            if card is None:
                logger.debug("Demand card %s not found in deck, skipping", card_id)
                continue
            cards.append(card)
        return cards
