"""
Pytest fixtures for railbot tests.
"""

import pytest
from types import MappingProxyType

from ..engine_core.map_grid import MapGrid
from ..engine_core.pathfinder import TrackPathfinder
from ..engine_core.snapshot import major_city_connections
from ..engine_core.state import GridPoint, TrackSegment, TrainType, WorldSnapshot, build_adjacency
from ..maps.demo import DEMO_CARDS, DEMO_LOADS, build_demo_grid, seed_demo_game
from ..storage.database import SqliteGameStore
from ..storage.deck import InMemoryDemandDeck
from ..storage.notifier import InMemoryNotifier


@pytest.fixture
def grid() -> MapGrid:
    """The demo board."""
    return build_demo_grid()


@pytest.fixture
def pathfinder(grid: MapGrid) -> TrackPathfinder:
    return TrackPathfinder(grid)


@pytest.fixture
def store(tmp_path) -> SqliteGameStore:
    """Empty SQLite store in a temp directory."""
    store = SqliteGameStore(tmp_path / "railbot.db")
    store.initialize()
    return store


@pytest.fixture
def deck() -> InMemoryDemandDeck:
    return InMemoryDemandDeck(DEMO_CARDS)


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def seeded_store(store: SqliteGameStore, deck: InMemoryDemandDeck) -> SqliteGameStore:
    """Game "g1" with a human and one hard backbone-builder bot ("bot-1")."""
    seed_demo_game(store, deck, "g1", bots=(("bot-1", "hard", "backbone_builder"),))
    return store


@pytest.fixture
def make_snapshot(grid: MapGrid):
    """Factory for WorldSnapshots built directly, without a store."""

    def _make(
        money=50,
        loads=(),
        train_type=TrainType.FREIGHT,
        hand=(),
        position=None,
        segments=(),
        other_segments=(),
        turn_build_cost=0,
        availability=None,
        competitors=(),
    ) -> WorldSnapshot:
        segments = tuple(segments)
        return WorldSnapshot(
            game_id="g1",
            bot_player_id="bot-1",
            turn_number=1,
            position=GridPoint(*position) if position else None,
            money=money,
            hand=tuple(hand),
            loads=tuple(loads),
            train_type=train_type,
            grid=grid,
            track_segments=segments,
            track_adjacency=MappingProxyType(build_adjacency(segments)),
            turn_build_cost=turn_build_cost,
            competitors=tuple(competitors),
            other_segments=tuple(other_segments),
            load_availability=MappingProxyType(dict(DEMO_LOADS if availability is None else availability)),
            major_city_connections=MappingProxyType(major_city_connections(grid, segments)),
            snapshot_hash="test",
        )

    return _make


def segment(a, b, cost=1) -> TrackSegment:
    """TrackSegment from two (row, col) tuples."""
    return TrackSegment(a[0], a[1], b[0], b[1], cost)
