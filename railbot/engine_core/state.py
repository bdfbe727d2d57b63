"""
Game State - Value types shared by every stage of a bot turn.

Design principles:
- Frozen: a WorldSnapshot and everything inside it is immutable
- Serializable: segments and cards round-trip through plain dicts
  (that is how the store keeps them)
- Grid points are addressed by "row,col" string keys
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, TYPE_CHECKING

if TYPE_CHECKING:
    from .map_grid import MapGrid


# ============================================================================
# Rules constants
# ============================================================================

DEFAULT_MONEY = 50
MAX_BUILD_PER_TURN = 20
CROSSGRADE_TRACK_LIMIT = 15
VICTORY_MAJOR_CITIES = 7
VICTORY_CASH = 250
UPGRADE_COST = 20
CROSSGRADE_COST = 5


class TrainType(str, Enum):
    """Train classes, stored by value."""
    FREIGHT = "Freight"
    FAST_FREIGHT = "FastFreight"
    HEAVY_FREIGHT = "HeavyFreight"
    SUPERFREIGHT = "Superfreight"


@dataclass(frozen=True)
class TrainSpec:
    speed: int
    capacity: int


TRAIN_PROPERTIES: Mapping[TrainType, TrainSpec] = MappingProxyType({
    TrainType.FREIGHT: TrainSpec(speed=9, capacity=2),
    TrainType.FAST_FREIGHT: TrainSpec(speed=12, capacity=2),
    TrainType.HEAVY_FREIGHT: TrainSpec(speed=9, capacity=3),
    TrainType.SUPERFREIGHT: TrainSpec(speed=12, capacity=3),
})


@dataclass(frozen=True)
class TrainTransition:
    """One legal change of train class."""
    target: TrainType
    kind: str  # "upgrade" or "crossgrade"
    cost: int


TRAIN_TRANSITIONS: Mapping[TrainType, tuple[TrainTransition, ...]] = MappingProxyType({
    TrainType.FREIGHT: (
        TrainTransition(TrainType.FAST_FREIGHT, "upgrade", UPGRADE_COST),
        TrainTransition(TrainType.HEAVY_FREIGHT, "upgrade", UPGRADE_COST),
    ),
    TrainType.FAST_FREIGHT: (
        TrainTransition(TrainType.SUPERFREIGHT, "upgrade", UPGRADE_COST),
        TrainTransition(TrainType.HEAVY_FREIGHT, "crossgrade", CROSSGRADE_COST),
    ),
    TrainType.HEAVY_FREIGHT: (
        TrainTransition(TrainType.SUPERFREIGHT, "upgrade", UPGRADE_COST),
        TrainTransition(TrainType.FAST_FREIGHT, "crossgrade", CROSSGRADE_COST),
    ),
    TrainType.SUPERFREIGHT: (),
})


def find_transition(current: TrainType, target: TrainType, kind: str) -> TrainTransition | None:
    """Return the transition current -> target of the given kind, if legal."""
    for transition in TRAIN_TRANSITIONS[current]:
        if transition.target == target and transition.kind == kind:
            return transition
    return None


def parse_train_type(value: Any) -> TrainType:
    """Accept a TrainType or its stored string; unknown values become Freight."""
    if isinstance(value, TrainType):
        return value
    try:
        return TrainType(value)
    except ValueError:
        return TrainType.FREIGHT


# ============================================================================
# Grid and track
# ============================================================================

def point_key(row: int, col: int) -> str:
    """Identifier of a grid point."""
    return f"{row},{col}"


def parse_point_key(key: str) -> tuple[int, int]:
    row, col = key.split(",")
    return int(row), int(col)


def edge_key(a: str, b: str) -> tuple[str, str]:
    """Direction-independent identifier of an edge between two points."""
    return (a, b) if a <= b else (b, a)


@dataclass(frozen=True)
class GridPoint:
    row: int
    col: int

    @property
    def key(self) -> str:
        return point_key(self.row, self.col)


@dataclass(frozen=True)
class TrackSegment:
    """A built (or planned) piece of track between two adjacent mileposts."""
    from_row: int
    from_col: int
    to_row: int
    to_col: int
    cost: int = 0

    @property
    def from_key(self) -> str:
        return point_key(self.from_row, self.from_col)

    @property
    def to_key(self) -> str:
        return point_key(self.to_row, self.to_col)

    @property
    def edge(self) -> tuple[str, str]:
        return edge_key(self.from_key, self.to_key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": {"row": self.from_row, "col": self.from_col},
            "to": {"row": self.to_row, "col": self.to_col},
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TrackSegment:
        return cls(
            from_row=int(data["from"]["row"]),
            from_col=int(data["from"]["col"]),
            to_row=int(data["to"]["row"]),
            to_col=int(data["to"]["col"]),
            cost=int(data.get("cost", 0)),
        )


def segment_edges(segments: Any) -> set[tuple[str, str]]:
    """Edge keys of an iterable of segments."""
    return {seg.edge for seg in segments}


def build_adjacency(segments: Any) -> dict[str, frozenset[str]]:
    """Adjacency map of point key -> neighbouring point keys over the given track."""
    adjacency: dict[str, set[str]] = {}
    for seg in segments:
        adjacency.setdefault(seg.from_key, set()).add(seg.to_key)
        adjacency.setdefault(seg.to_key, set()).add(seg.from_key)
    return {key: frozenset(neighbours) for key, neighbours in adjacency.items()}


@dataclass(frozen=True)
class TrackState:
    """A player's persisted track."""
    segments: tuple[TrackSegment, ...] = ()
    total_cost: int = 0
    turn_build_cost: int = 0


# ============================================================================
# Cards and players
# ============================================================================

@dataclass(frozen=True)
class Demand:
    city: str
    resource: str
    payment: int


@dataclass(frozen=True)
class DemandCard:
    """A hand card with up to three delivery offers."""
    card_id: int
    demands: tuple[Demand, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.card_id,
            "demands": [
                {"city": d.city, "resource": d.resource, "payment": d.payment}
                for d in self.demands
            ],
        }


def find_demand(card: DemandCard, resource: str | None, index: int | None = None) -> Demand | None:
    """The card's demand for a resource; `index`, when given, must point at it."""
    if index is not None:
        if not 0 <= index < len(card.demands):
            return None
        demand = card.demands[index]
        return demand if demand.resource == resource else None
    return next((d for d in card.demands if d.resource == resource), None)


@dataclass(frozen=True)
class CompetitorSummary:
    """What a bot may know about another player."""
    player_id: str
    name: str
    position: GridPoint | None
    loads: tuple[str, ...]
    money: int
    train_type: TrainType
    track_segment_count: int
    major_cities_connected: int


@dataclass(frozen=True)
class WorldSnapshot:
    """
    Immutable view of one game, taken from one bot's point of view.

    Created once per turn by the SnapshotBuilder. Every later stage
    (options, scoring, validation) reads this same instance.
    """
    game_id: str
    bot_player_id: str
    turn_number: int
    position: GridPoint | None
    money: int
    hand: tuple[DemandCard, ...]
    loads: tuple[str, ...]
    train_type: TrainType
    grid: MapGrid

    # Own network
    track_segments: tuple[TrackSegment, ...] = ()
    track_adjacency: Mapping[str, frozenset[str]] = field(default_factory=lambda: MappingProxyType({}))
    turn_build_cost: int = 0

    # Everyone else
    competitors: tuple[CompetitorSummary, ...] = ()
    other_segments: tuple[TrackSegment, ...] = ()

    # Global state
    load_availability: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    major_city_connections: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))

    snapshot_hash: str = ""

    @property
    def capacity(self) -> int:
        return TRAIN_PROPERTIES[self.train_type].capacity

    @property
    def connected_major_cities(self) -> int:
        return sum(1 for connected in self.major_city_connections.values() if connected)

    @property
    def network_points(self) -> frozenset[str]:
        return frozenset(self.track_adjacency.keys())

    def card(self, card_id: int) -> DemandCard | None:
        for card in self.hand:
            if card.card_id == card_id:
                return card
        return None
