"""
Map Grid - The static hex grid of mileposts.

The grid knows:
- Which mileposts exist, their terrain and optional city
- Hex adjacency (odd rows are shifted half a milepost to the right)
- Ferry links between ferry ports
- Water crossings (rivers, lakes, ocean inlets) on edges
- What it costs to build track along an edge
- Which cities supply which loads

The grid is never mutated after construction; the pathfinder and every
snapshot share one instance.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from .state import edge_key, parse_point_key, point_key


class TerrainType(Enum):
    """Terrain of a milepost."""
    CLEAR = "clear"
    MOUNTAIN = "mountain"
    ALPINE = "alpine"
    SMALL_CITY = "small_city"
    MEDIUM_CITY = "medium_city"
    MAJOR_CITY = "major_city"
    FERRY_PORT = "ferry_port"
    WATER = "water"


TERRAIN_BUILD_COST: dict[TerrainType, int] = {
    TerrainType.CLEAR: 1,
    TerrainType.MOUNTAIN: 2,
    TerrainType.ALPINE: 5,
    TerrainType.SMALL_CITY: 3,
    TerrainType.MEDIUM_CITY: 3,
    TerrainType.MAJOR_CITY: 5,
}

WATER_CROSSING_COST: dict[str, int] = {
    "river": 2,
    "lake": 3,
    "ocean_inlet": 3,
}

# (row delta, col delta) of the six neighbours
EVEN_ROW_OFFSETS = ((-1, -1), (-1, 0), (0, -1), (0, 1), (1, -1), (1, 0))
ODD_ROW_OFFSETS = ((-1, 0), (-1, 1), (0, -1), (0, 1), (1, 0), (1, 1))

# Pixel layout, used only for payloads sent to the UI
HORIZONTAL_SPACING = 50
VERTICAL_SPACING = 45
GRID_MARGIN = 120


def grid_to_pixel(row: int, col: int) -> tuple[int, int]:
    x = col * HORIZONTAL_SPACING + GRID_MARGIN + (HORIZONTAL_SPACING // 2 if row % 2 == 1 else 0)
    y = row * VERTICAL_SPACING + GRID_MARGIN
    return x, y


def hex_distance(a: str, b: str) -> int:
    """Number of hex steps between two point keys, ignoring terrain."""
    (r1, c1), (r2, c2) = parse_point_key(a), parse_point_key(b)
    x1, x2 = c1 - (r1 - (r1 & 1)) // 2, c2 - (r2 - (r2 & 1)) // 2
    y1, y2 = -x1 - r1, -x2 - r2
    return max(abs(x1 - x2), abs(y1 - y2), abs(r1 - r2))


@dataclass(frozen=True)
class Milepost:
    """A single addressable point on the map."""
    row: int
    col: int
    terrain: TerrainType
    city_name: str | None = None
    supplies: tuple[str, ...] = ()
    is_city_center: bool = False

    @property
    def key(self) -> str:
        return point_key(self.row, self.col)

    @property
    def is_city(self) -> bool:
        return self.city_name is not None


@dataclass(frozen=True)
class Ferry:
    """A ferry route between two ferry ports."""
    name: str
    port_a: str
    port_b: str
    cost: int


@dataclass(frozen=True)
class MajorCity:
    """A major city: a centre milepost plus its outposts."""
    name: str
    center: str
    points: tuple[str, ...]


class MapGrid:
    """
    Immutable grid of mileposts.

    Usage:
        grid = MapGrid.load("map.json")
        for neighbour in grid.neighbors("10,15"):
            cost = grid.build_cost("10,15", neighbour)
    """

    def __init__(
        self,
        mileposts: Iterable[Milepost],
        ferries: Iterable[Ferry] = (),
        water_crossings: Mapping[tuple[str, str], str] | None = None,
    ):
        self._points: dict[str, Milepost] = {m.key: m for m in mileposts}

        self._ferry_links: dict[str, str] = {}
        self._ferry_cost: dict[str, int] = {}
        self._ferries: tuple[Ferry, ...] = tuple(ferries)
        for ferry in self._ferries:
            if ferry.port_a in self._points and ferry.port_b in self._points:
                self._ferry_links[ferry.port_a] = ferry.port_b
                self._ferry_links[ferry.port_b] = ferry.port_a
                self._ferry_cost[ferry.port_a] = ferry.cost
                self._ferry_cost[ferry.port_b] = ferry.cost

        self._crossings: dict[tuple[str, str], str] = {
            edge_key(a, b): kind for (a, b), kind in (water_crossings or {}).items()
        }

        # City indexes
        self._city_points: dict[str, list[Milepost]] = {}
        self._major_city_of: dict[str, str] = {}
        suppliers: dict[str, set[str]] = {}
        for milepost in sorted(self._points.values(), key=lambda m: (m.row, m.col)):
            if milepost.city_name is None:
                continue
            self._city_points.setdefault(milepost.city_name, []).append(milepost)
            if milepost.terrain == TerrainType.MAJOR_CITY:
                self._major_city_of[milepost.key] = milepost.city_name
            for resource in milepost.supplies:
                suppliers.setdefault(resource, set()).add(milepost.city_name)
        self._suppliers = {res: tuple(sorted(cities)) for res, cities in suppliers.items()}

        self._major_cities: dict[str, MajorCity] = {}
        for name, points in self._city_points.items():
            majors = [m for m in points if m.terrain == TerrainType.MAJOR_CITY]
            if not majors:
                continue
            center = next((m for m in majors if m.is_city_center), majors[0])
            self._major_cities[name] = MajorCity(
                name=name,
                center=center.key,
                points=tuple(m.key for m in majors),
            )

    # =========================================================================
    # Lookup
    # =========================================================================

    def __contains__(self, key: str) -> bool:
        return key in self._points

    def __len__(self) -> int:
        return len(self._points)

    def get_key(self, key: str) -> Milepost | None:
        return self._points.get(key)

    def is_passable(self, key: str) -> bool:
        milepost = self._points.get(key)
        return milepost is not None and milepost.terrain != TerrainType.WATER

    @property
    def major_cities(self) -> tuple[MajorCity, ...]:
        return tuple(self._major_cities[name] for name in sorted(self._major_cities))

    def major_city(self, name: str) -> MajorCity | None:
        return self._major_cities.get(name)

    def major_city_of(self, key: str) -> str | None:
        return self._major_city_of.get(key)

    def city_keys(self, name: str) -> frozenset[str]:
        return frozenset(m.key for m in self._city_points.get(name, ()))

    def city_anchor(self, name: str) -> Milepost | None:
        """Milepost to aim for when building toward a city."""
        major = self._major_cities.get(name)
        if major:
            return self._points[major.center]
        points = self._city_points.get(name)
        return points[0] if points else None

    def supply_cities(self, resource: str) -> tuple[str, ...]:
        return self._suppliers.get(resource, ())

    # =========================================================================
    # Adjacency and cost
    # =========================================================================

    def neighbors(self, key: str) -> list[str]:
        """Passable neighbours of a point, ferry partner included."""
        if not self.is_passable(key):
            return []
        row, col = parse_point_key(key)
        offsets = ODD_ROW_OFFSETS if row % 2 == 1 else EVEN_ROW_OFFSETS
        result = []
        for dr, dc in offsets:
            candidate = point_key(row + dr, col + dc)
            if self.is_passable(candidate):
                result.append(candidate)
        partner = self._ferry_links.get(key)
        if partner is not None and partner not in result:
            result.append(partner)
        return result

    def is_ferry_link(self, a: str, b: str) -> bool:
        return self._ferry_links.get(a) == b

    def build_cost(self, from_key: str, to_key: str) -> int | None:
        """
        Cost to build track from one milepost to an adjacent one.

        Returns None when no track may be built on the edge: water,
        missing points, or both ends inside the same major city.
        """
        source = self._points.get(from_key)
        target = self._points.get(to_key)
        if source is None or target is None:
            return None
        if source.terrain == TerrainType.WATER or target.terrain == TerrainType.WATER:
            return None

        same_city = self._major_city_of.get(from_key)
        if same_city is not None and same_city == self._major_city_of.get(to_key):
            return None

        if self.is_ferry_link(from_key, to_key):
            return 0

        if target.terrain == TerrainType.FERRY_PORT:
            base = self._ferry_cost.get(to_key, TERRAIN_BUILD_COST[TerrainType.CLEAR])
        else:
            base = TERRAIN_BUILD_COST[target.terrain]
        crossing = self._crossings.get(edge_key(from_key, to_key))
        return base + (WATER_CROSSING_COST[crossing] if crossing else 0)

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        ferries: Iterable[Mapping[str, Any]] = (),
        water_crossings: Iterable[Mapping[str, Any]] = (),
    ) -> MapGrid:
        """
        Build a grid from plain dicts, as stored in a map JSON file.

        Milepost record: {"row", "col", "terrain", "city"?, "supplies"?, "center"?}
        Ferry record: {"name", "a": [row, col], "b": [row, col], "cost"}
        Crossing record: {"a": [row, col], "b": [row, col], "kind"}
        """
        mileposts = [
            Milepost(
                row=int(r["row"]),
                col=int(r["col"]),
                terrain=TerrainType(r.get("terrain", "clear")),
                city_name=r.get("city"),
                supplies=tuple(r.get("supplies", ())),
                is_city_center=bool(r.get("center", False)),
            )
            for r in records
        ]
        ferry_objs = [
            Ferry(
                name=f["name"],
                port_a=point_key(*f["a"]),
                port_b=point_key(*f["b"]),
                cost=int(f["cost"]),
            )
            for f in ferries
        ]
        crossings = {
            (point_key(*c["a"]), point_key(*c["b"])): c["kind"]
            for c in water_crossings
        }
        return cls(mileposts, ferry_objs, crossings)

    @classmethod
    def load(cls, path: str | Path) -> MapGrid:
        """Load a grid from a JSON file with mileposts/ferries/waterCrossings keys."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_records(
            data.get("mileposts", []),
            data.get("ferries", []),
            data.get("waterCrossings", []),
        )

    def to_records(self) -> dict[str, list[dict[str, Any]]]:
        """Inverse of from_records, for writing a map file."""
        mileposts = []
        for m in sorted(self._points.values(), key=lambda m: (m.row, m.col)):
            record: dict[str, Any] = {"row": m.row, "col": m.col, "terrain": m.terrain.value}
            if m.city_name:
                record["city"] = m.city_name
            if m.supplies:
                record["supplies"] = list(m.supplies)
            if m.is_city_center:
                record["center"] = True
            mileposts.append(record)
        ferries = [
            {
                "name": f.name,
                "a": list(parse_point_key(f.port_a)),
                "b": list(parse_point_key(f.port_b)),
                "cost": f.cost,
            }
            for f in self._ferries
        ]
        crossings = [
            {"a": list(parse_point_key(a)), "b": list(parse_point_key(b)), "kind": kind}
            for (a, b), kind in sorted(self._crossings.items())
        ]
        return {"mileposts": mileposts, "ferries": ferries, "waterCrossings": crossings}
