"""
Track Pathfinder - Lowest-cost track routes across the map grid.

Used by:
1. The option generator, to price BuildTrack / BuildTowardMajorCity
2. The turn executor path, via build_track_to_target
3. Delivery feasibility, via reachable_points over the bot's own network

Search is Dijkstra over hex adjacency:
- An edge the bot already owns costs 0
- An edge owned by another player is excluded entirely
- Edges between mileposts of the same major city are free (implicit
  city track) and never produce a segment
- Every other edge costs the terrain of the milepost being entered, plus
  any river/lake crossing

The pathfinder holds no per-call state and never mutates the grid.
"""

from __future__ import annotations
import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, TYPE_CHECKING

from .map_grid import MajorCity, MapGrid, hex_distance
from .state import GridPoint, TrackSegment, edge_key, parse_point_key, point_key, segment_edges
from ..logging_config import get_logger

if TYPE_CHECKING:
    from ..storage.interfaces import TrackStateService

logger = get_logger(__name__)


@dataclass(frozen=True)
class PathResult:
    """A route and its total build cost."""
    path: tuple[GridPoint, ...]
    cost: int

    @property
    def keys(self) -> list[str]:
        return [p.key for p in self.path]


@dataclass
class BuildResult:
    """Segments to build this turn toward a target."""
    segments: list[TrackSegment] = field(default_factory=list)
    cost: int = 0
    reached_target: bool = False


class TrackPathfinder:
    """
    Pathfinding over a MapGrid.

    Usage:
        pathfinder = TrackPathfinder(grid, track_service=store)

        result = pathfinder.find_path(10, 15, 12, 18, own_segments, rival_segments)
        if result:
            print(result.cost)

        build = await pathfinder.build_track_to_target(game_id, bot_id, 12, 18, budget=20)
    """

    def __init__(self, grid: MapGrid, track_service: TrackStateService | None = None):
        self.grid = grid
        self.track_service = track_service

    # =========================================================================
    # Search
    # =========================================================================

    def find_path(
        self,
        from_row: int,
        from_col: int,
        to_row: int,
        to_col: int,
        own_segments: Iterable[TrackSegment] = (),
        other_segments: Iterable[TrackSegment] = (),
    ) -> PathResult | None:
        """
        Cheapest route between two mileposts.

        Returns None if either end is off the map or water, or if no
        route exists.
        """
        start = point_key(from_row, from_col)
        target = point_key(to_row, to_col)
        if not self.grid.is_passable(start) or not self.grid.is_passable(target):
            return None

        found = self._search([start], target, segment_edges(own_segments), segment_edges(other_segments))
        if found is None:
            return None
        keys, cost = found
        return PathResult(path=tuple(GridPoint(*parse_point_key(k)) for k in keys), cost=cost)

    def _edge_cost(
        self,
        a: str,
        b: str,
        own_edges: set[tuple[str, str]],
        other_edges: set[tuple[str, str]],
    ) -> int | None:
        edge = edge_key(a, b)
        if edge in own_edges:
            return 0
        if edge in other_edges:
            return None
        if self._is_implicit_edge(a, b):
            return 0
        return self.grid.build_cost(a, b)

    def _is_implicit_edge(self, a: str, b: str) -> bool:
        """Edges that exist without anyone building them."""
        city = self.grid.major_city_of(a)
        if city is not None and city == self.grid.major_city_of(b):
            return True
        return self.grid.is_ferry_link(a, b)

    def _search(
        self,
        starts: Iterable[str],
        target: str,
        own_edges: set[tuple[str, str]],
        other_edges: set[tuple[str, str]],
    ) -> tuple[list[str], int] | None:
        """Multi-source Dijkstra. Ties break on point key, so results are stable."""
        dist: dict[str, int] = {}
        prev: dict[str, str] = {}
        heap: list[tuple[int, str]] = []

        for start in sorted(set(starts)):
            if self.grid.is_passable(start):
                dist[start] = 0
                heap.append((0, start))
        heapq.heapify(heap)

        while heap:
            cost, key = heapq.heappop(heap)
            if cost > dist.get(key, cost):
                continue
            if key == target:
                path = [key]
                while path[-1] in prev:
                    path.append(prev[path[-1]])
                path.reverse()
                return path, cost

            for neighbour in self.grid.neighbors(key):
                step = self._edge_cost(key, neighbour, own_edges, other_edges)
                if step is None:
                    continue
                new_cost = cost + step
                if neighbour not in dist or new_cost < dist[neighbour]:
                    dist[neighbour] = new_cost
                    prev[neighbour] = key
                    heapq.heappush(heap, (new_cost, neighbour))

        return None

    # =========================================================================
    # Building
    # =========================================================================

    def compute_build_segments(
        self,
        starts: Iterable[str],
        target: str,
        own_segments: Iterable[TrackSegment],
        other_segments: Iterable[TrackSegment],
        budget: int,
    ) -> list[TrackSegment]:
        """
        New segments along the cheapest route from any start to the target,
        cut off where the running cost would exceed the budget.
        """
        if budget <= 0 or not self.grid.is_passable(target):
            return []

        own_edges = segment_edges(own_segments)
        found = self._search(starts, target, own_edges, segment_edges(other_segments))
        if found is None:
            return []

        keys, _ = found
        segments: list[TrackSegment] = []
        spent = 0
        for a, b in zip(keys, keys[1:]):
            if edge_key(a, b) in own_edges or self._is_implicit_edge(a, b):
                continue
            cost = self.grid.build_cost(a, b)
            if cost is None or spent + cost > budget:
                break
            spent += cost
            (fr, fc), (tr, tc) = parse_point_key(a), parse_point_key(b)
            segments.append(TrackSegment(fr, fc, tr, tc, cost))
        return segments

    async def build_track_to_target(
        self,
        game_id: str,
        player_id: str,
        target_row: int,
        target_col: int,
        budget: int,
    ) -> BuildResult | None:
        """
        Extend a player's network toward a target within a budget.

        Starts from every point of the player's network, or from the major
        city nearest the target when the player owns no track. Returns
        None when nothing affordable can be built.
        """
        if self.track_service is None:
            raise RuntimeError("build_track_to_target needs a track state service")

        target = point_key(target_row, target_col)
        if not self.grid.is_passable(target):
            return None

        own_state = await self.track_service.get_track_state(game_id, player_id)
        all_tracks = await self.track_service.get_all_tracks(game_id)
        own = list(own_state.segments) if own_state else []
        others = [
            seg
            for other_id, state in all_tracks.items()
            if other_id != player_id
            for seg in state.segments
        ]

        starts = self.network_points(own)
        if not starts:
            city = self.nearest_major_city(target)
            starts = set(city.points) if city else set()

        segments = self.compute_build_segments(starts, target, own, others, budget)
        if not segments:
            logger.debug("No affordable track toward %s for %s (budget %s)", target, player_id, budget)
            return None

        network = starts | self.network_points(segments)
        return BuildResult(
            segments=segments,
            cost=sum(s.cost for s in segments),
            reached_target=target in network,
        )

    # =========================================================================
    # Network helpers
    # =========================================================================

    @staticmethod
    def network_points(segments: Iterable[TrackSegment]) -> set[str]:
        points: set[str] = set()
        for seg in segments:
            points.add(seg.from_key)
            points.add(seg.to_key)
        return points

    def nearest_major_city(self, key: str, exclude: str | None = None) -> MajorCity | None:
        """Major city whose centre is fewest hex steps from the point."""
        best: MajorCity | None = None
        best_distance = 0
        for city in self.grid.major_cities:
            if city.name == exclude:
                continue
            distance = hex_distance(city.center, key)
            if best is None or distance < best_distance:
                best, best_distance = city, distance
        return best

    def reachable_points(self, start: str, own_segments: Iterable[TrackSegment]) -> dict[str, int]:
        """
        Points the bot can reach from `start` over its own track, with hop
        counts. Mileposts of one major city are mutually reachable.
        """
        adjacency: dict[str, set[str]] = {}
        for seg in own_segments:
            adjacency.setdefault(seg.from_key, set()).add(seg.to_key)
            adjacency.setdefault(seg.to_key, set()).add(seg.from_key)

        distances = {start: 0}
        queue = deque([start])
        while queue:
            key = queue.popleft()
            neighbours = set(adjacency.get(key, ()))
            city = self.grid.major_city_of(key)
            if city is not None:
                neighbours |= set(self.grid.major_city(city).points)
            for neighbour in sorted(neighbours):
                if neighbour not in distances:
                    distances[neighbour] = distances[key] + 1
                    queue.append(neighbour)
        return distances
