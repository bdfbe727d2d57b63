"""
Tests for track pathfinding on the demo board.

Tests:
- Off-map and water endpoints
- Own track is free, rival track is impassable
- Terrain, crossing, city and ferry costs
- Budget-limited segment building
"""

import json

import pytest

from ..engine_core.map_grid import MapGrid
from ..engine_core.pathfinder import TrackPathfinder
from ..engine_core.state import TrackState
from ..maps.demo import COLS, ROWS
from .conftest import segment


class FakeTrackService:
    def __init__(self, tracks=None):
        self.tracks = tracks or {}

    async def get_track_state(self, game_id, player_id):
        return self.tracks.get(player_id)

    async def get_all_tracks(self, game_id):
        return dict(self.tracks)

    async def save_track_state(self, game_id, player_id, state):
        self.tracks[player_id] = state


class TestFindPath:
    """Tests for TrackPathfinder.find_path."""

    def test_off_map_target_returns_none(self, pathfinder):
        assert pathfinder.find_path(50, 30, 999, 999, [], []) is None

    def test_water_target_returns_none(self, pathfinder):
        assert pathfinder.find_path(0, 0, 5, 9) is None

    def test_straight_clear_path(self, pathfinder):
        result = pathfinder.find_path(0, 0, 0, 2)

        assert result.cost == 2
        assert result.keys == ["0,0", "0,1", "0,2"]

    def test_own_track_reduces_cost(self, pathfinder):
        """An owned edge on the route is free."""
        without = pathfinder.find_path(0, 0, 0, 2, [], [])
        with_track = pathfinder.find_path(0, 0, 0, 2, [segment((0, 0), (0, 1))], [])

        assert with_track.cost < without.cost
        assert with_track.cost == 1

    def test_rival_track_is_avoided(self, pathfinder):
        """The direct edge belongs to someone else, so the route detours."""
        result = pathfinder.find_path(0, 0, 0, 1, [], [segment((0, 0), (0, 1))])

        assert result.keys == ["0,0", "1,0", "0,1"]
        assert result.cost == 2

    def test_same_major_city_is_free(self, pathfinder):
        result = pathfinder.find_path(2, 3, 2, 4)

        assert result.cost == 0

    def test_mountain_costs_two(self, pathfinder):
        assert pathfinder.find_path(1, 6, 1, 7).cost == 2


class TestGridCosts:
    """Edge costs that come from the grid."""

    def test_river_crossing_adds_cost(self, grid):
        assert grid.build_cost("4,5", "5,5") == 3

    def test_ferry_link_is_free_and_adjacent(self, grid):
        assert grid.build_cost("4,9", "7,9") == 0
        assert "7,9" in grid.neighbors("4,9")

    def test_no_track_inside_major_city(self, grid):
        assert grid.build_cost("2,3", "2,4") is None

    def test_water_is_impassable(self, grid):
        assert grid.neighbors("5,9") == []
        assert "5,9" not in grid.neighbors("4,9")


class TestComputeBuildSegments:
    """Tests for compute_build_segments."""

    def test_budget_cuts_route(self, pathfinder):
        segments = pathfinder.compute_build_segments({"0,0"}, "0,5", [], [], budget=2)

        assert [(s.from_key, s.to_key) for s in segments] == [("0,0", "0,1"), ("0,1", "0,2")]
        assert sum(s.cost for s in segments) == 2

    def test_owned_edges_are_not_rebuilt(self, pathfinder):
        own = [segment((0, 0), (0, 1))]
        segments = pathfinder.compute_build_segments({"0,0"}, "0,3", own, [], budget=20)

        assert [(s.from_key, s.to_key) for s in segments] == [("0,1", "0,2"), ("0,2", "0,3")]

    def test_zero_budget_builds_nothing(self, pathfinder):
        assert pathfinder.compute_build_segments({"0,0"}, "0,3", [], [], budget=0) == []


class TestBuildTrackToTarget:
    """Tests for the async build entry point."""

    @pytest.mark.asyncio
    async def test_requires_track_service(self, grid):
        with pytest.raises(RuntimeError):
            await TrackPathfinder(grid).build_track_to_target("g1", "bot-1", 0, 3, 20)

    @pytest.mark.asyncio
    async def test_first_track_starts_at_nearest_major_city(self, grid):
        pathfinder = TrackPathfinder(grid, track_service=FakeTrackService())

        result = await pathfinder.build_track_to_target("g1", "bot-1", 0, 3, 20)

        assert len(result.segments) == 1
        assert result.segments[0].to_key == "0,3"
        assert grid.major_city_of(result.segments[0].from_key) == "Berlin"
        assert result.cost == 1
        assert result.reached_target

    @pytest.mark.asyncio
    async def test_extends_existing_network(self, grid):
        own = TrackState(segments=(segment((0, 0), (0, 1)),), total_cost=1)
        pathfinder = TrackPathfinder(grid, track_service=FakeTrackService({"bot-1": own}))

        result = await pathfinder.build_track_to_target("g1", "bot-1", 0, 4, 2)

        assert [s.to_key for s in result.segments] == ["0,2", "0,3"]
        assert not result.reached_target


class TestNetworkHelpers:
    def test_nearest_major_city(self, pathfinder):
        assert pathfinder.nearest_major_city("0,0").name == "Berlin"
        assert pathfinder.nearest_major_city("0,0", exclude="Berlin").name == "Paris"

    def test_reachable_points_cross_major_city(self, pathfinder):
        own = [segment((2, 4), (2, 5)), segment((2, 5), (2, 6))]

        reachable = pathfinder.reachable_points("2,3", own)

        assert reachable["2,6"] == 3
        assert reachable["1,2"] == 1
        assert "0,0" not in reachable


class TestMapFile:
    def test_written_map_loads_back(self, grid, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps(grid.to_records()), encoding="utf-8")

        loaded = MapGrid.load(path)

        assert len(loaded) == ROWS * COLS
        assert "8,3" in loaded
        assert loaded.build_cost("4,5", "5,5") == grid.build_cost("4,5", "5,5")
        assert loaded.build_cost("4,9", "7,9") == 0
        assert loaded.neighbors("4,9") == grid.neighbors("4,9")
        assert loaded.supply_cities("Coal") == grid.supply_cities("Coal")
        assert loaded.major_city("Berlin") == grid.major_city("Berlin")
