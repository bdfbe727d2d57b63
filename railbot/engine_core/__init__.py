"""
Engine Core - Deterministic pieces of a bot turn.

The core:
1. Captures a WorldSnapshot of the game
2. Finds track paths on the hex grid
3. Generates feasible options
4. Validates plans against a simulation
5. Executes plans in one transaction
"""

from .state import TrackSegment, TrackState, TrainType, WorldSnapshot
from .action import AIActionType, FeasibleOption, ScoredOption, TurnPlan, TurnPlanAction
from .map_grid import MapGrid, Milepost, TerrainType
from .pathfinder import TrackPathfinder
from .snapshot import SnapshotBuilder
from .option_generator import OptionGenerator, generate
from .plan_validator import PlanValidator
from .turn_executor import TurnExecutor

__all__ = [
    "TrackSegment",
    "TrackState",
    "TrainType",
    "WorldSnapshot",
    "AIActionType",
    "FeasibleOption",
    "ScoredOption",
    "TurnPlan",
    "TurnPlanAction",
    "MapGrid",
    "Milepost",
    "TerrainType",
    "TrackPathfinder",
    "SnapshotBuilder",
    "OptionGenerator",
    "generate",
    "PlanValidator",
    "TurnExecutor",
]
