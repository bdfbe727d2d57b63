"""
Strategy Engine - Runs one bot turn end to end.

The engine is a small state machine:

    CAPTURING -> GENERATING -> SCORING -> SELECT_CANDIDATE -> VALIDATING
        -> EXECUTING -> DONE

A rejected or failed candidate goes through RETRY back to
SELECT_CANDIDATE with the next untried option. After three attempts, or
when nothing feasible is left, FALLBACK executes a PassTurn.

Every completed turn writes exactly one StrategyAudit. Lookup failures
(no AI player row, no game, bot not in game) abort before any audit.

Turns of bots in the same game are serialized by a per-game lock, so
the track a bot plans against cannot change under it before it
executes. Bots in different games run independently.
"""

from __future__ import annotations
import asyncio
import contextlib
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TYPE_CHECKING

from .profiles import ArchetypeProfile, SkillProfile, get_archetype_profile, get_skill_profile
from .scorer import Scorer
from ..engine_core.action import (
    AIActionType,
    ExpectedOutcome,
    FeasibleOption,
    ScoredOption,
    TurnExecutionResult,
    TurnPlan,
    TurnPlanAction,
)
from ..engine_core.map_grid import MapGrid, hex_distance
from ..engine_core.option_generator import OptionGenerator
from ..engine_core.pathfinder import TrackPathfinder
from ..engine_core.plan_validator import PlanValidator
from ..engine_core.snapshot import SnapshotBuilder
from ..engine_core.state import WorldSnapshot, point_key
from ..engine_core.turn_executor import TurnExecutor
from ..config import ai_bots_enabled
from ..errors import AIBotsDisabled, AIPlayerNotFound
from ..logging_config import bot_logger

if TYPE_CHECKING:
    from ..storage.interfaces import DemandDeck, GameStore, Notifier

MAX_ATTEMPTS = 3

THINKING_EVENT = "ai:thinking"
TURN_FINISHED_EVENT = "ai:turnComplete"


class StrategyState(Enum):
    """Stage of a bot turn."""
    CAPTURING = "capturing"
    GENERATING = "generating"
    SCORING = "scoring"
    SELECT_CANDIDATE = "select_candidate"
    VALIDATING = "validating"
    EXECUTING = "executing"
    RETRY = "retry"
    FALLBACK = "fallback"
    DONE = "done"


class ExecutionOutcome(str, Enum):
    """Audit tag for how the turn ended."""
    SUCCESS = "success"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass
class StageTimings:
    snapshot_ms: float = 0.0
    option_generation_ms: float = 0.0
    scoring_ms: float = 0.0
    execution_ms: float = 0.0
    total_ms: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "snapshotMs": self.snapshot_ms,
            "optionGenerationMs": self.option_generation_ms,
            "scoringMs": self.scoring_ms,
            "executionMs": self.execution_ms,
            "totalMs": self.total_ms,
        }


@dataclass
class StrategyAudit:
    """
    Record of one bot turn.

    `scores` runs parallel to `all_options`; infeasible options have no
    score (None).
    """
    game_id: str
    player_id: str
    turn_number: int
    snapshot_hash: str
    archetype: str
    skill_level: str
    all_options: list[FeasibleOption] = field(default_factory=list)
    scores: list[float | None] = field(default_factory=list)
    ranked: list[ScoredOption] = field(default_factory=list)
    selected_plan: TurnPlan | None = None
    execution: TurnExecutionResult | None = None
    execution_result: ExecutionOutcome = ExecutionOutcome.SUCCESS
    attempts: int = 0
    timing: StageTimings = field(default_factory=StageTimings)
    bot_status: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def execution_results(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.execution.action_results] if self.execution else []

    def to_dict(self) -> dict[str, Any]:
        return {
            "gameId": self.game_id,
            "playerId": self.player_id,
            "turnNumber": self.turn_number,
            "snapshotHash": self.snapshot_hash,
            "archetype": self.archetype,
            "skillLevel": self.skill_level,
            "allOptions": [o.to_dict() for o in self.all_options],
            "scores": self.scores,
            "rankedOptions": [s.to_dict() for s in self.ranked],
            "selectedPlan": self.selected_plan.to_dict() if self.selected_plan else None,
            "executionResults": self.execution_results,
            "executionResult": self.execution_result.value,
            "executionError": self.execution.error if self.execution else None,
            "attempts": self.attempts,
            "timing": self.timing.to_dict(),
            "botStatus": self.bot_status,
            "createdAt": self.created_at,
        }


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class AIStrategyEngine:
    """
    Orchestrates snapshot, options, scoring, validation and execution.

    Usage:
        engine = AIStrategyEngine(store, deck, notifier, grid)
        audit = await engine.execute_turn(game_id, bot_player_id)
        print(audit.execution_result)

    Validator, executor, scorer and random source can be injected; the
    defaults are built from the store, deck and grid.
    """

    def __init__(
        self,
        store: GameStore,
        deck: DemandDeck,
        notifier: Notifier,
        grid: MapGrid,
        pathfinder: TrackPathfinder | None = None,
        scorer: Scorer | None = None,
        validator: PlanValidator | None = None,
        executor: TurnExecutor | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.grid = grid
        self.pathfinder = pathfinder or TrackPathfinder(grid, track_service=store)
        self.snapshots = SnapshotBuilder(store, deck, grid)
        self.generator = OptionGenerator(self.pathfinder)
        self.scorer = scorer or Scorer()
        self.validator = validator or PlanValidator()
        self.executor = executor or TurnExecutor(store, deck, notifier, self.pathfinder)
        self.rng = rng or random.Random()
        self._game_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _game_turn(self, game_id: str):
        """Hold the game's lock; the lock is dropped once no turn wants it."""
        lock = self._game_locks.setdefault(game_id, asyncio.Lock())
        self._lock_users[game_id] = self._lock_users.get(game_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[game_id] -= 1
            if not self._lock_users[game_id]:
                del self._lock_users[game_id]
                del self._game_locks[game_id]

    # =========================================================================
    # Turn
    # =========================================================================

    async def execute_turn(self, game_id: str, bot_player_id: str) -> StrategyAudit:
        """
        Take one turn for a bot.

        Raises AIBotsDisabled when ENABLE_AI_BOTS is off, and
        AIPlayerNotFound, GameNotFound or BotPlayerNotFound on lookup
        failure. Every other failure ends in a PassTurn.
        """
        if not ai_bots_enabled():
            raise AIBotsDisabled("AI bots are disabled (ENABLE_AI_BOTS is off)")

        ai_player = await self.store.get_ai_player(game_id, bot_player_id)
        if ai_player is None:
            raise AIPlayerNotFound(bot_player_id)

        skill = get_skill_profile(ai_player.get("ai_difficulty"))
        archetype = get_archetype_profile(ai_player.get("ai_archetype"))

        async with self._game_turn(game_id):
            return await self._run_turn(game_id, bot_player_id, skill, archetype)

    async def _run_turn(
        self,
        game_id: str,
        bot_player_id: str,
        skill: SkillProfile,
        archetype: ArchetypeProfile,
    ) -> StrategyAudit:
        log = bot_logger(__name__, game_id, bot_player_id)
        started = time.perf_counter()
        timing = StageTimings()
        state = StrategyState.CAPTURING

        await self._emit(game_id, THINKING_EVENT, {"playerId": bot_player_id})

        stage = time.perf_counter()
        snapshot = await self.snapshots.capture(game_id, bot_player_id)
        timing.snapshot_ms = _ms(stage)
        log.info(
            "Turn %s starting (%s, %s) snapshot=%s",
            snapshot.turn_number, skill.level.value, archetype.archetype_id.value, snapshot.snapshot_hash,
        )

        state = StrategyState.GENERATING
        stage = time.perf_counter()
        options = self.generator.generate(snapshot)
        timing.option_generation_ms = _ms(stage)
        rejected = [o for o in options if not o.feasible]
        log.debug("Generated %d options (%d infeasible)", len(options), len(rejected))

        state = StrategyState.SCORING
        stage = time.perf_counter()
        ranked = self.scorer.score(options, snapshot, skill, archetype, self.rng)
        timing.scoring_ms = _ms(stage)
        candidates = [s for s in ranked if s.kind != AIActionType.PASS_TURN]
        log.debug("Top options: %s", ", ".join(f"{s.option_id}({s.final_score:.2f})" for s in ranked[:3]))

        tried: set[str] = set()
        attempts = 0
        plan: TurnPlan | None = None
        execution: TurnExecutionResult | None = None
        outcome: ExecutionOutcome | None = None

        while attempts < MAX_ATTEMPTS:
            state = StrategyState.SELECT_CANDIDATE
            candidate = next((c for c in candidates if c.option_id not in tried), None)
            if candidate is None:
                break
            tried.add(candidate.option_id)
            attempts += 1
            plan = self.build_plan(candidate, snapshot, skill, archetype)

            state = StrategyState.VALIDATING
            validation = self.validator.validate(plan, snapshot)
            if not validation.ok:
                log.warning("Validation failed (attempt %d/%d): %s", attempts, MAX_ATTEMPTS, validation.reason)
                state = StrategyState.RETRY
                continue

            state = StrategyState.EXECUTING
            execution = await self.executor.execute(plan, game_id, bot_player_id)
            timing.execution_ms += execution.total_duration_ms
            if execution.success:
                outcome = ExecutionOutcome.SUCCESS
                log.info("Executed %s (score %.2f)", candidate.option_id, candidate.final_score)
                break

            log.warning("Execution failed (attempt %d/%d): %s", attempts, MAX_ATTEMPTS, execution.error)
            state = StrategyState.RETRY

        if outcome is None:
            state = StrategyState.FALLBACK
            log.info("No candidate succeeded after %d attempts, passing", attempts)
            plan = TurnPlan.pass_turn(archetype.archetype_id.value, skill.level.value)
            execution = await self.executor.execute(plan, game_id, bot_player_id)
            timing.execution_ms += execution.total_duration_ms
            outcome = ExecutionOutcome.FALLBACK if execution.success else ExecutionOutcome.ERROR
            if not execution.success:
                log.error("Fallback PassTurn failed: %s", execution.error)

        state = StrategyState.DONE
        timing.total_ms = _ms(started)

        scores_by_id = {s.option_id: s.final_score for s in ranked}
        audit = StrategyAudit(
            game_id=game_id,
            player_id=bot_player_id,
            turn_number=snapshot.turn_number,
            snapshot_hash=snapshot.snapshot_hash,
            archetype=archetype.archetype_id.value,
            skill_level=skill.level.value,
            all_options=options,
            scores=[scores_by_id.get(o.option_id) for o in options],
            ranked=ranked,
            selected_plan=plan,
            execution=execution,
            execution_result=outcome,
            attempts=attempts,
            timing=timing,
            bot_status=self._bot_status(snapshot),
        )
        await self._save_audit(audit, log)

        await self._emit(game_id, TURN_FINISHED_EVENT, {
            "playerId": bot_player_id,
            "success": outcome != ExecutionOutcome.ERROR,
            "executionResult": outcome.value,
        })
        log.info("Turn %s %s in %.1fms (state=%s)", snapshot.turn_number, outcome.value, timing.total_ms, state.value)
        return audit

    def build_plan(
        self,
        candidate: ScoredOption,
        snapshot: WorldSnapshot,
        skill: SkillProfile,
        archetype: ArchetypeProfile,
    ) -> TurnPlan:
        """Single-action plan for a scored option, with its expected outcome."""
        option = candidate.option
        params = option.params
        outcome = ExpectedOutcome()

        if option.kind == AIActionType.DELIVER_LOAD:
            outcome.cash_change = int(params.get("payment", 0))
            outcome.loads_delivered = 1
        elif option.kind in (AIActionType.BUILD_TRACK, AIActionType.BUILD_TOWARD_MAJOR_CITY):
            segments = params.get("segments", [])
            outcome.cash_change = -int(params.get("cost", 0))
            outcome.track_segments_built = len(segments)
            outcome.new_major_cities_connected = self._newly_connected(snapshot, segments)
        elif option.kind == AIActionType.UPGRADE_TRAIN:
            outcome.cash_change = -int(params.get("cost", 0))

        return TurnPlan(
            actions=[TurnPlanAction.of(option.kind, **params)],
            expected_outcome=outcome,
            total_score=candidate.final_score,
            archetype=archetype.archetype_id.value,
            skill_level=skill.level.value,
        )

    def _newly_connected(self, snapshot: WorldSnapshot, segments: list[dict[str, Any]]) -> int:
        touched = set()
        for seg in segments:
            for end in ("from", "to"):
                city = self.grid.major_city_of(point_key(seg[end]["row"], seg[end]["col"]))
                if city and not snapshot.major_city_connections.get(city):
                    touched.add(city)
        return len(touched)

    def _bot_status(self, snapshot: WorldSnapshot) -> dict[str, Any]:
        return {
            "cash": snapshot.money,
            "trainType": snapshot.train_type.value,
            "loads": list(snapshot.loads),
            "majorCitiesConnected": snapshot.connected_major_cities,
        }

    async def _save_audit(self, audit: StrategyAudit, log) -> None:
        try:
            await self.store.save_audit(audit.to_dict())
        except Exception as e:
            log.error("Failed to save turn audit: %s", e)

    async def _emit(self, game_id: str, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.notifier.emit(game_id, event, payload)
        except Exception as e:
            bot_logger(__name__, game_id, payload.get("playerId", "")).warning("Failed to emit %s: %s", event, e)

    # =========================================================================
    # Initial placement
    # =========================================================================

    async def place_initial_train(self, game_id: str, bot_player_id: str) -> tuple[int, int, str] | None:
        """
        Put a bot with no position at the best major city.

        Each major city scores sum(1 / (1 + distance)) over the cities on
        the bot's demand cards; the highest score wins, ties by name.
        Returns (row, col, city) or None when already placed or the map
        has no major cities.
        """
        log = bot_logger(__name__, game_id, bot_player_id)
        snapshot = await self.snapshots.capture(game_id, bot_player_id)
        if snapshot.position is not None:
            return None

        demand_cities = {d.city for card in snapshot.hand for d in card.demands}
        anchors = [self.grid.city_anchor(c) for c in sorted(demand_cities)]
        anchors = [a for a in anchors if a is not None]

        best = None
        best_score = -1.0
        for city in self.grid.major_cities:
            score = sum(1 / (1 + hex_distance(city.center, a.key)) for a in anchors)
            if score > best_score:
                best, best_score = city, score
        if best is None:
            return None

        center = self.grid.get_key(best.center)
        await self.store.set_position(game_id, bot_player_id, center.row, center.col)
        log.info("Placed initial train at %s (score %.2f)", best.name, best_score)
        return center.row, center.col, best.name
