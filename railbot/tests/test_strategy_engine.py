"""
Tests for the strategy engine.

Tests:
- Retry budget and PassTurn fallback
- A locked database ends the turn in an error audit
- Lookup failures and the ENABLE_AI_BOTS gate
- Audit persistence and turn events
- Same-game turns never overlap
- Initial train placement
"""

import asyncio
import random
import sqlite3

import pytest

from ..bots.profiles import BACKBONE_BUILDER, HARD
from ..bots.strategy_engine import (
    MAX_ATTEMPTS,
    THINKING_EVENT,
    TURN_FINISHED_EVENT,
    AIStrategyEngine,
    ExecutionOutcome,
)
from ..engine_core.action import AIActionType, FeasibleOption, ScoredOption, TurnExecutionResult, ValidationResult
from ..errors import AIBotsDisabled, AIPlayerNotFound, Rejection, RejectionReason
from ..maps.demo import MAJOR_CITIES
from ..storage.database import SqliteGameStore


class RejectingValidator:
    def __init__(self):
        self.calls = 0

    def validate(self, plan, snapshot):
        self.calls += 1
        return ValidationResult.invalid(1, plan.actions[0].kind, Rejection(RejectionReason.NOT_CONNECTED, "nope"))


class LockedStore(SqliteGameStore):
    async def begin(self):
        raise sqlite3.OperationalError("database is locked")


class CountingExecutor:
    """Records plans; optionally sleeps to expose overlapping turns."""

    def __init__(self, delay=0.0):
        self.plans = []
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def execute(self, plan, game_id, player_id):
        self.plans.append(plan)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return TurnExecutionResult(success=True)


@pytest.fixture
def engine(seeded_store, deck, notifier, grid):
    return AIStrategyEngine(seeded_store, deck, notifier, grid, rng=random.Random(7))


class TestRetryAndFallback:
    @pytest.mark.asyncio
    async def test_three_rejections_then_pass(self, seeded_store, deck, notifier, grid):
        validator = RejectingValidator()
        executor = CountingExecutor()
        engine = AIStrategyEngine(seeded_store, deck, notifier, grid, validator=validator, executor=executor)

        audit = await engine.execute_turn("g1", "bot-1")

        assert validator.calls == MAX_ATTEMPTS
        assert len(executor.plans) == 1
        assert executor.plans[0].actions[0].kind == AIActionType.PASS_TURN.value
        assert audit.execution_result == ExecutionOutcome.FALLBACK
        assert audit.attempts == MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_fallback_is_audited(self, seeded_store, deck, notifier, grid):
        engine = AIStrategyEngine(
            seeded_store, deck, notifier, grid, validator=RejectingValidator(), executor=CountingExecutor(),
        )

        await engine.execute_turn("g1", "bot-1")
        stored = await seeded_store.latest_audit("g1", "bot-1")

        assert stored["executionResult"] == "fallback"
        assert stored["selectedPlan"]["actions"][0]["type"] == "PassTurn"

    @pytest.mark.asyncio
    async def test_locked_database_ends_in_error_audit(self, seeded_store, deck, notifier, grid):
        store = LockedStore(seeded_store.db_path)
        engine = AIStrategyEngine(store, deck, notifier, grid, rng=random.Random(7))

        audit = await engine.execute_turn("g1", "bot-1")
        stored = await seeded_store.latest_audit("g1", "bot-1")

        assert audit.execution_result == ExecutionOutcome.ERROR
        assert audit.execution.error == "Begin: database is locked"
        assert stored["executionResult"] == "error"
        assert notifier.of(TURN_FINISHED_EVENT)[0].payload["success"] is False


class TestLookups:
    @pytest.mark.asyncio
    async def test_human_player_is_not_an_ai_player(self, engine):
        with pytest.raises(AIPlayerNotFound):
            await engine.execute_turn("g1", "human-1")

    @pytest.mark.asyncio
    async def test_unknown_game(self, engine):
        with pytest.raises(AIPlayerNotFound):
            await engine.execute_turn("missing", "bot-1")

    @pytest.mark.asyncio
    async def test_disabled(self, engine, seeded_store, monkeypatch):
        monkeypatch.setenv("ENABLE_AI_BOTS", "false")

        with pytest.raises(AIBotsDisabled):
            await engine.execute_turn("g1", "bot-1")
        assert await seeded_store.latest_audit("g1", "bot-1") is None


class TestFullTurn:
    @pytest.mark.asyncio
    async def test_turn_writes_one_audit(self, engine, seeded_store):
        audit = await engine.execute_turn("g1", "bot-1")
        stored = await seeded_store.latest_audit("g1", "bot-1")

        assert audit.execution_result != ExecutionOutcome.ERROR
        assert stored["snapshotHash"] == audit.snapshot_hash
        assert stored["skillLevel"] == "hard"
        assert stored["archetype"] == "backbone_builder"
        assert len(stored["scores"]) == len(stored["allOptions"])

    @pytest.mark.asyncio
    async def test_scores_line_up_with_options(self, engine):
        audit = await engine.execute_turn("g1", "bot-1")

        for option, score in zip(audit.all_options, audit.scores):
            if option.feasible:
                assert score is not None
            else:
                assert score is None

    @pytest.mark.asyncio
    async def test_events(self, engine, notifier):
        audit = await engine.execute_turn("g1", "bot-1")

        names = notifier.names()
        assert names[0] == THINKING_EVENT
        assert names[-1] == TURN_FINISHED_EVENT
        assert notifier.of(TURN_FINISHED_EVENT)[0].payload == {
            "playerId": "bot-1",
            "success": True,
            "executionResult": audit.execution_result.value,
        }

    @pytest.mark.asyncio
    async def test_same_game_turns_are_serialized(self, seeded_store, deck, notifier, grid):
        seeded_store.add_player("g1", "bot-2", is_bot=True, ai_difficulty="easy", ai_archetype="opportunist")
        executor = CountingExecutor(delay=0.02)
        engine = AIStrategyEngine(
            seeded_store, deck, notifier, grid, validator=RejectingValidator(), executor=executor,
        )

        await asyncio.gather(engine.execute_turn("g1", "bot-1"), engine.execute_turn("g1", "bot-2"))

        assert len(executor.plans) == 2
        assert executor.max_active == 1
        assert engine._game_locks == {}


class TestBuildPlan:
    def test_delivery_outcome(self, engine, make_snapshot):
        option = FeasibleOption.accepted("DeliverLoad-1", AIActionType.DELIVER_LOAD, "Deliver Coal", {
            "card_id": 4, "load_type": "Coal", "payment": 19,
        })

        plan = engine.build_plan(ScoredOption(option, 2.5), make_snapshot(), HARD, BACKBONE_BUILDER)

        assert [a.kind for a in plan.actions] == ["DeliverLoad"]
        assert plan.expected_outcome.cash_change == 19
        assert plan.expected_outcome.loads_delivered == 1
        assert plan.total_score == 2.5
        assert plan.skill_level == "hard"

    def test_build_into_new_major_city(self, engine, make_snapshot):
        option = FeasibleOption.accepted("BuildTrack-1", AIActionType.BUILD_TRACK, "Build", {
            "cost": 1,
            "segments": [{"from": {"row": 0, "col": 3}, "to": {"row": 1, "col": 3}, "cost": 1}],
        })

        plan = engine.build_plan(ScoredOption(option, 1.0), make_snapshot(), HARD, BACKBONE_BUILDER)

        assert plan.expected_outcome.cash_change == -1
        assert plan.expected_outcome.track_segments_built == 1
        assert plan.expected_outcome.new_major_cities_connected == 1


class TestInitialPlacement:
    @pytest.mark.asyncio
    async def test_places_once_at_a_major_city(self, engine, seeded_store):
        placed = await engine.place_initial_train("g1", "bot-1")

        assert placed is not None
        row, col, city = placed
        assert MAJOR_CITIES[city] == (row, col)
        player = await seeded_store.get_player("g1", "bot-1")
        assert (player["position_row"], player["position_col"]) == (row, col)

        assert await engine.place_initial_train("g1", "bot-1") is None
