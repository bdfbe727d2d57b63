"""
Integration tests - End-to-end workflow tests.

Tests the complete flow:
1. Seed a demo game
2. Place the bot's train
3. Take several bot turns
4. Read the audit back through the CLI
"""

import json
import random

import pytest

from ..bots.strategy_engine import AIStrategyEngine, ExecutionOutcome
from ..bots.turn_trigger import BotTurnTrigger
from ..cli import main
from ..engine_core.turn_executor import ACTION_EVENT


class TestFullGameFlow:
    """Several turns of a bot on the demo map."""

    @pytest.mark.asyncio
    async def test_bot_plays_several_turns(self, seeded_store, deck, notifier, grid):
        engine = AIStrategyEngine(seeded_store, deck, notifier, grid, rng=random.Random(11))
        trigger = BotTurnTrigger(engine, seeded_store)

        audits = []
        for _ in range(4):
            audits.append(await trigger.on_turn_change("g1", "bot-1"))

        assert all(a is not None for a in audits)
        assert all(a.execution_result != ExecutionOutcome.ERROR for a in audits)

        player = await seeded_store.get_player("g1", "bot-1")
        assert player["money"] >= 0
        assert player["position_row"] is not None

        track = await seeded_store.get_track_state("g1", "bot-1")
        if track is not None:
            assert track.turn_build_cost == 0
            assert track.total_cost <= 4 * 20

        assert len(notifier.of(ACTION_EVENT)) >= 4

    @pytest.mark.asyncio
    async def test_human_turn_is_skipped(self, seeded_store, deck, notifier, grid):
        trigger = BotTurnTrigger(AIStrategyEngine(seeded_store, deck, notifier, grid), seeded_store)

        assert await trigger.on_turn_change("g1", "human-1") is None
        assert notifier.events == []


class TestCli:
    """The CLI commands against a temp database."""

    def test_seed_take_turn_and_audit(self, tmp_path, capsys):
        db = str(tmp_path / "cli.db")

        main(["--db", db, "init-db"])
        main(["--db", db, "seed-demo", "--game", "demo", "--bots", "2", "--difficulty", "hard"])
        out = capsys.readouterr().out
        assert "Game created: demo" in out
        assert "bot: bot-2 (hard, backbone_builder)" in out

        main(["--db", db, "take-turn", "demo", "bot-1", "--seed", "5"])
        out = capsys.readouterr().out
        assert out.startswith("Turn 1: ")
        assert "attempts:" in out

        main(["--db", db, "audit", "demo", "bot-1"])
        audit = json.loads(capsys.readouterr().out)
        assert audit["playerId"] == "bot-1"
        assert audit["skillLevel"] == "hard"

    def test_take_turn_for_human_fails(self, tmp_path, capsys):
        db = str(tmp_path / "cli.db")
        main(["--db", db, "seed-demo"])

        with pytest.raises(SystemExit) as excinfo:
            main(["--db", db, "take-turn", "demo", "human-1"])

        assert excinfo.value.code == 1
        assert "Error: AI player human-1 not found" in capsys.readouterr().out

    def test_audit_missing(self, tmp_path, capsys):
        db = str(tmp_path / "cli.db")
        main(["--db", db, "seed-demo"])

        with pytest.raises(SystemExit):
            main(["--db", db, "audit", "demo", "bot-1"])

    def test_no_command_prints_help(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["--db", str(tmp_path / "cli.db")])
