"""
Tests for plan execution.

Tests:
- Every action of a plan commits together or not at all
- Deck moves, reshuffles included, are undone newest first on rollback
- Payment and the build cap are enforced against stored state
- Deliveries and pickups move the train
- Notifications only after a successful commit
- End to end against SQLite
"""

import copy

import pytest

from ..engine_core.action import AIActionType, TurnPlan, TurnPlanAction
from ..engine_core.state import TrackState
from ..engine_core.turn_executor import ACTION_EVENT, TURN_COMPLETE_EVENT, TurnExecutor
from ..errors import RejectionReason
from ..maps.demo import DEMO_CARDS
from ..storage.deck import InMemoryDemandDeck
from ..storage.interfaces import GameStore, UnitOfWork
from .conftest import segment


class FakeUnitOfWork(UnitOfWork):
    """Works on a copy of the store's players; commit copies it back."""

    def __init__(self, store, fail_on_update=False):
        self.store = store
        self.players = copy.deepcopy(store.players)
        self.tracks = dict(store.tracks)
        self.fail_on_update = fail_on_update

    async def get_player(self, game_id, player_id):
        player = self.players.get(player_id)
        return copy.deepcopy(player) if player else None

    async def update_player(self, game_id, player_id, **fields):
        if self.fail_on_update:
            raise RuntimeError("disk full")
        self.players[player_id].update(fields)

    async def get_track_state(self, game_id, player_id):
        return self.tracks.get(player_id)

    async def save_track_state(self, game_id, player_id, state):
        self.tracks[player_id] = state

    async def adjust_load_availability(self, game_id, load_type, delta):
        self.store.log.append(f"chips {load_type} {delta:+d}")

    async def commit(self):
        self.store.players = self.players
        self.store.tracks = self.tracks
        self.store.log.append("COMMIT")

    async def rollback(self):
        self.store.log.append("ROLLBACK")


class FakeStore(GameStore):
    def __init__(self, players, fail_on_update=False):
        self.players = players
        self.tracks = {}
        self.log = []
        self.fail_on_update = fail_on_update

    async def begin(self):
        self.log.append("BEGIN")
        return FakeUnitOfWork(self, self.fail_on_update)

    async def get_track_state(self, game_id, player_id):
        return self.tracks.get(player_id)

    async def get_all_tracks(self, game_id):
        return dict(self.tracks)

    async def save_track_state(self, game_id, player_id, state):
        self.tracks[player_id] = state

    async def fetch_game_rows(self, game_id):
        return []

    async def load_availability(self, game_id):
        return {}

    async def get_ai_player(self, game_id, player_id):
        return None

    async def set_position(self, game_id, player_id, row, col):
        pass

    async def end_turn(self, game_id, player_id):
        pass

    async def save_audit(self, audit):
        pass

    async def latest_audit(self, game_id, player_id):
        return None


class BeginFailsStore(FakeStore):
    async def begin(self):
        raise RuntimeError("database is locked")


class RecordingDeck(InMemoryDemandDeck):
    def __init__(self, cards):
        super().__init__(cards)
        self.calls = []

    def return_dealt_card_to_top(self, card_id):
        self.calls.append(("return_dealt_card_to_top", card_id))
        super().return_dealt_card_to_top(card_id)

    def return_discarded_card_to_dealt(self, card_id):
        self.calls.append(("return_discarded_card_to_dealt", card_id))
        super().return_discarded_card_to_dealt(card_id)


def bot(**overrides):
    player = {"id": "bot-1", "money": 10, "hand": [4, 5, 6], "loads": ["Coal"], "train_type": "Freight"}
    player.update(overrides)
    return {"bot-1": player}


def deliver_coal():
    return TurnPlanAction.of(AIActionType.DELIVER_LOAD, card_id=4, load_type="Coal", city="Milano", payment=19)


@pytest.fixture
def recording_deck():
    deck = RecordingDeck(DEMO_CARDS)
    deck.mark_dealt([4, 5, 6])
    return deck


class TestAtomicity:
    @pytest.mark.asyncio
    async def test_empty_plan_touches_nothing(self, recording_deck, notifier):
        store = FakeStore(bot())

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(), "g1", "bot-1")

        assert result.success
        assert store.log == []
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_second_action_failure_rolls_back_first(self, recording_deck, notifier):
        store = FakeStore(bot())
        plan = TurnPlan(actions=[deliver_coal(), TurnPlanAction.of("Teleport")])

        result = await TurnExecutor(store, recording_deck, notifier).execute(plan, "g1", "bot-1")

        assert not result.success
        assert result.error == "Teleport: Unknown action type: Teleport"
        assert [r.success for r in result.action_results] == [True, False]
        assert result.action_results[1].error_code == RejectionReason.UNKNOWN_ACTION.value
        assert store.log[0] == "BEGIN"
        assert store.log[-1] == "ROLLBACK"
        assert "COMMIT" not in store.log
        assert store.players["bot-1"]["money"] == 10
        assert store.players["bot-1"]["loads"] == ["Coal"]

    @pytest.mark.asyncio
    async def test_deck_moves_are_undone_newest_first(self, recording_deck, notifier):
        store = FakeStore(bot())
        plan = TurnPlan(actions=[deliver_coal(), TurnPlanAction.of("Teleport")])

        await TurnExecutor(store, recording_deck, notifier).execute(plan, "g1", "bot-1")

        # Card 9 was drawn to replace the delivered card 4
        assert recording_deck.calls == [
            ("return_dealt_card_to_top", 9),
            ("return_discarded_card_to_dealt", 4),
        ]
        assert recording_deck.draw_pile[0] == 9
        assert recording_deck.discard_pile == ()
        assert recording_deck.dealt == frozenset({4, 5, 6})

    @pytest.mark.asyncio
    async def test_storage_error_is_reported_not_raised(self, recording_deck, notifier):
        store = FakeStore(bot(), fail_on_update=True)
        plan = TurnPlan(actions=[deliver_coal()])

        result = await TurnExecutor(store, recording_deck, notifier).execute(plan, "g1", "bot-1")

        assert not result.success
        assert "disk full" in result.error
        assert result.action_results[0].error_code == RejectionReason.STORAGE_ERROR.value
        assert store.log[-1] == "ROLLBACK"
        assert recording_deck.dealt == frozenset({4, 5, 6})

    @pytest.mark.asyncio
    async def test_begin_failure_is_reported_not_raised(self, recording_deck, notifier):
        store = BeginFailsStore(bot())

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan.pass_turn(), "g1", "bot-1")

        assert not result.success
        assert result.error == "Begin: database is locked"
        assert result.action_results == []
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_rollback_undoes_reshuffle(self, notifier):
        """Empty draw pile, card 3 discarded, cards 1 and 2 in hand."""
        deck = InMemoryDemandDeck(DEMO_CARDS[:3])
        for _ in range(3):
            deck.draw_card()
        deck.discard_card(3)
        store = FakeStore(bot(hand=[1, 2]))
        deliver = TurnPlanAction.of(AIActionType.DELIVER_LOAD, card_id=1, load_type="Coal", demand_index=0)

        result = await TurnExecutor(store, deck, notifier).execute(
            TurnPlan(actions=[deliver, TurnPlanAction.of("Teleport")]), "g1", "bot-1",
        )

        assert not result.success
        assert deck.draw_pile == ()
        assert deck.discard_pile == (3,)
        assert deck.dealt == frozenset({1, 2})

    @pytest.mark.asyncio
    async def test_reshuffle_feeds_replacement_card(self, notifier):
        deck = InMemoryDemandDeck(DEMO_CARDS[:3])
        for _ in range(3):
            deck.draw_card()
        deck.discard_card(3)
        store = FakeStore(bot(hand=[1, 2]))
        deliver = TurnPlanAction.of(AIActionType.DELIVER_LOAD, card_id=1, load_type="Coal")

        result = await TurnExecutor(store, deck, notifier).execute(TurnPlan(actions=[deliver]), "g1", "bot-1")

        assert result.success
        assert len(store.players["bot-1"]["hand"]) == 2
        assert store.players["bot-1"]["hand"][0] == 2
        assert len(deck.draw_pile) + len(deck.discard_pile) == 1


class TestNotifications:
    @pytest.mark.asyncio
    async def test_events_after_commit(self, recording_deck, notifier):
        store = FakeStore(bot())
        plan = TurnPlan(actions=[deliver_coal(), TurnPlanAction.of(AIActionType.PASS_TURN)])

        result = await TurnExecutor(store, recording_deck, notifier).execute(plan, "g1", "bot-1")

        assert result.success
        assert store.log[-1] == "COMMIT"
        assert notifier.names() == [ACTION_EVENT, ACTION_EVENT, TURN_COMPLETE_EVENT]
        delivery = notifier.of(ACTION_EVENT)[0].payload
        assert delivery == {"playerId": "bot-1", "action": "deliver", "loadType": "Coal", "city": "Milano", "payment": 19}
        assert notifier.of(TURN_COMPLETE_EVENT)[0].payload["actionCount"] == 2

    @pytest.mark.asyncio
    async def test_no_events_on_failure(self, recording_deck, notifier):
        store = FakeStore(bot(loads=[]))

        result = await TurnExecutor(store, recording_deck, notifier).execute(
            TurnPlan(actions=[deliver_coal()]), "g1", "bot-1",
        )

        assert not result.success
        assert result.action_results[0].error_code == RejectionReason.NOT_CARRIED.value
        assert notifier.events == []


class TestHandlers:
    @pytest.mark.asyncio
    async def test_pickup_at_capacity(self, recording_deck, notifier):
        store = FakeStore(bot(loads=["Coal", "Wine"]))
        pickup = TurnPlanAction.of(AIActionType.PICKUP_AND_DELIVER, load_type="Steel")

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[pickup]), "g1", "bot-1")

        assert result.action_results[0].error_code == RejectionReason.AT_CAPACITY.value

    @pytest.mark.asyncio
    async def test_upgrade(self, recording_deck, notifier):
        store = FakeStore(bot(money=25))
        upgrade = TurnPlanAction.of(AIActionType.UPGRADE_TRAIN, kind="upgrade", target_train_type="FastFreight")

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[upgrade]), "g1", "bot-1")

        assert result.success
        assert store.players["bot-1"]["train_type"] == "FastFreight"
        assert store.players["bot-1"]["money"] == 5

    @pytest.mark.asyncio
    async def test_build_skips_owned_edges(self, recording_deck, notifier):
        store = FakeStore(bot())
        store.tracks["bot-1"] = TrackState(segments=(segment((0, 0), (0, 1)),), total_cost=1)
        build = TurnPlanAction.of(
            AIActionType.BUILD_TRACK,
            segments=[segment((0, 0), (0, 1)).to_dict(), segment((0, 1), (0, 2)).to_dict()],
            cost=1,
        )

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[build]), "g1", "bot-1")

        assert result.success
        state = store.tracks["bot-1"]
        assert len(state.segments) == 2
        assert state.turn_build_cost == 1
        assert store.players["bot-1"]["money"] == 9

    @pytest.mark.asyncio
    async def test_payment_comes_from_card(self, recording_deck, notifier):
        store = FakeStore(bot())
        deliver = TurnPlanAction.of(AIActionType.DELIVER_LOAD, card_id=4, load_type="Coal", payment=999)

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[deliver]), "g1", "bot-1")

        assert result.success
        assert store.players["bot-1"]["money"] == 29

    @pytest.mark.asyncio
    async def test_delivery_needs_matching_demand(self, recording_deck, notifier):
        """Card 4 asks for Coal, Cheese and Steel, never Wine."""
        store = FakeStore(bot(loads=["Wine"]))
        deliver = TurnPlanAction.of(AIActionType.DELIVER_LOAD, card_id=4, load_type="Wine", payment=999)

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[deliver]), "g1", "bot-1")

        assert not result.success
        assert result.action_results[0].error_code == RejectionReason.NO_SUCH_DEMAND.value
        assert store.players["bot-1"]["money"] == 10

    @pytest.mark.asyncio
    async def test_build_past_cap_fails(self, recording_deck, notifier):
        store = FakeStore(bot(money=100))
        builds = [
            TurnPlanAction.of(AIActionType.BUILD_TRACK, segments=[segment((0, 0), (0, 1)).to_dict()], cost=15),
            TurnPlanAction.of(AIActionType.BUILD_TRACK, segments=[segment((0, 1), (0, 2)).to_dict()], cost=10),
        ]

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=builds), "g1", "bot-1")

        assert not result.success
        assert result.action_results[1].error_code == RejectionReason.BUDGET_EXHAUSTED.value
        assert "bot-1" not in store.tracks
        assert store.players["bot-1"]["money"] == 100

    @pytest.mark.asyncio
    async def test_build_counts_earlier_spend(self, recording_deck, notifier):
        store = FakeStore(bot(money=100))
        store.tracks["bot-1"] = TrackState(turn_build_cost=15, total_cost=15)
        build = TurnPlanAction.of(AIActionType.BUILD_TRACK, segments=[segment((0, 0), (0, 1)).to_dict()], cost=6)

        result = await TurnExecutor(store, recording_deck, notifier).execute(TurnPlan(actions=[build]), "g1", "bot-1")

        assert result.action_results[0].error_code == RejectionReason.BUDGET_EXHAUSTED.value
        assert store.tracks["bot-1"].turn_build_cost == 15

    @pytest.mark.asyncio
    async def test_pickup_moves_train_to_supply_city(self, recording_deck, notifier, grid):
        store = FakeStore(bot(loads=[], position_row=0, position_col=0))
        pickup = TurnPlanAction.of(AIActionType.PICKUP_AND_DELIVER, load_type="Coal", pickup_city="Ruhr")

        result = await TurnExecutor(store, recording_deck, notifier, grid=grid).execute(
            TurnPlan(actions=[pickup]), "g1", "bot-1",
        )

        assert result.success
        player = store.players["bot-1"]
        assert (player["position_row"], player["position_col"]) == (5, 6)
        assert player["loads"] == ["Coal"]


class TestSqlite:
    @pytest.mark.asyncio
    async def test_plan_commits_to_database(self, store, notifier):
        store.create_game("g1")
        store.set_load_availability("g1", {"Coal": 3})
        store.add_player("g1", "bot-1", money=10, hand=[4], loads=["Coal"], is_bot=True)
        deck = InMemoryDemandDeck(DEMO_CARDS)
        deck.mark_dealt([4])
        plan = TurnPlan(actions=[
            deliver_coal(),
            TurnPlanAction.of(AIActionType.BUILD_TRACK, segments=[segment((0, 0), (0, 1)).to_dict()], cost=1),
        ])

        result = await TurnExecutor(store, deck, notifier).execute(plan, "g1", "bot-1")

        assert result.success
        player = await store.get_player("g1", "bot-1")
        assert player["money"] == 28
        assert player["loads"] == []
        assert player["hand"] == [9]
        assert await store.load_availability("g1") == {"Coal": 4}
        track = await store.get_track_state("g1", "bot-1")
        assert track.turn_build_cost == 1

    @pytest.mark.asyncio
    async def test_delivery_moves_train_to_city(self, store, notifier, grid):
        store.create_game("g1")
        store.set_load_availability("g1", {"Coal": 3})
        store.add_player("g1", "bot-1", money=10, hand=[4], loads=["Coal"], is_bot=True)
        deck = InMemoryDemandDeck(DEMO_CARDS)
        deck.mark_dealt([4])

        result = await TurnExecutor(store, deck, notifier, grid=grid).execute(
            TurnPlan(actions=[deliver_coal()]), "g1", "bot-1",
        )

        assert result.success
        player = await store.get_player("g1", "bot-1")
        assert (player["position_row"], player["position_col"]) == (8, 12)
        assert player["position_x"] is not None

    @pytest.mark.asyncio
    async def test_failed_plan_leaves_database_untouched(self, store, notifier):
        store.create_game("g1")
        store.set_load_availability("g1", {"Coal": 3})
        store.add_player("g1", "bot-1", money=10, hand=[4], loads=["Coal"], is_bot=True)
        deck = InMemoryDemandDeck(DEMO_CARDS)
        deck.mark_dealt([4])
        upgrade = TurnPlanAction.of(AIActionType.UPGRADE_TRAIN, kind="upgrade", target_train_type="Superfreight")

        result = await TurnExecutor(store, deck, notifier).execute(
            TurnPlan(actions=[deliver_coal(), upgrade]), "g1", "bot-1",
        )

        assert not result.success
        player = await store.get_player("g1", "bot-1")
        assert player["money"] == 10
        assert player["hand"] == [4]
        assert await store.load_availability("g1") == {"Coal": 3}
        assert 4 in deck.dealt
        assert notifier.events == []
