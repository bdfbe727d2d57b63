"""
Turn Executor - Applies a validated plan to storage.

Execution is all-or-nothing:
1. One unit of work is opened for the whole plan
2. Each action re-reads the player row inside that unit and applies itself
3. The first failing action (or any storage error) rolls the unit back
4. Deck moves made before the failure are undone, newest first

A failure to open the unit of work is reported like any other storage
error: a failed result, never an exception.

Deck operations are not part of the database transaction, which is why
every draw, discard and reshuffle is recorded as it happens and
compensated on rollback.

Notifications go out only after commit: one `ai:action` per action,
then one `ai:turn-complete`.
"""

from __future__ import annotations
import time
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from .action import (
    AIActionType,
    ActionExecutionResult,
    TurnExecutionResult,
    TurnPlan,
)
from .map_grid import hex_distance
from .state import (
    MAX_BUILD_PER_TURN,
    TRAIN_PROPERTIES,
    TrackSegment,
    TrackState,
    find_demand,
    find_transition,
    parse_point_key,
    parse_train_type,
    point_key,
)
from ..errors import RejectionReason
from ..logging_config import get_logger

if TYPE_CHECKING:
    from .map_grid import MapGrid
    from .pathfinder import TrackPathfinder
    from ..storage.interfaces import DemandDeck, GameStore, Notifier, UnitOfWork

logger = get_logger(__name__)

ACTION_EVENT = "ai:action"
TURN_COMPLETE_EVENT = "ai:turn-complete"

# Deck moves to undo on rollback
DEALT = "dealt"
DISCARDED = "discarded"
RESHUFFLED = "reshuffled"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class TurnExecutor:
    """
    Executes TurnPlans against a GameStore.

    Usage:
        executor = TurnExecutor(store, deck, notifier, pathfinder)
        result = await executor.execute(plan, game_id, player_id)
        if not result.success:
            print(result.error)
    """

    def __init__(
        self,
        store: GameStore,
        deck: DemandDeck,
        notifier: Notifier,
        pathfinder: TrackPathfinder | None = None,
        grid: MapGrid | None = None,
    ):
        self.store = store
        self.deck = deck
        self.notifier = notifier
        self.pathfinder = pathfinder
        self.grid = grid or (pathfinder.grid if pathfinder else None)

    async def execute(self, plan: TurnPlan, game_id: str, player_id: str) -> TurnExecutionResult:
        """
        Apply every action of the plan in one unit of work.

        Returns a failed result (never raises) when an action fails or
        storage errors out; nothing is committed in that case.
        """
        started = time.perf_counter()
        if not plan.actions:
            return TurnExecutionResult(success=True, total_duration_ms=_elapsed_ms(started))

        deck_moves: list[tuple[str, Any]] = []
        results: list[ActionExecutionResult] = []
        try:
            uow = await self.store.begin()
        except Exception as e:
            logger.warning("Could not begin unit of work for %s in %s: %s", player_id, game_id, e)
            return TurnExecutionResult(
                success=False,
                error=f"Begin: {e}",
                total_duration_ms=_elapsed_ms(started),
            )

        failed: ActionExecutionResult | None = None
        for action in plan.actions:
            action_started = time.perf_counter()
            handler = self._get_handler(action.kind)
            if handler is None:
                result = ActionExecutionResult.failure(
                    action.kind,
                    f"Unknown action type: {action.kind}",
                    error_code=RejectionReason.UNKNOWN_ACTION.value,
                )
            else:
                try:
                    result = await handler(uow, game_id, player_id, action.params, deck_moves)
                except Exception as e:
                    logger.warning("Action %s raised during execution: %s", action.kind, e)
                    result = ActionExecutionResult.failure(
                        action.kind, str(e), error_code=RejectionReason.STORAGE_ERROR.value,
                    )
            result.action_type = action.kind
            result.duration_ms = _elapsed_ms(action_started)
            results.append(result)
            if not result.success:
                failed = result
                break

        if failed is None:
            try:
                await uow.commit()
            except Exception as e:
                logger.warning("Commit failed for %s in %s: %s", player_id, game_id, e)
                failed = ActionExecutionResult.failure(
                    "Commit", str(e), error_code=RejectionReason.STORAGE_ERROR.value,
                )

        if failed is not None:
            await self._rollback(uow, deck_moves)
            logger.info("Plan rolled back for %s: %s: %s", player_id, failed.action_type, failed.error)
            return TurnExecutionResult(
                success=False,
                action_results=results,
                error=f"{failed.action_type}: {failed.error}",
                total_duration_ms=_elapsed_ms(started),
            )

        for result in results:
            await self._emit(game_id, ACTION_EVENT, {"playerId": player_id, **result.event_payload})
        await self._emit(game_id, TURN_COMPLETE_EVENT, {
            "playerId": player_id,
            "success": True,
            "actionCount": len(results),
        })

        return TurnExecutionResult(
            success=True,
            action_results=results,
            total_duration_ms=_elapsed_ms(started),
        )

    async def _rollback(self, uow: UnitOfWork, deck_moves: list[tuple[str, Any]]) -> None:
        """Roll the unit back, then undo deck moves newest first."""
        try:
            await uow.rollback()
        except Exception:
            logger.exception("Rollback failed")

        for move, cards in reversed(deck_moves):
            try:
                if move == DEALT:
                    self.deck.return_dealt_card_to_top(cards)
                elif move == RESHUFFLED:
                    self.deck.undo_reshuffle(cards)
                else:
                    self.deck.return_discarded_card_to_dealt(cards)
            except Exception:
                logger.exception("Could not undo deck move %s of %s", move, cards)

    async def _emit(self, game_id: str, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.notifier.emit(game_id, event, payload)
        except Exception as e:
            logger.warning("Failed to emit %s for game %s: %s", event, game_id, e)

    def _get_handler(self, kind: str) -> Callable[..., Awaitable[ActionExecutionResult]] | None:
        """Get the storage handler for an action kind."""
        handlers = {
            AIActionType.DELIVER_LOAD.value: self._execute_deliver,
            AIActionType.PICKUP_AND_DELIVER.value: self._execute_pickup,
            AIActionType.BUILD_TRACK.value: self._execute_build,
            AIActionType.BUILD_TOWARD_MAJOR_CITY.value: self._execute_build,
            AIActionType.UPGRADE_TRAIN.value: self._execute_upgrade,
            AIActionType.PASS_TURN.value: self._execute_pass,
        }
        return handlers.get(kind)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _load_player(self, uow: UnitOfWork, game_id: str, player_id: str) -> dict[str, Any]:
        player = await uow.get_player(game_id, player_id)
        if player is None:
            raise LookupError(f"Player {player_id} not found in game {game_id}")
        return player

    def _stop_at(self, city: str | None, player: dict[str, Any]) -> dict[str, int]:
        """Position columns for a train stopping at a city's milepost nearest to it."""
        if self.grid is None or not city:
            return {}
        keys = self.grid.city_keys(city)
        if not keys:
            return {}
        row, col = player.get("position_row"), player.get("position_col")
        if row is None or col is None:
            anchor = self.grid.city_anchor(city)
            stop = anchor.key if anchor else min(keys)
        else:
            here = point_key(row, col)
            stop = min(keys, key=lambda k: (hex_distance(here, k), k))
        stop_row, stop_col = parse_point_key(stop)
        return {"position_row": stop_row, "position_col": stop_col}

    def _draw_replacement(self, deck_moves: list[tuple[str, Any]]) -> int | None:
        replacement = self.deck.draw_card()
        if replacement is None:
            reshuffled = self.deck.reshuffle()
            if reshuffled:
                deck_moves.append((RESHUFFLED, reshuffled))
                replacement = self.deck.draw_card()
        if replacement is None:
            return None
        deck_moves.append((DEALT, replacement.card_id))
        return replacement.card_id

    async def _execute_deliver(
        self,
        uow: UnitOfWork,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        deck_moves: list[tuple[str, Any]],
    ) -> ActionExecutionResult:
        kind = AIActionType.DELIVER_LOAD.value
        player = await self._load_player(uow, game_id, player_id)
        load = params.get("load_type")
        card_id = params.get("card_id")
        loads = list(player["loads"])
        hand = list(player["hand"])

        if load not in loads:
            return ActionExecutionResult.failure(
                kind, f"{load} not on train", error_code=RejectionReason.NOT_CARRIED.value,
            )
        if card_id not in hand:
            return ActionExecutionResult.failure(
                kind, f"Demand card {card_id} not in player's hand",
                error_code=RejectionReason.CARD_NOT_FOUND.value,
            )
        card = self.deck.get_card(card_id)
        demand = find_demand(card, load, params.get("demand_index")) if card else None
        if demand is None:
            return ActionExecutionResult.failure(
                kind, f"Demand card {card_id} has no demand for {load}",
                error_code=RejectionReason.NO_SUCH_DEMAND.value,
            )

        loads.remove(load)
        self.deck.discard_card(card_id)
        deck_moves.append((DISCARDED, card_id))
        hand.remove(card_id)

        replacement = self._draw_replacement(deck_moves)
        if replacement is not None:
            hand.append(replacement)

        await uow.update_player(
            game_id, player_id,
            money=int(player["money"]) + demand.payment,
            loads=loads,
            hand=hand,
            **self._stop_at(demand.city, player),
        )
        await uow.adjust_load_availability(game_id, load, 1)

        return ActionExecutionResult.ok(kind, {
            "action": "deliver",
            "loadType": load,
            "city": demand.city,
            "payment": demand.payment,
        })

    async def _execute_pickup(
        self,
        uow: UnitOfWork,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        deck_moves: list[tuple[str, Any]],
    ) -> ActionExecutionResult:
        kind = AIActionType.PICKUP_AND_DELIVER.value
        player = await self._load_player(uow, game_id, player_id)
        load = params.get("load_type")
        loads = list(player["loads"])
        capacity = TRAIN_PROPERTIES[parse_train_type(player.get("train_type"))].capacity

        if len(loads) >= capacity:
            return ActionExecutionResult.failure(
                kind, f"Train at capacity ({len(loads)}/{capacity} loads)",
                error_code=RejectionReason.AT_CAPACITY.value,
            )

        loads.append(load)
        await uow.update_player(
            game_id, player_id,
            loads=loads,
            **self._stop_at(params.get("pickup_city"), player),
        )
        await uow.adjust_load_availability(game_id, load, -1)

        return ActionExecutionResult.ok(kind, {
            "action": "pickup",
            "loadType": load,
            "city": params.get("pickup_city"),
        })

    async def _execute_build(
        self,
        uow: UnitOfWork,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        deck_moves: list[tuple[str, Any]],
    ) -> ActionExecutionResult:
        kind = AIActionType.BUILD_TRACK.value
        player = await self._load_player(uow, game_id, player_id)
        money = int(player["money"])
        state = await uow.get_track_state(game_id, player_id) or TrackState()

        if "segments" in params:
            segments = [TrackSegment.from_dict(s) for s in params["segments"]]
        else:
            segments = await self._plan_segments(game_id, player_id, params, state, money)

        if not segments:
            return ActionExecutionResult.ok(kind, {"action": "buildTrack", "segmentCount": 0, "cost": 0})

        cost = int(params.get("cost", sum(s.cost for s in segments)))
        remaining = MAX_BUILD_PER_TURN - state.turn_build_cost
        if cost > remaining:
            return ActionExecutionResult.failure(
                kind, f"Build budget exhausted: {cost}M build with {remaining}M of {MAX_BUILD_PER_TURN}M left",
                error_code=RejectionReason.BUDGET_EXHAUSTED.value,
            )
        if money < cost:
            return ActionExecutionResult.failure(
                kind, f"Insufficient funds: need {cost}M, have {money}M",
                error_code=RejectionReason.INSUFFICIENT_FUNDS.value,
            )

        owned = {s.edge for s in state.segments}
        new_segments = [s for s in segments if s.edge not in owned]
        await uow.save_track_state(game_id, player_id, TrackState(
            segments=state.segments + tuple(new_segments),
            total_cost=state.total_cost + cost,
            turn_build_cost=state.turn_build_cost + cost,
        ))
        await uow.update_player(game_id, player_id, money=money - cost)

        return ActionExecutionResult.ok(kind, {
            "action": "buildTrack",
            "segmentCount": len(new_segments),
            "cost": cost,
            "segments": [s.to_dict() for s in new_segments],
        })

    async def _plan_segments(
        self,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        state: TrackState,
        money: int,
    ) -> list[TrackSegment]:
        """Segments for a build action that names only a target milepost."""
        if self.pathfinder is None or params.get("target_row") is None:
            return []
        budget = min(MAX_BUILD_PER_TURN - state.turn_build_cost, money)
        built = await self.pathfinder.build_track_to_target(
            game_id, player_id, int(params["target_row"]), int(params["target_col"]), budget,
        )
        return built.segments if built else []

    async def _execute_upgrade(
        self,
        uow: UnitOfWork,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        deck_moves: list[tuple[str, Any]],
    ) -> ActionExecutionResult:
        kind = AIActionType.UPGRADE_TRAIN.value
        player = await self._load_player(uow, game_id, player_id)
        current = parse_train_type(player.get("train_type"))
        money = int(player["money"])
        loads = list(player["loads"])
        change = params.get("kind", "upgrade")
        target_name = params.get("target_train_type")

        transition = None
        for candidate in TRAIN_PROPERTIES:
            if candidate.value == target_name:
                transition = find_transition(current, candidate, change)
        if transition is None:
            return ActionExecutionResult.failure(
                kind, f"Invalid {change} from {current.value} to {target_name}",
                error_code=RejectionReason.INVALID_TRANSITION.value,
            )

        if money < transition.cost:
            return ActionExecutionResult.failure(
                kind, f"Insufficient funds: need {transition.cost}M, have {money}M",
                error_code=RejectionReason.INSUFFICIENT_FUNDS.value,
            )

        new_capacity = TRAIN_PROPERTIES[transition.target].capacity
        if len(loads) > new_capacity:
            return ActionExecutionResult.failure(
                kind, f"Cannot change to {transition.target.value}: carrying {len(loads)} loads "
                f"but new capacity is {new_capacity}",
                error_code=RejectionReason.CAPACITY_EXCEEDED.value,
            )

        await uow.update_player(
            game_id, player_id,
            train_type=transition.target.value,
            money=money - transition.cost,
        )
        return ActionExecutionResult.ok(kind, {
            "action": "upgrade",
            "targetTrainType": transition.target.value,
            "cost": transition.cost,
        })

    async def _execute_pass(
        self,
        uow: UnitOfWork,
        game_id: str,
        player_id: str,
        params: dict[str, Any],
        deck_moves: list[tuple[str, Any]],
    ) -> ActionExecutionResult:
        return ActionExecutionResult.ok(AIActionType.PASS_TURN.value, {"action": "pass"})
