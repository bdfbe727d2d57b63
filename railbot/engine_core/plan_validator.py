"""
Plan Validator - Replays a plan against a simulation of the bot.

The validator is the last check before anything is written. It seeds a
small mutable simulation from the snapshot (cash, loads, train class,
track spend, cards used, availability) and applies each plan action to
it in order, so later actions see the effects of earlier ones:

    [Deliver Wine for 30M, BuildTrack 15M] at 5M cash
    -> 5M, 35M after delivery, 20M after building: ok

Rules enforced across actions:
- One 20M track budget per turn, shared by every build action; a build
  that would take the spend past it is rejected, never shortened
- A delivery must match a demand on its card, which sets the payment
- No track after an upgrade, no upgrade after track
- A crossgrade is allowed after building, up to 15M of track
- A demand card can be consumed only once

Validation never touches storage.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable

from .action import AIActionType, TurnPlan, TurnPlanAction, ValidationResult
from .state import (
    CROSSGRADE_TRACK_LIMIT,
    MAX_BUILD_PER_TURN,
    TRAIN_PROPERTIES,
    TrainType,
    WorldSnapshot,
    find_demand,
    find_transition,
)
from ..errors import Rejection, RejectionReason
from ..logging_config import get_logger

logger = get_logger(__name__)

Handler = Callable[["PlanSimulation", dict[str, Any], WorldSnapshot], "Rejection | None"]


@dataclass
class PlanSimulation:
    """Mutable stand-in for the bot while a plan is replayed."""
    money: int
    loads: list[str]
    train_type: TrainType
    track_spend: int
    availability: dict[str, int]
    used_cards: set[int] = field(default_factory=set)
    upgraded: bool = False
    built: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: WorldSnapshot) -> PlanSimulation:
        return cls(
            money=snapshot.money,
            loads=list(snapshot.loads),
            train_type=snapshot.train_type,
            track_spend=snapshot.turn_build_cost,
            availability=dict(snapshot.load_availability),
        )

    @property
    def capacity(self) -> int:
        return TRAIN_PROPERTIES[self.train_type].capacity


def _reject(reason: RejectionReason, message: str) -> Rejection:
    return Rejection(reason, message)


class PlanValidator:
    """
    Validates TurnPlans.

    Usage:
        result = PlanValidator().validate(plan, snapshot)
        if not result.ok:
            print(result.reason)   # "Action 2 (BuildTrack): ..."
    """

    def validate(self, plan: TurnPlan, snapshot: WorldSnapshot) -> ValidationResult:
        """Replay every action; stop at the first one that is not legal."""
        sim = PlanSimulation.from_snapshot(snapshot)

        for index, action in enumerate(plan.actions, start=1):
            rejection = self._validate_action(sim, action, snapshot)
            if rejection is not None:
                result = ValidationResult.invalid(index, action.kind, rejection)
                logger.debug("Plan rejected: %s", result.reason)
                return result

        return ValidationResult.valid()

    def _validate_action(self, sim: PlanSimulation, action: TurnPlanAction, snapshot: WorldSnapshot) -> Rejection | None:
        handler = self._get_handler(action.kind)
        if handler is None:
            return _reject(RejectionReason.UNKNOWN_ACTION, f"Unknown action type: {action.kind}")
        return handler(sim, action.params, snapshot)

    def _get_handler(self, kind: str) -> Handler | None:
        """Get the simulation handler for an action kind."""
        handlers = {
            AIActionType.DELIVER_LOAD.value: self._check_deliver,
            AIActionType.PICKUP_AND_DELIVER.value: self._check_pickup,
            AIActionType.BUILD_TRACK.value: self._check_build,
            AIActionType.BUILD_TOWARD_MAJOR_CITY.value: self._check_build,
            AIActionType.UPGRADE_TRAIN.value: self._check_upgrade,
            AIActionType.PASS_TURN.value: self._check_pass,
        }
        return handlers.get(kind)

    # =========================================================================
    # Handlers
    # =========================================================================

    def _check_deliver(self, sim: PlanSimulation, params: dict[str, Any], snapshot: WorldSnapshot) -> Rejection | None:
        card_id = params.get("card_id")
        load = params.get("load_type")

        card = snapshot.card(card_id) if card_id is not None else None
        if card is None:
            return _reject(RejectionReason.CARD_NOT_FOUND, f"Demand card {card_id} not found in hand")
        if card_id in sim.used_cards:
            return _reject(RejectionReason.ALREADY_USED, f"Demand card {card_id} already used in this plan")
        demand = find_demand(card, load, params.get("demand_index"))
        if demand is None:
            return _reject(RejectionReason.NO_SUCH_DEMAND, f"Demand card {card_id} has no demand for {load}")
        if load not in sim.loads:
            return _reject(RejectionReason.NOT_CARRIED, f"{load} not currently carried")

        sim.loads.remove(load)
        sim.money += demand.payment
        sim.used_cards.add(card_id)
        return None

    def _check_pickup(self, sim: PlanSimulation, params: dict[str, Any], snapshot: WorldSnapshot) -> Rejection | None:
        load = params.get("load_type")
        if len(sim.loads) >= sim.capacity:
            return _reject(
                RejectionReason.AT_CAPACITY,
                f"Train at capacity ({len(sim.loads)}/{sim.capacity} loads)",
            )
        if sim.availability.get(load, 0) <= 0:
            return _reject(RejectionReason.NONE_AVAILABLE, f"{load}: none available")

        sim.loads.append(load)
        sim.availability[load] -= 1
        return None

    def _check_build(self, sim: PlanSimulation, params: dict[str, Any], snapshot: WorldSnapshot) -> Rejection | None:
        if sim.upgraded:
            return _reject(RejectionReason.BUILD_AFTER_UPGRADE, "Cannot build track after upgrading this turn")
        if sim.money <= 0:
            return _reject(RejectionReason.INSUFFICIENT_FUNDS, f"Insufficient funds: {sim.money}M cash")
        remaining = MAX_BUILD_PER_TURN - sim.track_spend
        if remaining <= 0:
            return _reject(
                RejectionReason.BUDGET_EXHAUSTED,
                f"Build budget exhausted: {sim.track_spend}M of {MAX_BUILD_PER_TURN}M already spent",
            )

        cost = int(params.get("cost", 0))
        if cost > remaining:
            return _reject(
                RejectionReason.BUDGET_EXHAUSTED,
                f"Build budget exhausted: {cost}M build with {remaining}M of {MAX_BUILD_PER_TURN}M left",
            )
        if cost > sim.money:
            return _reject(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Insufficient funds: need {cost}M, have {sim.money}M",
            )

        sim.track_spend += cost
        sim.money -= cost
        sim.built = True
        return None

    def _check_upgrade(self, sim: PlanSimulation, params: dict[str, Any], snapshot: WorldSnapshot) -> Rejection | None:
        kind = params.get("kind", "upgrade")
        try:
            target = TrainType(params.get("target_train_type"))
        except ValueError:
            target = None

        if kind == "crossgrade":
            if sim.track_spend > CROSSGRADE_TRACK_LIMIT:
                return _reject(
                    RejectionReason.CROSSGRADE_OVERSPEND,
                    f"Cannot crossgrade after spending {sim.track_spend}M on track "
                    f"(limit {CROSSGRADE_TRACK_LIMIT}M)",
                )
        elif sim.built:
            return _reject(RejectionReason.UPGRADE_AFTER_BUILD, "Cannot upgrade after building track this turn")

        if sim.upgraded:
            return _reject(RejectionReason.ALREADY_UPGRADED, "Already upgraded this turn")

        transition = find_transition(sim.train_type, target, kind) if target else None
        if transition is None:
            return _reject(
                RejectionReason.INVALID_TRANSITION,
                f"Invalid {kind} from {sim.train_type.value} to {params.get('target_train_type')}",
            )

        if sim.money < transition.cost:
            label = "crossgrade" if kind == "crossgrade" else "upgrade"
            return _reject(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Insufficient funds for {label}: need {transition.cost}M, have {sim.money}M",
            )

        new_capacity = TRAIN_PROPERTIES[target].capacity
        if len(sim.loads) > new_capacity:
            return _reject(
                RejectionReason.CAPACITY_EXCEEDED,
                f"Cannot change to {target.value}: carrying {len(sim.loads)} loads "
                f"but new capacity is {new_capacity}",
            )

        sim.train_type = target
        sim.money -= transition.cost
        sim.upgraded = True
        return None

    def _check_pass(self, sim: PlanSimulation, params: dict[str, Any], snapshot: WorldSnapshot) -> Rejection | None:
        return None
