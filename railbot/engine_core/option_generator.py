"""
Option Generator - Enumerates every candidate action for a bot turn.

The option generator is used by:
1. The strategy engine, to build the candidate list for scoring
2. The audit, which keeps rejected options with their reasons

Design: Generates FeasibleOption objects for every action kind, feasible
or not. Rejected options carry a Rejection so the audit can explain them.
Exactly one PassTurn is always emitted, last.

Generation is pure: it reads the snapshot and asks the pathfinder for
routes, nothing else.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any

from .action import AIActionType, FeasibleOption
from .pathfinder import TrackPathfinder
from .state import (
    CROSSGRADE_TRACK_LIMIT,
    MAX_BUILD_PER_TURN,
    TRAIN_PROPERTIES,
    TRAIN_TRANSITIONS,
    Demand,
    WorldSnapshot,
)
from ..errors import RejectionReason


@dataclass
class OptionGenerator:
    """
    Generates candidate options for the bot described by a snapshot.

    Usage:
        generator = OptionGenerator(pathfinder)
        options = generator.generate(snapshot)
    """
    pathfinder: TrackPathfinder
    _counters: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def generate(self, snapshot: WorldSnapshot) -> list[FeasibleOption]:
        """
        Generate all options for this turn.

        Returns feasible and infeasible options; PassTurn is always the
        last element.
        """
        self._counters = {}
        reachable = self._reachable(snapshot)

        options: list[FeasibleOption] = []
        options.extend(self._generate_delivery_options(snapshot, reachable))
        options.extend(self._generate_pickup_options(snapshot, reachable))
        options.extend(self._generate_build_track_options(snapshot))
        options.extend(self._generate_upgrade_options(snapshot))
        options.extend(self._generate_major_city_options(snapshot))

        # Pass is always available
        options.append(FeasibleOption.accepted(
            self._next_id(AIActionType.PASS_TURN),
            AIActionType.PASS_TURN,
            "Pass turn - no action taken",
        ))
        return options

    def _next_id(self, kind: AIActionType) -> str:
        n = self._counters.get(kind.value, 0) + 1
        self._counters[kind.value] = n
        return f"{kind.value}-{n}"

    # =========================================================================
    # Network helpers
    # =========================================================================

    def _reachable(self, snapshot: WorldSnapshot) -> dict[str, int]:
        """Point key -> hops from the bot over its own track."""
        if snapshot.position is None:
            return {}
        return self.pathfinder.reachable_points(snapshot.position.key, snapshot.track_segments)

    def _city_distance(self, snapshot: WorldSnapshot, city: str, reachable: dict[str, int]) -> int | None:
        """Hops to the nearest milepost of a city, or None if unreachable."""
        distances = [reachable[k] for k in snapshot.grid.city_keys(city) if k in reachable]
        return min(distances) if distances else None

    def _on_network(self, snapshot: WorldSnapshot, city: str) -> bool:
        return bool(snapshot.grid.city_keys(city) & snapshot.network_points)

    def _build_budget(self, snapshot: WorldSnapshot) -> int:
        return min(MAX_BUILD_PER_TURN - snapshot.turn_build_cost, snapshot.money)

    def _build_rejection(self, snapshot: WorldSnapshot) -> tuple[RejectionReason, str] | None:
        """Why no track can be built at all this turn, if that is the case."""
        if snapshot.money <= 0:
            return RejectionReason.INSUFFICIENT_FUNDS, f"Insufficient funds: {snapshot.money}M cash"
        if snapshot.turn_build_cost >= MAX_BUILD_PER_TURN:
            return (
                RejectionReason.BUDGET_EXHAUSTED,
                f"Build budget exhausted: {snapshot.turn_build_cost}M already spent this turn",
            )
        return None

    def _starts_for(self, snapshot: WorldSnapshot, target_key: str, exclude_city: str | None = None) -> set[str]:
        """Own network, or the major city nearest the target when there is none."""
        if snapshot.network_points:
            return set(snapshot.network_points)
        city = self.pathfinder.nearest_major_city(target_key, exclude=exclude_city)
        return set(city.points) if city else set()

    def _build_toward(
        self,
        snapshot: WorldSnapshot,
        kind: AIActionType,
        description: str,
        starts: set[str],
        target_key: str,
        params: dict[str, Any],
    ) -> FeasibleOption:
        option_id = self._next_id(kind)
        blocked = self._build_rejection(snapshot)
        if blocked:
            return FeasibleOption.rejected(option_id, kind, description, *blocked, params=params)

        segments = self.pathfinder.compute_build_segments(
            starts,
            target_key,
            snapshot.track_segments,
            snapshot.other_segments,
            self._build_budget(snapshot),
        )
        if not segments:
            return FeasibleOption.rejected(
                option_id, kind, description,
                RejectionReason.NO_PATH,
                f"No affordable path toward {params.get('target_city')}",
                params=params,
            )

        cost = sum(s.cost for s in segments)
        params = dict(params, segments=[s.to_dict() for s in segments], cost=cost)
        return FeasibleOption.accepted(
            option_id, kind, f"{description} ({cost}M, {len(segments)} segments)", params,
        )

    # =========================================================================
    # Generators per action kind
    # =========================================================================

    def _generate_delivery_options(self, snapshot: WorldSnapshot, reachable: dict[str, int]) -> list[FeasibleOption]:
        """One option per hand demand whose load is on the train."""
        options = []
        for card in snapshot.hand:
            for index, demand in enumerate(card.demands):
                if demand.resource not in snapshot.loads:
                    continue
                description = f"Deliver {demand.resource} to {demand.city} for {demand.payment}M"
                distance = self._city_distance(snapshot, demand.city, reachable)
                params = {
                    "card_id": card.card_id,
                    "demand_index": index,
                    "load_type": demand.resource,
                    "city": demand.city,
                    "payment": demand.payment,
                }
                option_id = self._next_id(AIActionType.DELIVER_LOAD)
                if distance is None:
                    options.append(FeasibleOption.rejected(
                        option_id, AIActionType.DELIVER_LOAD, description,
                        RejectionReason.NOT_CONNECTED,
                        f"{demand.city} not connected to track network",
                        params=params,
                    ))
                    continue
                params["path_length"] = distance
                options.append(FeasibleOption.accepted(option_id, AIActionType.DELIVER_LOAD, description, params))
        return options

    def _best_demand(self, snapshot: WorldSnapshot, resource: str) -> tuple[int, int, Demand] | None:
        """Highest-paying hand demand for a resource: (card id, index, demand)."""
        best = None
        for card in snapshot.hand:
            for index, demand in enumerate(card.demands):
                if demand.resource != resource:
                    continue
                if best is None or demand.payment > best[2].payment:
                    best = (card.card_id, index, demand)
        return best

    def _generate_pickup_options(self, snapshot: WorldSnapshot, reachable: dict[str, int]) -> list[FeasibleOption]:
        """One option per known resource the bot is not already carrying."""
        options = []
        capacity = snapshot.capacity
        for resource in sorted(snapshot.load_availability):
            if resource in snapshot.loads:
                continue

            target = self._best_demand(snapshot, resource)
            params: dict[str, Any] = {"load_type": resource}
            if target:
                card_id, index, demand = target
                params.update(card_id=card_id, demand_index=index, deliver_city=demand.city, payment=demand.payment)
                description = f"Pick up {resource}, deliver to {demand.city} for {demand.payment}M"
            else:
                params.update(card_id=None, demand_index=None, deliver_city=None, payment=0)
                description = f"Pick up {resource}"

            option_id = self._next_id(AIActionType.PICKUP_AND_DELIVER)
            if snapshot.load_availability.get(resource, 0) <= 0:
                options.append(FeasibleOption.rejected(
                    option_id, AIActionType.PICKUP_AND_DELIVER, description,
                    RejectionReason.NONE_AVAILABLE,
                    f"{resource} none available globally",
                    params=params,
                ))
                continue

            if len(snapshot.loads) >= capacity:
                options.append(FeasibleOption.rejected(
                    option_id, AIActionType.PICKUP_AND_DELIVER, description,
                    RejectionReason.AT_CAPACITY,
                    f"Train at capacity: train is full ({len(snapshot.loads)}/{capacity} loads)",
                    params=params,
                ))
                continue

            supply = []
            for city in snapshot.grid.supply_cities(resource):
                distance = self._city_distance(snapshot, city, reachable)
                if distance is not None:
                    supply.append((distance, city))
            if not supply:
                options.append(FeasibleOption.rejected(
                    option_id, AIActionType.PICKUP_AND_DELIVER, description,
                    RejectionReason.NOT_CONNECTED,
                    f"No {resource} supply city connected to track network",
                    params=params,
                ))
                continue

            distance, pickup_city = min(supply)
            params.update(pickup_city=pickup_city, path_length=distance)
            options.append(FeasibleOption.accepted(
                option_id, AIActionType.PICKUP_AND_DELIVER, f"{description} (from {pickup_city})", params,
            ))
        return options

    def _generate_build_track_options(self, snapshot: WorldSnapshot) -> list[FeasibleOption]:
        """Build toward each demand city not yet on the network."""
        options = []
        seen: set[str] = set()
        for card in snapshot.hand:
            for demand in card.demands:
                if demand.city in seen or self._on_network(snapshot, demand.city):
                    continue
                seen.add(demand.city)
                anchor = snapshot.grid.city_anchor(demand.city)
                if anchor is None:
                    continue
                options.append(self._build_toward(
                    snapshot,
                    AIActionType.BUILD_TRACK,
                    f"Build track toward {demand.city}",
                    self._starts_for(snapshot, anchor.key, exclude_city=demand.city),
                    anchor.key,
                    {"target_city": demand.city, "target_row": anchor.row, "target_col": anchor.col},
                ))

        if not snapshot.track_segments:
            option = self._nearest_major_city_option(snapshot)
            if option is not None:
                options.append(option)
        return options

    def _nearest_major_city_option(self, snapshot: WorldSnapshot) -> FeasibleOption | None:
        """
        First track for a bot with no network: start at the major city
        nearest the train and head for the best-paying demand city (or the
        next major city when the hand is empty).
        """
        grid = snapshot.grid
        demands = sorted(
            (d for card in snapshot.hand for d in card.demands),
            key=lambda d: (-d.payment, d.city),
        )
        reference = snapshot.position.key if snapshot.position else None
        if reference is None and demands:
            anchor = grid.city_anchor(demands[0].city)
            reference = anchor.key if anchor else None
        if reference is None:
            return None

        origin = self.pathfinder.nearest_major_city(reference)
        if origin is None:
            return None

        target = next(
            (grid.city_anchor(d.city) for d in demands if d.city != origin.name and grid.city_anchor(d.city)),
            None,
        )
        if target is None:
            other = self.pathfinder.nearest_major_city(origin.center, exclude=origin.name)
            target = grid.get_key(other.center) if other else None
        if target is None:
            return None

        return self._build_toward(
            snapshot,
            AIActionType.BUILD_TRACK,
            f"Start network at {origin.name} toward {target.city_name}",
            set(origin.points),
            target.key,
            {
                "target_city": target.city_name,
                "target_row": target.row,
                "target_col": target.col,
                "origin_city": origin.name,
            },
        )

    def _generate_upgrade_options(self, snapshot: WorldSnapshot) -> list[FeasibleOption]:
        """One option per legal train transition."""
        options = []
        loads = len(snapshot.loads)
        for transition in TRAIN_TRANSITIONS[snapshot.train_type]:
            verb = "Upgrade" if transition.kind == "upgrade" else "Crossgrade"
            description = f"{verb} to {transition.target.value} ({transition.cost}M)"
            params = {
                "kind": transition.kind,
                "target_train_type": transition.target.value,
                "cost": transition.cost,
            }
            option_id = self._next_id(AIActionType.UPGRADE_TRAIN)
            new_capacity = TRAIN_PROPERTIES[transition.target].capacity

            if snapshot.money < transition.cost:
                reason = RejectionReason.INSUFFICIENT_FUNDS
                message = f"Insufficient funds: need {transition.cost}M, have {snapshot.money}M"
            elif transition.kind == "upgrade" and snapshot.turn_build_cost > 0:
                reason = RejectionReason.UPGRADE_AFTER_BUILD
                message = "Cannot upgrade after building track this turn"
            elif transition.kind == "crossgrade" and snapshot.turn_build_cost > CROSSGRADE_TRACK_LIMIT:
                reason = RejectionReason.CROSSGRADE_OVERSPEND
                message = f"Cannot crossgrade after spending {snapshot.turn_build_cost}M on track"
            elif loads > new_capacity:
                reason = RejectionReason.CAPACITY_EXCEEDED
                message = f"Carrying {loads} loads but new capacity is {new_capacity}"
            else:
                options.append(FeasibleOption.accepted(option_id, AIActionType.UPGRADE_TRAIN, description, params))
                continue

            options.append(FeasibleOption.rejected(
                option_id, AIActionType.UPGRADE_TRAIN, description, reason, message, params=params,
            ))
        return options

    def _generate_major_city_options(self, snapshot: WorldSnapshot) -> list[FeasibleOption]:
        """Build toward each major city not yet connected."""
        options = []
        for city in snapshot.grid.major_cities:
            if snapshot.major_city_connections.get(city.name):
                continue
            center = snapshot.grid.get_key(city.center)
            options.append(self._build_toward(
                snapshot,
                AIActionType.BUILD_TOWARD_MAJOR_CITY,
                f"Build toward {city.name}",
                self._starts_for(snapshot, city.center, exclude_city=city.name),
                city.center,
                {"target_city": city.name, "target_row": center.row, "target_col": center.col},
            ))
        return options


def generate(snapshot: WorldSnapshot, pathfinder: TrackPathfinder) -> list[FeasibleOption]:
    """Convenience function to generate all options for a snapshot."""
    return OptionGenerator(pathfinder).generate(snapshot)
