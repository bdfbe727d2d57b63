"""
Scorer - Ranks feasible options for a bot.

Each option is rated on twelve dimensions. Every raw value lies in
[0, 1]; the final score is

    sum(value[d] * skill.weight(d) * archetype.multiplier(d))

over all dimensions. PassTurn is pinned to 0 and always ranked last.

Skill noise (shuffle, swap of the top two) is drawn from the random
source passed in, never from the global one, so a seeded source or a
noiseless profile gives repeatable rankings.
"""

from __future__ import annotations
import random
from typing import Any, Callable

from .profiles import ArchetypeProfile, ScoringDimension, SkillProfile
from ..engine_core.action import AIActionType, FeasibleOption, ScoredOption
from ..engine_core.state import (
    TRAIN_PROPERTIES,
    VICTORY_CASH,
    VICTORY_MAJOR_CITIES,
    TrainType,
    WorldSnapshot,
)

D = ScoringDimension

# Opponent within this many rows and cols of a build target counts as contesting it
CONTEST_RADIUS = 3


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class Scorer:
    """
    Scores and ranks options.

    Usage:
        scorer = Scorer()
        ranked = scorer.score(options, snapshot, HARD, BACKBONE_BUILDER, random.Random(7))
        best = scorer.select_best(ranked)
    """

    def score(
        self,
        options: list[FeasibleOption],
        snapshot: WorldSnapshot,
        skill: SkillProfile,
        archetype: ArchetypeProfile,
        rng: random.Random | None = None,
    ) -> list[ScoredOption]:
        """
        Score feasible options and return them best first.

        Infeasible options are dropped. PassTurn options come last.
        """
        rng = rng or random.Random()
        ranked: list[ScoredOption] = []
        passes: list[ScoredOption] = []

        for option in options:
            if not option.feasible:
                continue
            scored = self._score_option(option, snapshot, skill, archetype)
            option.score = scored.final_score
            (passes if option.kind == AIActionType.PASS_TURN else ranked).append(scored)

        ranked.sort(key=lambda s: (-s.final_score, s.option_id))
        self._apply_noise(ranked, skill, rng)
        return ranked + passes

    def select_best(self, scored: list[ScoredOption]) -> ScoredOption | None:
        return scored[0] if scored else None

    # =========================================================================
    # Scoring
    # =========================================================================

    def _score_option(
        self,
        option: FeasibleOption,
        snapshot: WorldSnapshot,
        skill: SkillProfile,
        archetype: ArchetypeProfile,
    ) -> ScoredOption:
        if option.kind == AIActionType.PASS_TURN:
            return ScoredOption(option=option, final_score=0.0, rationale="pass turn")

        values = self.evaluate_dimensions(option, snapshot)
        breakdown: dict[str, float] = {}
        total = 0.0
        for dimension in ScoringDimension:
            contribution = values.get(dimension, 0.0) * skill.weight(dimension) * archetype.multiplier(dimension)
            breakdown[dimension.value] = round(contribution, 4)
            total += contribution

        top = [
            f"{name}:{value:.2f}"
            for name, value in sorted(breakdown.items(), key=lambda kv: -kv[1])
            if value > 0.01
        ][:3]
        return ScoredOption(
            option=option,
            final_score=round(total, 4),
            breakdown=breakdown,
            rationale=", ".join(top) if top else "minimal scoring signal",
        )

    def _apply_noise(self, ranked: list[ScoredOption], skill: SkillProfile, rng: random.Random) -> None:
        """Shuffle and/or swap the top two in place, as the skill dictates."""
        if skill.random_choice_probability > 0 and rng.random() < skill.random_choice_probability:
            rng.shuffle(ranked)
        if skill.missed_option_probability > 0 and rng.random() < skill.missed_option_probability:
            if len(ranked) >= 2:
                ranked[0], ranked[1] = ranked[1], ranked[0]

    def evaluate_dimensions(self, option: FeasibleOption, snapshot: WorldSnapshot) -> dict[ScoringDimension, float]:
        """Raw [0, 1] value per dimension for one option."""
        evaluator = self._get_evaluator(option.kind)
        values: dict[ScoringDimension, float] = {}
        if evaluator:
            evaluator(option.params, snapshot, values)
        return {dimension: clamp(value) for dimension, value in values.items()}

    def _get_evaluator(self, kind: AIActionType) -> Callable[[dict[str, Any], WorldSnapshot, dict], None] | None:
        evaluators = {
            AIActionType.DELIVER_LOAD.value: self._eval_deliver,
            AIActionType.PICKUP_AND_DELIVER.value: self._eval_pickup,
            AIActionType.BUILD_TRACK.value: self._eval_build_track,
            AIActionType.BUILD_TOWARD_MAJOR_CITY.value: self._eval_build_major_city,
            AIActionType.UPGRADE_TRAIN.value: self._eval_upgrade,
        }
        return evaluators.get(kind.value)

    # =========================================================================
    # Dimension evaluators per action kind
    # =========================================================================

    def _eval_deliver(self, params: dict[str, Any], snapshot: WorldSnapshot, values: dict) -> None:
        payment = params.get("payment", 0)
        load = params.get("load_type")
        path_length = max(params.get("path_length", 1), 1)

        values[D.IMMEDIATE_INCOME] = payment / 25
        values[D.INCOME_PER_MILEPOST] = payment / (path_length * 5)

        demanded = {d.resource for card in snapshot.hand for d in card.demands}
        others = [l for l in snapshot.loads if l != load and l in demanded]
        values[D.MULTI_DELIVERY_POTENTIAL] = len(others) / 2

        values[D.VICTORY_PROGRESS] = (snapshot.money + payment) / VICTORY_CASH
        values[D.LOAD_SCARCITY] = 1.0 - snapshot.load_availability.get(load, 0) / 5
        values[D.RISK_EXPOSURE] = 0.8 - (len(snapshot.loads) - 1) * 0.2

    def _eval_pickup(self, params: dict[str, Any], snapshot: WorldSnapshot, values: dict) -> None:
        payment = params.get("payment") or 0
        load = params.get("load_type")
        path_length = max(params.get("path_length", 1), 1)

        values[D.IMMEDIATE_INCOME] = payment / 25 * 0.6
        values[D.INCOME_PER_MILEPOST] = payment / ((path_length + 5) * 3)
        values[D.MULTI_DELIVERY_POTENTIAL] = (snapshot.capacity - len(snapshot.loads) - 1) / 2

        matching = sum(1 for card in snapshot.hand for d in card.demands if d.resource == load)
        values[D.LOAD_COMBINATION_SCORE] = matching / 3
        values[D.LOAD_SCARCITY] = 1.0 - snapshot.load_availability.get(load, 0) / 5
        values[D.RISK_EXPOSURE] = 0.5 - len(snapshot.loads) * 0.15

    def _eval_build_track(self, params: dict[str, Any], snapshot: WorldSnapshot, values: dict) -> None:
        segments = len(params.get("segments", ()))
        cost = params.get("cost", 0)

        values[D.NETWORK_EXPANSION_VALUE] = segments / 8
        values[D.BACKBONE_ALIGNMENT] = 1.0 - (cost / segments if segments else 0) / 5
        values[D.RISK_EXPOSURE] = (snapshot.money - cost) / 50
        values[D.VICTORY_PROGRESS] = snapshot.connected_major_cities / VICTORY_MAJOR_CITIES * 0.3
        if self._target_contested(params, snapshot):
            values[D.COMPETITOR_BLOCKING] = 0.5

    def _target_contested(self, params: dict[str, Any], snapshot: WorldSnapshot) -> bool:
        row, col = params.get("target_row"), params.get("target_col")
        if row is None or col is None:
            return False
        for competitor in snapshot.competitors:
            position = competitor.position
            if position and abs(position.row - row) <= CONTEST_RADIUS and abs(position.col - col) <= CONTEST_RADIUS:
                return True
        return False

    def _eval_build_major_city(self, params: dict[str, Any], snapshot: WorldSnapshot, values: dict) -> None:
        segments = len(params.get("segments", ()))
        cost = params.get("cost", 0)

        values[D.NETWORK_EXPANSION_VALUE] = segments / 8 + 0.2
        values[D.MAJOR_CITY_PROXIMITY] = 0.8
        values[D.VICTORY_PROGRESS] = (snapshot.connected_major_cities + 1) / VICTORY_MAJOR_CITIES
        values[D.BACKBONE_ALIGNMENT] = 0.7 + segments / 20
        values[D.RISK_EXPOSURE] = (snapshot.money - cost) / 50

    def _eval_upgrade(self, params: dict[str, Any], snapshot: WorldSnapshot, values: dict) -> None:
        current = TRAIN_PROPERTIES[snapshot.train_type]
        target = TRAIN_PROPERTIES[TrainType(params["target_train_type"])]
        cost = params.get("cost", 0)
        speed_gain = target.speed - current.speed
        capacity_gain = target.capacity - current.capacity

        values[D.UPGRADE_ROI] = (speed_gain / 3 + capacity_gain) / (cost / 10) if cost else 0.0
        values[D.MULTI_DELIVERY_POTENTIAL] = 0.8 if capacity_gain > 0 else 0.2
        values[D.INCOME_PER_MILEPOST] = 0.6 if speed_gain > 0 else 0.1
        values[D.RISK_EXPOSURE] = (snapshot.money - cost) / 50
