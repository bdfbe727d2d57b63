"""
Bot Profiles - Skill levels and archetypes.

A bot's behaviour comes from two lookups:
- SkillProfile (easy / medium / hard): how much each scoring dimension
  counts, and how often the bot makes mistakes
- ArchetypeProfile: a strategic personality that multiplies those weights

Both tables are built once at import and never change. Callers look a
profile up and pass it to the Scorer explicitly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ScoringDimension(str, Enum):
    """Dimensions every option is scored on, in breakdown order."""
    IMMEDIATE_INCOME = "immediateIncome"
    INCOME_PER_MILEPOST = "incomePerMilepost"
    MULTI_DELIVERY_POTENTIAL = "multiDeliveryPotential"
    NETWORK_EXPANSION_VALUE = "networkExpansionValue"
    VICTORY_PROGRESS = "victoryProgress"
    COMPETITOR_BLOCKING = "competitorBlocking"
    RISK_EXPOSURE = "riskExposure"
    LOAD_SCARCITY = "loadScarcity"
    UPGRADE_ROI = "upgradeROI"
    BACKBONE_ALIGNMENT = "backboneAlignment"
    LOAD_COMBINATION_SCORE = "loadCombinationScore"
    MAJOR_CITY_PROXIMITY = "majorCityProximity"


class SkillLevel(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ArchetypeId(str, Enum):
    BACKBONE_BUILDER = "backbone_builder"
    FREIGHT_OPTIMIZER = "freight_optimizer"
    TRUNK_SPRINTER = "trunk_sprinter"
    CONTINENTAL_CONNECTOR = "continental_connector"
    OPPORTUNIST = "opportunist"


def _weights(*values: float) -> Mapping[ScoringDimension, float]:
    """Weights given positionally in ScoringDimension order."""
    return MappingProxyType(dict(zip(ScoringDimension, values)))


@dataclass(frozen=True)
class SkillProfile:
    """
    Scoring weights plus behavioural noise for one difficulty.

    random_choice_probability: chance the ranked list is shuffled
    missed_option_probability: chance the top two options are swapped
    """
    level: SkillLevel
    weights: Mapping[ScoringDimension, float]
    random_choice_probability: float = 0.0
    missed_option_probability: float = 0.0

    def weight(self, dimension: ScoringDimension) -> float:
        return self.weights.get(dimension, 0.0)


@dataclass(frozen=True)
class ArchetypeProfile:
    """A strategic personality. Dimensions not listed multiply by 1.0."""
    archetype_id: ArchetypeId
    name: str
    description: str = ""
    multipliers: Mapping[ScoringDimension, float] = field(default_factory=lambda: MappingProxyType({}))

    def multiplier(self, dimension: ScoringDimension) -> float:
        return self.multipliers.get(dimension, 1.0)


# ============================================================================
# Skill profiles
# ============================================================================

EASY = SkillProfile(
    level=SkillLevel.EASY,
    weights=_weights(1.0, 0.3, 0.2, 0.3, 0.1, 0.0, 0.1, 0.2, 0.3, 0.1, 0.2, 0.3),
    random_choice_probability=0.20,
    missed_option_probability=0.30,
)

MEDIUM = SkillProfile(
    level=SkillLevel.MEDIUM,
    weights=_weights(0.8, 0.7, 0.6, 0.7, 0.5, 0.3, 0.4, 0.5, 0.6, 0.5, 0.6, 0.5),
    random_choice_probability=0.05,
    missed_option_probability=0.10,
)

# No noise: identical inputs always rank identically
HARD = SkillProfile(
    level=SkillLevel.HARD,
    weights=_weights(0.9, 0.9, 0.8, 0.9, 0.8, 0.6, 0.7, 0.7, 0.8, 0.7, 0.8, 0.7),
)

SKILL_PROFILES: Mapping[SkillLevel, SkillProfile] = MappingProxyType({
    SkillLevel.EASY: EASY,
    SkillLevel.MEDIUM: MEDIUM,
    SkillLevel.HARD: HARD,
})


# ============================================================================
# Archetype profiles
# ============================================================================

D = ScoringDimension

BACKBONE_BUILDER = ArchetypeProfile(
    archetype_id=ArchetypeId.BACKBONE_BUILDER,
    name="Backbone Builder",
    description="Builds a strong trunk network connecting major cities before focusing on deliveries.",
    multipliers=MappingProxyType({
        D.NETWORK_EXPANSION_VALUE: 1.5,
        D.BACKBONE_ALIGNMENT: 2.0,
        D.MAJOR_CITY_PROXIMITY: 1.5,
        D.VICTORY_PROGRESS: 1.3,
        D.IMMEDIATE_INCOME: 0.7,
        D.LOAD_SCARCITY: 0.8,
    }),
)

FREIGHT_OPTIMIZER = ArchetypeProfile(
    archetype_id=ArchetypeId.FREIGHT_OPTIMIZER,
    name="Freight Optimizer",
    description="Maximizes income per milepost by optimizing load combinations and delivery routes.",
    multipliers=MappingProxyType({
        D.IMMEDIATE_INCOME: 1.5,
        D.INCOME_PER_MILEPOST: 2.0,
        D.MULTI_DELIVERY_POTENTIAL: 1.5,
        D.LOAD_COMBINATION_SCORE: 1.5,
        D.NETWORK_EXPANSION_VALUE: 0.7,
        D.VICTORY_PROGRESS: 0.8,
    }),
)

TRUNK_SPRINTER = ArchetypeProfile(
    archetype_id=ArchetypeId.TRUNK_SPRINTER,
    name="Trunk Sprinter",
    description="Builds direct routes and upgrades trains early for fast, high-value deliveries.",
    multipliers=MappingProxyType({
        D.UPGRADE_ROI: 2.0,
        D.IMMEDIATE_INCOME: 1.3,
        D.INCOME_PER_MILEPOST: 1.5,
        D.NETWORK_EXPANSION_VALUE: 0.8,
        D.BACKBONE_ALIGNMENT: 0.6,
        D.COMPETITOR_BLOCKING: 0.5,
    }),
)

CONTINENTAL_CONNECTOR = ArchetypeProfile(
    archetype_id=ArchetypeId.CONTINENTAL_CONNECTOR,
    name="Continental Connector",
    description="Races to connect 7 major cities for victory, prioritizing network reach over income.",
    multipliers=MappingProxyType({
        D.VICTORY_PROGRESS: 2.0,
        D.NETWORK_EXPANSION_VALUE: 1.5,
        D.MAJOR_CITY_PROXIMITY: 2.0,
        D.BACKBONE_ALIGNMENT: 1.3,
        D.IMMEDIATE_INCOME: 0.6,
        D.LOAD_COMBINATION_SCORE: 0.7,
        D.UPGRADE_ROI: 0.8,
    }),
)

OPPORTUNIST = ArchetypeProfile(
    archetype_id=ArchetypeId.OPPORTUNIST,
    name="Opportunist",
    description="Adapts strategy dynamically, exploiting scarce loads and competitor weaknesses.",
    multipliers=MappingProxyType({
        D.COMPETITOR_BLOCKING: 1.5,
        D.LOAD_SCARCITY: 1.5,
        D.RISK_EXPOSURE: 1.3,
        D.MULTI_DELIVERY_POTENTIAL: 1.3,
        D.BACKBONE_ALIGNMENT: 0.7,
        D.MAJOR_CITY_PROXIMITY: 0.8,
    }),
)

ARCHETYPE_PROFILES: Mapping[ArchetypeId, ArchetypeProfile] = MappingProxyType({
    ArchetypeId.BACKBONE_BUILDER: BACKBONE_BUILDER,
    ArchetypeId.FREIGHT_OPTIMIZER: FREIGHT_OPTIMIZER,
    ArchetypeId.TRUNK_SPRINTER: TRUNK_SPRINTER,
    ArchetypeId.CONTINENTAL_CONNECTOR: CONTINENTAL_CONNECTOR,
    ArchetypeId.OPPORTUNIST: OPPORTUNIST,
})

DEFAULT_SKILL_LEVEL = SkillLevel.MEDIUM
DEFAULT_ARCHETYPE = ArchetypeId.BACKBONE_BUILDER


def get_skill_profile(level: SkillLevel | str | None) -> SkillProfile:
    """Look up a skill profile; unknown or missing levels get medium."""
    try:
        return SKILL_PROFILES[SkillLevel(level)]
    except ValueError:
        return SKILL_PROFILES[DEFAULT_SKILL_LEVEL]


def get_archetype_profile(archetype: ArchetypeId | str | None) -> ArchetypeProfile:
    """Look up an archetype; unknown or missing ids get backbone_builder."""
    try:
        return ARCHETYPE_PROFILES[ArchetypeId(archetype)]
    except ValueError:
        return ARCHETYPE_PROFILES[DEFAULT_ARCHETYPE]
