"""
Bots module - Decision making for bot players.

Provides:
- Skill and archetype profiles
- Scorer: weighted multi-dimension option scoring
- AIStrategyEngine: one complete bot turn
- BotTurnTrigger: starts bot turns on turn change
"""

from .profiles import ArchetypeId, SkillLevel, get_archetype_profile, get_skill_profile
from .scorer import Scorer
from .strategy_engine import AIStrategyEngine, StrategyAudit
from .turn_trigger import BotTurnTrigger

__all__ = [
    "ArchetypeId",
    "SkillLevel",
    "get_archetype_profile",
    "get_skill_profile",
    "Scorer",
    "AIStrategyEngine",
    "StrategyAudit",
    "BotTurnTrigger",
]
