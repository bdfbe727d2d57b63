"""
Action System - Options, plans, and results.

A bot turn moves through these shapes:
1. FeasibleOption: a candidate produced by the option generator
2. ScoredOption: a feasible candidate with a score and breakdown
3. TurnPlan: the ordered actions the bot commits to
4. ValidationResult: whether the plan survives a replay
5. TurnExecutionResult: what actually happened in storage

All persistent changes flow through a TurnPlan.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import Rejection, RejectionReason


class AIActionType(str, Enum):
    """Kinds of actions a bot can plan."""
    DELIVER_LOAD = "DeliverLoad"
    PICKUP_AND_DELIVER = "PickupAndDeliver"
    BUILD_TRACK = "BuildTrack"
    UPGRADE_TRAIN = "UpgradeTrain"
    BUILD_TOWARD_MAJOR_CITY = "BuildTowardMajorCity"
    PASS_TURN = "PassTurn"


def action_kind_name(kind: AIActionType | str) -> str:
    """Stored name of an action kind; unknown kinds pass through as strings."""
    return kind.value if isinstance(kind, AIActionType) else str(kind)


# ============================================================================
# Options
# ============================================================================

@dataclass
class FeasibleOption:
    """
    A candidate action for this turn.

    Infeasible options are kept (with their rejection) so the audit can
    show what the bot considered and why it said no.
    """
    option_id: str
    kind: AIActionType
    params: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    score: float = 0.0
    feasible: bool = True
    rejection: Rejection | None = None

    @property
    def rejection_reason(self) -> str | None:
        """Stable message for audits; None when feasible."""
        return self.rejection.message if self.rejection else None

    @classmethod
    def accepted(
        cls,
        option_id: str,
        kind: AIActionType,
        description: str,
        params: dict[str, Any] | None = None,
    ) -> FeasibleOption:
        """Factory for a feasible option."""
        return cls(option_id=option_id, kind=kind, params=params or {}, description=description)

    @classmethod
    def rejected(
        cls,
        option_id: str,
        kind: AIActionType,
        description: str,
        reason: RejectionReason,
        message: str,
        params: dict[str, Any] | None = None,
    ) -> FeasibleOption:
        """Factory for an infeasible option."""
        return cls(
            option_id=option_id,
            kind=kind,
            params=params or {},
            description=description,
            feasible=False,
            rejection=Rejection(reason, message),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.option_id,
            "type": self.kind.value,
            "description": self.description,
            "parameters": self.params,
            "score": self.score,
            "feasible": self.feasible,
            "rejectionReason": self.rejection_reason,
        }


@dataclass
class ScoredOption:
    """A feasible option with its final score and per-dimension contributions."""
    option: FeasibleOption
    final_score: float
    breakdown: dict[str, float] = field(default_factory=dict)
    rationale: str = ""

    @property
    def option_id(self) -> str:
        return self.option.option_id

    @property
    def kind(self) -> AIActionType:
        return self.option.kind

    def to_dict(self) -> dict[str, Any]:
        data = self.option.to_dict()
        data["finalScore"] = self.final_score
        data["breakdown"] = self.breakdown
        data["rationale"] = self.rationale
        return data


# ============================================================================
# Plans
# ============================================================================

@dataclass
class TurnPlanAction:
    """One step of a plan. `kind` is a plain string so unknown kinds survive."""
    kind: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, kind: AIActionType | str, /, **params: Any) -> TurnPlanAction:
        return cls(kind=action_kind_name(kind), params=params)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "parameters": self.params}


@dataclass
class ExpectedOutcome:
    cash_change: int = 0
    loads_delivered: int = 0
    track_segments_built: int = 0
    new_major_cities_connected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "cashChange": self.cash_change,
            "loadsDelivered": self.loads_delivered,
            "trackSegmentsBuilt": self.track_segments_built,
            "newMajorCitiesConnected": self.new_major_cities_connected,
        }


@dataclass
class TurnPlan:
    """
    The ordered actions a bot intends to take this turn.

    Usage:
        plan = TurnPlan(actions=[TurnPlanAction.of(AIActionType.PASS_TURN)])
        result = validator.validate(plan, snapshot)
    """
    actions: list[TurnPlanAction] = field(default_factory=list)
    expected_outcome: ExpectedOutcome = field(default_factory=ExpectedOutcome)
    total_score: float = 0.0
    archetype: str = ""
    skill_level: str = ""

    @classmethod
    def pass_turn(cls, archetype: str = "", skill_level: str = "") -> TurnPlan:
        """Factory for the guaranteed-safe fallback plan."""
        return cls(
            actions=[TurnPlanAction.of(AIActionType.PASS_TURN)],
            archetype=archetype,
            skill_level=skill_level,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "expectedOutcome": self.expected_outcome.to_dict(),
            "totalScore": self.total_score,
            "archetype": self.archetype,
            "skillLevel": self.skill_level,
        }


# ============================================================================
# Results
# ============================================================================

@dataclass
class ValidationResult:
    """Outcome of replaying a plan. `reason` names the offending action."""
    ok: bool
    reason: str | None = None
    rejection: RejectionReason | None = None
    action_index: int | None = None  # 1-based

    @classmethod
    def valid(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def invalid(cls, index: int, kind: str, rejection: Rejection) -> ValidationResult:
        return cls(
            ok=False,
            reason=f"Action {index} ({kind}): {rejection.message}",
            rejection=rejection.reason,
            action_index=index,
        )


@dataclass
class ActionExecutionResult:
    """Result of applying one plan action to storage."""
    action_type: str
    success: bool
    duration_ms: float = 0.0
    error: str | None = None
    error_code: str | None = None

    # Notification payload emitted after commit
    event_payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, action_type: str, error: str, error_code: str | None = None) -> ActionExecutionResult:
        """Create a failure result."""
        return cls(action_type=action_type, success=False, error=error, error_code=error_code)

    @classmethod
    def ok(cls, action_type: str, payload: dict[str, Any] | None = None) -> ActionExecutionResult:
        """Create a success result."""
        return cls(action_type=action_type, success=True, event_payload=payload or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionType": self.action_type,
            "success": self.success,
            "durationMs": self.duration_ms,
            "error": self.error,
        }


@dataclass
class TurnExecutionResult:
    """Result of executing a whole plan."""
    success: bool
    action_results: list[ActionExecutionResult] = field(default_factory=list)
    error: str | None = None
    total_duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "actionResults": [r.to_dict() for r in self.action_results],
            "error": self.error,
            "totalDurationMs": self.total_duration_ms,
        }
