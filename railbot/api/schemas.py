"""
Pydantic schemas for the audit API.

Audits are returned as stored (camelCase keys, as the game UI reads
them); the schemas below describe the envelope and the fields the UI
relies on.

Error Codes:
- PLAYER_NOT_FOUND: The player does not exist or is not a bot
- AUDIT_NOT_FOUND: The bot has not taken a turn yet
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field

from ..bots.strategy_engine import ExecutionOutcome


class ErrorCode(str, Enum):
    """Structured error codes."""
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    AUDIT_NOT_FOUND = "AUDIT_NOT_FOUND"


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")


class StageTiming(BaseModel):
    snapshotMs: float = 0.0
    optionGenerationMs: float = 0.0
    scoringMs: float = 0.0
    executionMs: float = 0.0
    totalMs: float = 0.0


class AuditResponse(BaseModel):
    """Latest strategy audit of one bot."""
    model_config = ConfigDict(extra="allow")

    gameId: str
    playerId: str
    turnNumber: int
    snapshotHash: str
    archetype: str
    skillLevel: str
    allOptions: list[dict[str, Any]] = Field(default_factory=list)
    scores: list[Optional[float]] = Field(default_factory=list)
    rankedOptions: list[dict[str, Any]] = Field(default_factory=list)
    selectedPlan: Optional[dict[str, Any]] = None
    executionResults: list[dict[str, Any]] = Field(default_factory=list)
    executionResult: ExecutionOutcome
    executionError: Optional[str] = None
    attempts: int = 0
    timing: StageTiming = Field(default_factory=StageTiming)
    botStatus: dict[str, Any] = Field(default_factory=dict)
    createdAt: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    bots_enabled: bool
