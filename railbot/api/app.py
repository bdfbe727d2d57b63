"""
FastAPI Application - Read API for bot audits.

Endpoints:
    GET    /api/health                                  Health check
    GET    /api/games/{game_id}/ai-audit/{player_id}    Latest bot turn audit

The audit endpoint answers "why did the bot do that?": every option the
bot considered, its score breakdown, the plan it picked, and how the
plan executed.
"""

from __future__ import annotations
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import AuditResponse, ErrorCode, ErrorResponse, HealthResponse
from .. import __version__
from ..config import ALLOWED_ORIGINS, RAILBOT_DB_PATH, ai_bots_enabled
from ..logging_config import get_logger
from ..storage.interfaces import GameStore

logger = get_logger(__name__)


def make_error_response(
    error_code: ErrorCode,
    message: str,
    status_code: int = 400,
    details: Optional[dict] = None,
) -> JSONResponse:
    """Create a standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=message,
            error_code=error_code,
            details=details,
        ).model_dump(mode="json"),
    )


def create_app(store: GameStore | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        store: GameStore to read audits from (a SqliteGameStore on
            RAILBOT_DB_PATH if not provided)
    """
    if store is None:
        from ..storage.database import SqliteGameStore
        store = SqliteGameStore(RAILBOT_DB_PATH)
        store.initialize()

    app = FastAPI(
        title="Railbot API",
        description="Decision audits of railroad-building bot players.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store

    # =========================================================================
    # Audit Endpoint
    # =========================================================================

    @app.get(
        "/api/games/{game_id}/ai-audit/{player_id}",
        response_model=AuditResponse,
        responses={404: {"model": ErrorResponse, "description": "Unknown bot or no audit yet"}},
        tags=["Bots"],
        summary="Latest strategy audit of a bot player",
    )
    async def get_ai_audit(game_id: str, player_id: str):
        ai_player = await store.get_ai_player(game_id, player_id)
        if ai_player is None:
            return make_error_response(
                ErrorCode.PLAYER_NOT_FOUND,
                f"AI player {player_id} not found",
                status_code=404,
                details={"game_id": game_id, "player_id": player_id},
            )

        audit = await store.latest_audit(game_id, player_id)
        if audit is None:
            return make_error_response(
                ErrorCode.AUDIT_NOT_FOUND,
                f"No audit found for player {player_id}",
                status_code=404,
                details={"game_id": game_id, "player_id": player_id},
            )
        return audit

    # =========================================================================
    # System Endpoints
    # =========================================================================

    @app.get(
        "/api/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            service="railbot",
            version=__version__,
            bots_enabled=ai_bots_enabled(),
        )

    return app
