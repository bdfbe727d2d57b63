"""
SQLite game store.

Tables:
- games: one row per game, holding the turn number
- players: cash, hand, loads, train, position and bot configuration
- player_tracks: each player's track segments and spend
- load_chips: global count of available chips per load type
- bot_turn_audits: append-only StrategyAudit rows

Structured columns (hand, loads, segments, details) are JSON text.

Each call opens its own connection. A unit of work holds one connection
with BEGIN IMMEDIATE until it is committed or rolled back, so every
write of a bot turn lands together or not at all.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .interfaces import GameStore, UnitOfWork
from ..engine_core.map_grid import grid_to_pixel
from ..engine_core.state import DEFAULT_MONEY, TrackSegment, TrackState, TrainType
from ..logging_config import get_logger

logger = get_logger(__name__)

EXECUTION_RESULTS = ("success", "fallback", "error")

# Player columns a unit of work may update
PLAYER_COLUMNS = {"money", "hand", "loads", "train_type", "position_row", "position_col"}
JSON_COLUMNS = {"hand", "loads"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _track_from_row(row: sqlite3.Row | None) -> TrackState | None:
    if row is None:
        return None
    return TrackState(
        segments=tuple(TrackSegment.from_dict(s) for s in json.loads(row["segments"] or "[]")),
        total_cost=row["total_cost"] or 0,
        turn_build_cost=row["turn_build_cost"] or 0,
    )


def _player_from_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    player = dict(row)
    for column in JSON_COLUMNS:
        player[column] = json.loads(player.get(column) or "[]")
    player["is_bot"] = bool(player.get("is_bot"))
    return player


def _save_track(conn: sqlite3.Connection, game_id: str, player_id: str, state: TrackState) -> None:
    conn.execute(
        """
        INSERT INTO player_tracks (game_id, player_id, segments, total_cost, turn_build_cost, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT (game_id, player_id) DO UPDATE SET
            segments = excluded.segments,
            total_cost = excluded.total_cost,
            turn_build_cost = excluded.turn_build_cost,
            updated_at = excluded.updated_at
        """,
        (
            game_id,
            player_id,
            json.dumps([s.to_dict() for s in state.segments]),
            state.total_cost,
            state.turn_build_cost,
            _now(),
        ),
    )


# ============================================================================
# Unit of work
# ============================================================================


class SqliteUnitOfWork(UnitOfWork):
    """One BEGIN IMMEDIATE ... COMMIT/ROLLBACK on a dedicated connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute("BEGIN IMMEDIATE")
        self._open = True

    async def get_player(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT * FROM players WHERE game_id = ? AND id = ?", (game_id, player_id)
        ).fetchone()
        return _player_from_row(row)

    async def update_player(self, game_id: str, player_id: str, **fields: Any) -> None:
        unknown = set(fields) - PLAYER_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update player columns: {sorted(unknown)}")
        if not fields:
            return
        if fields.get("position_row") is not None and fields.get("position_col") is not None:
            fields["position_x"], fields["position_y"] = grid_to_pixel(fields["position_row"], fields["position_col"])
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [json.dumps(v) if k in JSON_COLUMNS else v for k, v in fields.items()]
        self.conn.execute(
            f"UPDATE players SET {assignments} WHERE game_id = ? AND id = ?",
            (*values, game_id, player_id),
        )

    async def get_track_state(self, game_id: str, player_id: str) -> TrackState | None:
        row = self.conn.execute(
            "SELECT * FROM player_tracks WHERE game_id = ? AND player_id = ?", (game_id, player_id)
        ).fetchone()
        return _track_from_row(row)

    async def save_track_state(self, game_id: str, player_id: str, state: TrackState) -> None:
        _save_track(self.conn, game_id, player_id, state)

    async def adjust_load_availability(self, game_id: str, load_type: str, delta: int) -> None:
        cursor = self.conn.execute(
            "UPDATE load_chips SET available = available + ? WHERE game_id = ? AND load_type = ?",
            (delta, game_id, load_type),
        )
        if cursor.rowcount == 0:
            self.conn.execute(
                "INSERT INTO load_chips (game_id, load_type, available) VALUES (?, ?, ?)",
                (game_id, load_type, max(delta, 0)),
            )

    async def commit(self) -> None:
        if self._open:
            try:
                self.conn.execute("COMMIT")
            finally:
                self._close()

    async def rollback(self) -> None:
        if self._open:
            try:
                self.conn.execute("ROLLBACK")
            finally:
                self._close()

    def _close(self) -> None:
        self._open = False
        self.conn.close()


# ============================================================================
# Store
# ============================================================================


class SqliteGameStore(GameStore):
    """
    Game store backed by a SQLite file.

    Usage:
        store = SqliteGameStore("railbot.db")
        store.initialize()

        store.create_game("g1")
        store.add_player("g1", "bot-1", "Bot", is_bot=True, ai_difficulty="hard")

        uow = await store.begin()
        await uow.update_player("g1", "bot-1", money=30)
        await uow.commit()
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with explicit transaction control."""
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create all tables if they don't exist."""
        conn = self._get_connection()
        try:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS games (
                    id TEXT PRIMARY KEY,
                    name TEXT DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'active',
                    turn_number INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS players (
                    id TEXT PRIMARY KEY,
                    game_id TEXT NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    name TEXT NOT NULL DEFAULT '',
                    money INTEGER NOT NULL DEFAULT {DEFAULT_MONEY} CHECK (money >= 0),
                    hand TEXT NOT NULL DEFAULT '[]',
                    loads TEXT NOT NULL DEFAULT '[]',
                    train_type TEXT NOT NULL DEFAULT '{TrainType.FREIGHT.value}',
                    position_row INTEGER,
                    position_col INTEGER,
                    position_x INTEGER,
                    position_y INTEGER,
                    is_bot INTEGER NOT NULL DEFAULT 0,
                    ai_difficulty TEXT,
                    ai_archetype TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS player_tracks (
                    game_id TEXT NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    player_id TEXT NOT NULL REFERENCES players(id) ON DELETE CASCADE,
                    segments TEXT NOT NULL DEFAULT '[]',
                    total_cost INTEGER NOT NULL DEFAULT 0,
                    turn_build_cost INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT,
                    PRIMARY KEY (game_id, player_id)
                );

                CREATE TABLE IF NOT EXISTS load_chips (
                    game_id TEXT NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    load_type TEXT NOT NULL,
                    available INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (game_id, load_type)
                );

                CREATE TABLE IF NOT EXISTS bot_turn_audits (
                    id TEXT PRIMARY KEY,
                    game_id TEXT NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    player_id TEXT NOT NULL REFERENCES players(id) ON DELETE CASCADE,
                    turn_number INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    segments_built TEXT,
                    cost INTEGER DEFAULT 0,
                    remaining_money INTEGER,
                    duration_ms INTEGER,
                    snapshot_hash TEXT,
                    execution_result TEXT NOT NULL
                        CHECK (execution_result IN {EXECUTION_RESULTS}),
                    details TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_players_game ON players(game_id);
                CREATE INDEX IF NOT EXISTS idx_bot_audits_game_player_turn
                    ON bot_turn_audits(game_id, player_id, turn_number DESC);
            """)
        finally:
            conn.close()

    # =========================================================================
    # Seeding
    # =========================================================================

    def create_game(self, game_id: str, name: str = "", turn_number: int = 1) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                "INSERT INTO games (id, name, turn_number, created_at) VALUES (?, ?, ?, ?)",
                (game_id, name, turn_number, _now()),
            )
        finally:
            conn.close()

    def add_player(
        self,
        game_id: str,
        player_id: str,
        name: str = "",
        *,
        money: int = DEFAULT_MONEY,
        hand: Iterable[int] = (),
        loads: Iterable[str] = (),
        train_type: str = TrainType.FREIGHT.value,
        position: tuple[int, int] | None = None,
        is_bot: bool = False,
        ai_difficulty: str | None = None,
        ai_archetype: str | None = None,
        segments: Iterable[TrackSegment] = (),
    ) -> None:
        row, col = position if position else (None, None)
        x, y = grid_to_pixel(row, col) if position else (None, None)
        segments = tuple(segments)
        conn = self._get_connection()
        try:
            conn.execute("BEGIN")
            conn.execute(
                """
                INSERT INTO players (
                    id, game_id, name, money, hand, loads, train_type,
                    position_row, position_col, position_x, position_y,
                    is_bot, ai_difficulty, ai_archetype, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    player_id, game_id, name, money, json.dumps(list(hand)), json.dumps(list(loads)),
                    train_type, row, col, x, y, int(is_bot), ai_difficulty, ai_archetype, _now(),
                ),
            )
            if segments:
                _save_track(conn, game_id, player_id, TrackState(
                    segments=segments, total_cost=sum(s.cost for s in segments),
                ))
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def set_load_availability(self, game_id: str, counts: dict[str, int]) -> None:
        conn = self._get_connection()
        try:
            conn.executemany(
                """
                INSERT INTO load_chips (game_id, load_type, available) VALUES (?, ?, ?)
                ON CONFLICT (game_id, load_type) DO UPDATE SET available = excluded.available
                """,
                [(game_id, load, count) for load, count in counts.items()],
            )
        finally:
            conn.close()

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_game_rows(self, game_id: str) -> list[dict[str, Any]]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT p.id AS player_id, p.name, p.money, p.hand, p.loads, p.train_type,
                       p.position_row, p.position_col, p.is_bot,
                       p.ai_difficulty, p.ai_archetype,
                       g.turn_number,
                       t.segments, t.total_cost, t.turn_build_cost
                FROM players p
                JOIN games g ON g.id = p.game_id
                LEFT JOIN player_tracks t ON t.game_id = p.game_id AND t.player_id = p.id
                WHERE p.game_id = ?
                ORDER BY p.created_at, p.id
                """,
                (game_id,),
            ).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    async def load_availability(self, game_id: str) -> dict[str, int]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT load_type, available FROM load_chips WHERE game_id = ? ORDER BY load_type",
                (game_id,),
            ).fetchall()
        finally:
            conn.close()
        return {row["load_type"]: row["available"] for row in rows}

    async def get_ai_player(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                """
                SELECT id, name, is_bot, ai_difficulty, ai_archetype
                FROM players WHERE game_id = ? AND id = ? AND is_bot = 1
                """,
                (game_id, player_id),
            ).fetchone()
        finally:
            conn.close()
        return dict(row) if row else None

    async def get_player(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM players WHERE game_id = ? AND id = ?", (game_id, player_id)
            ).fetchone()
        finally:
            conn.close()
        return _player_from_row(row)

    async def list_bot_players(self, game_id: str) -> list[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT id FROM players WHERE game_id = ? AND is_bot = 1 ORDER BY created_at, id",
                (game_id,),
            ).fetchall()
        finally:
            conn.close()
        return [row["id"] for row in rows]

    # =========================================================================
    # Track state
    # =========================================================================

    async def get_track_state(self, game_id: str, player_id: str) -> TrackState | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM player_tracks WHERE game_id = ? AND player_id = ?", (game_id, player_id)
            ).fetchone()
        finally:
            conn.close()
        return _track_from_row(row)

    async def get_all_tracks(self, game_id: str) -> dict[str, TrackState]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM player_tracks WHERE game_id = ? ORDER BY player_id", (game_id,)
            ).fetchall()
        finally:
            conn.close()
        return {row["player_id"]: _track_from_row(row) for row in rows}

    async def save_track_state(self, game_id: str, player_id: str, state: TrackState) -> None:
        conn = self._get_connection()
        try:
            _save_track(conn, game_id, player_id, state)
        finally:
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    async def begin(self) -> SqliteUnitOfWork:
        return SqliteUnitOfWork(self._get_connection())

    async def set_position(self, game_id: str, player_id: str, row: int, col: int) -> None:
        x, y = grid_to_pixel(row, col)
        conn = self._get_connection()
        try:
            conn.execute(
                """
                UPDATE players SET position_row = ?, position_col = ?, position_x = ?, position_y = ?
                WHERE game_id = ? AND id = ?
                """,
                (row, col, x, y, game_id, player_id),
            )
        finally:
            conn.close()

    async def end_turn(self, game_id: str, player_id: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                "UPDATE player_tracks SET turn_build_cost = 0 WHERE game_id = ? AND player_id = ?",
                (game_id, player_id),
            )
        finally:
            conn.close()

    # =========================================================================
    # Audits
    # =========================================================================

    async def save_audit(self, audit: dict[str, Any]) -> None:
        """Insert one audit row; summary columns are derived from the audit dict."""
        plan = audit.get("selectedPlan") or {}
        actions = plan.get("actions") or []
        first = actions[0] if actions else {"type": "PassTurn", "parameters": {}}
        params = first.get("parameters") or {}
        succeeded = audit.get("executionResult") == "success"
        outcome = plan.get("expectedOutcome") or {}
        cash = (audit.get("botStatus") or {}).get("cash")

        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO bot_turn_audits (
                    id, game_id, player_id, turn_number, action, segments_built, cost,
                    remaining_money, duration_ms, snapshot_hash, execution_result, details, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    audit["gameId"],
                    audit["playerId"],
                    audit.get("turnNumber", 0),
                    first["type"],
                    json.dumps(params.get("segments", []) if succeeded else []),
                    int(params.get("cost", 0)) if succeeded else 0,
                    (cash + outcome.get("cashChange", 0) if succeeded else cash) if cash is not None else None,
                    int((audit.get("timing") or {}).get("totalMs", 0)),
                    audit.get("snapshotHash"),
                    audit.get("executionResult", "error"),
                    json.dumps(audit),
                    audit.get("createdAt") or _now(),
                ),
            )
        finally:
            conn.close()
        logger.debug("Saved audit for %s turn %s", audit["playerId"], audit.get("turnNumber"))

    async def latest_audit(self, game_id: str, player_id: str) -> dict[str, Any] | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                """
                SELECT details FROM bot_turn_audits
                WHERE game_id = ? AND player_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (game_id, player_id),
            ).fetchone()
        finally:
            conn.close()
        return json.loads(row["details"]) if row else None
