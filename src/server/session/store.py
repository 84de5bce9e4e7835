from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TypeVar

from pydantic import ValidationError

from src.errors import ConfigurationError, DuplicateSessionError, NotFoundError, PersistenceError
from src.events.types import AgentEvent, SystemEvent, dump_event, now_ms, parse_event

from .models import SessionInfo
from .provider import StorageProvider, merge_metadata, validate_changes

logger = logging.getLogger(__name__)

T = TypeVar("T")


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    createdAt INTEGER NOT NULL,
    updatedAt INTEGER NOT NULL,
    workspace TEXT NOT NULL,
    userId TEXT,
    metadata TEXT
);
"""

_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sessionId TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    eventData TEXT NOT NULL,
    FOREIGN KEY(sessionId) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_sessionId ON events(sessionId);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updatedAt DESC);",
]

_SESSION_COLUMNS = "id, createdAt, updatedAt, workspace, userId, metadata"


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON;")
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteStorageProvider(StorageProvider):
    """SQLite-backed event log and session repository."""

    def __init__(self, db_path: str) -> None:
        if db_path.strip() in {":memory:", ""}:
            raise ConfigurationError("SQLite storage needs a file path; use InMemoryStorageProvider instead")
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._closed = False

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Initialise the database schema once."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            def _init() -> None:
                with sqlite3.connect(self._db_path) as connection:
                    _ensure_pragmas(connection)
                    connection.execute(_SESSIONS_DDL)
                    connection.execute(_EVENTS_DDL)
                    columns = {row[1] for row in connection.execute("PRAGMA table_info(sessions)")}
                    if "userId" not in columns:
                        connection.execute("ALTER TABLE sessions ADD COLUMN userId TEXT")
                    for statement in _CREATE_INDEXES:
                        connection.execute(statement)
                    connection.commit()

            await self._run(_init)
            self._initialized = True
            self._closed = False
            logger.info("Session database initialised at %s", self._db_path)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._initialized = False
        logger.info("Session database closed at %s", self._db_path)

    async def create_session(self, info: SessionInfo) -> SessionInfo:
        await self._ensure_initialized()
        now = now_ms()
        session = SessionInfo(
            id=info.id,
            created_at=info.created_at or now,
            updated_at=info.updated_at or now,
            workspace=info.workspace or "",
            user_id=info.user_id,
            metadata=info.metadata,
        )

        def _insert() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                exists = connection.execute("SELECT 1 FROM sessions WHERE id = ?", (session.id,)).fetchone()
                if exists:
                    raise DuplicateSessionError(f"Session already exists: {session.id}")
                connection.execute(
                    f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        session.id,
                        session.created_at,
                        session.updated_at,
                        session.workspace,
                        session.user_id,
                        _dump_metadata(session.metadata),
                    ),
                )
                connection.commit()

        async with self._write_lock:
            await self._run(_insert)
        return session

    async def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        await self._ensure_initialized()
        row = await self._run(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(row)

    async def update_session_info(self, session_id: str, changes: Mapping[str, Any]) -> SessionInfo:
        await self._ensure_initialized()
        changes = validate_changes(changes)

        def _update() -> Optional[sqlite3.Row]:
            with sqlite3.connect(self._db_path) as connection:
                connection.row_factory = sqlite3.Row
                _ensure_pragmas(connection)
                current = connection.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if current is None:
                    return None

                set_clauses: list[str] = []
                params: list[Any] = []
                if "workspace" in changes:
                    set_clauses.append("workspace = ?")
                    params.append(changes["workspace"] or "")
                if "user_id" in changes:
                    set_clauses.append("userId = ?")
                    params.append(changes["user_id"])
                if "metadata" in changes:
                    set_clauses.append("metadata = ?")
                    params.append(_dump_metadata(changes["metadata"]))
                set_clauses.append("updatedAt = ?")
                params.append(max(now_ms(), current["createdAt"]))
                params.append(session_id)

                connection.execute(f"UPDATE sessions SET {', '.join(set_clauses)} WHERE id = ?", params)
                connection.commit()
                return connection.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()

        async with self._write_lock:
            row = await self._run(_update)
        if row is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return self._row_to_session(row)

    async def merge_session_metadata(
        self, session_id: str, updates: Mapping[str, Any], *, keep_existing: bool = False
    ) -> SessionInfo:
        await self._ensure_initialized()

        def _merge() -> Optional[sqlite3.Row]:
            with sqlite3.connect(self._db_path) as connection:
                connection.row_factory = sqlite3.Row
                _ensure_pragmas(connection)
                current = connection.execute(
                    "SELECT createdAt, metadata FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if current is None:
                    return None
                metadata = merge_metadata(
                    json.loads(current["metadata"]) if current["metadata"] else None,
                    updates,
                    keep_existing=keep_existing,
                )
                connection.execute(
                    "UPDATE sessions SET metadata = ?, updatedAt = ? WHERE id = ?",
                    (_dump_metadata(metadata), max(now_ms(), current["createdAt"]), session_id),
                )
                connection.commit()
                return connection.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()

        async with self._write_lock:
            row = await self._run(_merge)
        if row is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return self._row_to_session(row)

    async def get_all_sessions(self) -> list[SessionInfo]:
        await self._ensure_initialized()
        rows = await self._run(
            self._fetchall,
            f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY updatedAt DESC",
        )
        return [self._row_to_session(row) for row in rows]

    async def get_user_sessions(self, user_id: str) -> list[SessionInfo]:
        await self._ensure_initialized()
        rows = await self._run(
            self._fetchall,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE userId = ? ORDER BY updatedAt DESC",
            (user_id,),
        )
        return [self._row_to_session(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        await self._ensure_initialized()

        def _delete() -> bool:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                # One transaction: events and the session row go together.
                connection.execute("DELETE FROM events WHERE sessionId = ?", (session_id,))
                cursor = connection.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
                connection.commit()
                return cursor.rowcount > 0

        async with self._write_lock:
            return await self._run(_delete)

    async def save_event(self, session_id: str, event: AgentEvent) -> None:
        await self._ensure_initialized()
        event_data = json.dumps(dump_event(event), ensure_ascii=False)

        def _insert() -> bool:
            with sqlite3.connect(self._db_path) as connection:
                connection.row_factory = sqlite3.Row
                _ensure_pragmas(connection)
                session = connection.execute(
                    "SELECT createdAt FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if session is None:
                    return False
                timestamp = max(now_ms(), session["createdAt"])
                connection.execute(
                    "INSERT INTO events (sessionId, timestamp, eventData) VALUES (?, ?, ?)",
                    (session_id, timestamp, event_data),
                )
                connection.execute(
                    "UPDATE sessions SET updatedAt = ? WHERE id = ?",
                    (timestamp, session_id),
                )
                connection.commit()
                return True

        async with self._write_lock:
            saved = await self._run(_insert)
        if not saved:
            raise NotFoundError(f"Session not found: {session_id}")

    async def get_session_events(self, session_id: str) -> list[AgentEvent]:
        try:
            await self._ensure_initialized()
            rows = await self._run(
                self._fetchall,
                "SELECT id, timestamp, eventData FROM events WHERE sessionId = ? ORDER BY timestamp ASC, id ASC",
                (session_id,),
            )
        except PersistenceError:
            # Keep the session loadable even when its log cannot be read.
            logger.exception("Failed to get events for session %s", session_id)
            return []
        return [_row_to_event(row) for row in rows]

    async def health_check(self) -> dict[str, Any]:
        if self._closed or not self._initialized:
            return {"healthy": False, "message": "SQLite database is not open"}
        try:
            row = await self._run(self._fetchone, "SELECT 1 AS test")
        except PersistenceError as exc:
            return {"healthy": False, "message": f"SQLite health check failed: {exc}"}
        if row is not None and row["test"] == 1:
            return {"healthy": True, "message": "SQLite database is healthy", "path": self._db_path}
        return {"healthy": False, "message": "SQLite database test query failed"}

    async def _ensure_initialized(self) -> None:
        if self._closed:
            raise PersistenceError("Storage provider has been closed")
        if not self._initialized:
            await self.initialize()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            logger.error("SQLite operation failed on %s: %s", self._db_path, exc)
            raise PersistenceError(f"SQLite operation failed: {exc}") from exc

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

    @staticmethod
    def _row_to_session(row: sqlite3.Row | None) -> Optional[SessionInfo]:
        if row is None:
            return None
        return SessionInfo(
            id=row["id"],
            created_at=row["createdAt"],
            updated_at=row["updatedAt"],
            workspace=row["workspace"] or "",
            user_id=row["userId"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )


def _row_to_event(row: sqlite3.Row) -> AgentEvent:
    try:
        return parse_event(json.loads(row["eventData"]))
    except (ValueError, ValidationError) as exc:
        logger.error("Failed to parse event data for row %s: %s", row["id"], exc)
        return SystemEvent(
            id=f"parse-error-{row['id']}",
            timestamp=row["timestamp"],
            level="error",
            message="Failed to parse event data",
            details={"rowId": row["id"], "error": str(exc)},
        )


def _dump_metadata(metadata: Optional[dict[str, Any]]) -> Optional[str]:
    return json.dumps(metadata, ensure_ascii=False) if metadata is not None else None


