from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import replace
from typing import Any, Mapping, Optional

from src.errors import DuplicateSessionError, NotFoundError, PersistenceError
from src.events.types import AgentEvent, now_ms

from .models import SessionInfo
from .provider import StorageProvider, merge_metadata, validate_changes

logger = logging.getLogger(__name__)


class InMemoryStorageProvider(StorageProvider):
    """Process-local storage with the same contract as the SQLite provider."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionInfo] = {}
        self._events: dict[str, list[AgentEvent]] = {}
        self._lock = asyncio.Lock()
        self._initialized = False
        self._closed = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._closed = False
        logger.info("In-memory session storage initialised")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._initialized = False

    async def create_session(self, info: SessionInfo) -> SessionInfo:
        self._ensure_open()
        now = now_ms()
        session = SessionInfo(
            id=info.id,
            created_at=info.created_at or now,
            updated_at=info.updated_at or now,
            workspace=info.workspace or "",
            user_id=info.user_id,
            metadata=copy.deepcopy(info.metadata),
        )
        async with self._lock:
            if session.id in self._sessions:
                raise DuplicateSessionError(f"Session already exists: {session.id}")
            self._sessions[session.id] = session
            self._events[session.id] = []
        return _copy_session(session)

    async def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        self._ensure_open()
        session = self._sessions.get(session_id)
        return _copy_session(session) if session else None

    async def update_session_info(self, session_id: str, changes: Mapping[str, Any]) -> SessionInfo:
        self._ensure_open()
        changes = validate_changes(changes)
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            if "workspace" in changes:
                changes["workspace"] = changes["workspace"] or ""
            if "metadata" in changes:
                changes["metadata"] = copy.deepcopy(changes["metadata"])
            updated = replace(session, **changes, updated_at=max(now_ms(), session.updated_at))
            self._sessions[session_id] = updated
        return _copy_session(updated)

    async def merge_session_metadata(
        self, session_id: str, updates: Mapping[str, Any], *, keep_existing: bool = False
    ) -> SessionInfo:
        self._ensure_open()
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            metadata = merge_metadata(session.metadata, copy.deepcopy(dict(updates)), keep_existing=keep_existing)
            updated = replace(session, metadata=metadata, updated_at=max(now_ms(), session.updated_at))
            self._sessions[session_id] = updated
        return _copy_session(updated)

    async def get_all_sessions(self) -> list[SessionInfo]:
        self._ensure_open()
        return [_copy_session(s) for s in sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)]

    async def get_user_sessions(self, user_id: str) -> list[SessionInfo]:
        return [session for session in await self.get_all_sessions() if session.user_id == user_id]

    async def delete_session(self, session_id: str) -> bool:
        self._ensure_open()
        async with self._lock:
            self._events.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    async def save_event(self, session_id: str, event: AgentEvent) -> None:
        self._ensure_open()
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            self._events[session_id].append(event)
            session.updated_at = max(now_ms(), session.updated_at)

    async def get_session_events(self, session_id: str) -> list[AgentEvent]:
        if self._closed:
            logger.error("Failed to get events for session %s: storage closed", session_id)
            return []
        return list(self._events.get(session_id, []))

    async def health_check(self) -> dict[str, Any]:
        if self._closed:
            return {"healthy": False, "message": "In-memory storage is closed"}
        return {"healthy": True, "message": "In-memory storage is healthy", "sessions": len(self._sessions)}

    def _ensure_open(self) -> None:
        if self._closed:
            raise PersistenceError("Storage provider has been closed")
        self._initialized = True


def _copy_session(session: SessionInfo) -> SessionInfo:
    return replace(session, metadata=copy.deepcopy(session.metadata))
