from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.config.loader import Settings
from src.errors import NotFoundError
from src.events.stream import AgentEventStream

from .agent_session import AgentSession
from .provider import StorageProvider

logger = logging.getLogger(__name__)


class SessionManager:
    """Registry of live sessions, created on demand from storage."""

    def __init__(self, storage: StorageProvider, settings: Optional[Settings] = None) -> None:
        self._storage = storage
        self._settings = settings or Settings()
        self._sessions: dict[str, AgentSession] = {}
        self._lock = asyncio.Lock()

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    def get(self, session_id: str) -> Optional[AgentSession]:
        return self._sessions.get(session_id)

    async def get_or_create(self, session_id: str) -> AgentSession:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            info = await self._storage.get_session_info(session_id)
            if info is None:
                raise NotFoundError(f"Session not found: {session_id}")
            session = AgentSession(
                info,
                self._storage,
                persist_streaming_events=self._settings.persist_streaming_events,
                event_stream=AgentEventStream(max_events=self._settings.stream_max_events),
            )
            await session.initialize()
            self._sessions[session_id] = session
            return session

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
        if sessions:
            logger.info("Closed %d live sessions", len(sessions))

    def __len__(self) -> int:
        return len(self._sessions)
