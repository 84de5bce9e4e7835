from __future__ import annotations

import abc
from typing import Any, Mapping, Optional

from src.events.types import AgentEvent

from .models import UPDATABLE_FIELDS, SessionInfo


class StorageProvider(abc.ABC):
    """Durable, append-only event log keyed by session, plus session records.

    Callers must serialise ``save_event`` calls for a single session; the
    provider only guarantees the ordering its append mechanism gives.
    """

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend. Safe to call repeatedly and concurrently."""

    @abc.abstractmethod
    async def create_session(self, info: SessionInfo) -> SessionInfo:
        """Raises ``DuplicateSessionError`` when ``info.id`` already exists."""

    @abc.abstractmethod
    async def get_session_info(self, session_id: str) -> Optional[SessionInfo]: ...

    @abc.abstractmethod
    async def update_session_info(self, session_id: str, changes: Mapping[str, Any]) -> SessionInfo:
        """Replace the supplied fields and refresh ``updated_at``.

        Raises ``NotFoundError`` when the session does not exist.
        """

    @abc.abstractmethod
    async def merge_session_metadata(
        self, session_id: str, updates: Mapping[str, Any], *, keep_existing: bool = False
    ) -> SessionInfo:
        """Merge ``updates`` into the session metadata as one atomic write.

        With ``keep_existing``, keys that already hold a value are left alone.
        Raises ``NotFoundError`` when the session does not exist.
        """

    @abc.abstractmethod
    async def get_all_sessions(self) -> list[SessionInfo]:
        """All sessions, most recently updated first."""

    @abc.abstractmethod
    async def get_user_sessions(self, user_id: str) -> list[SessionInfo]: ...

    @abc.abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete the session with all of its events; ``False`` if it was absent."""

    @abc.abstractmethod
    async def save_event(self, session_id: str, event: AgentEvent) -> None:
        """Append one event. Raises ``NotFoundError`` for an unknown session."""

    @abc.abstractmethod
    async def get_session_events(self, session_id: str) -> list[AgentEvent]:
        """Events in append order; ``[]`` when there are none or the read fails."""

    @abc.abstractmethod
    async def health_check(self) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def close(self) -> None: ...


def validate_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session fields: {', '.join(sorted(unknown))}")
    return dict(changes)


def merge_metadata(
    current: Optional[Mapping[str, Any]], updates: Mapping[str, Any], *, keep_existing: bool = False
) -> dict[str, Any]:
    merged = dict(current or {})
    for key, value in updates.items():
        if keep_existing and merged.get(key):
            continue
        merged[key] = value
    return merged
