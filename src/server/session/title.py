from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from src.events.types import USER_MESSAGE, AgentEvent

from .provider import StorageProvider

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 40
_DEFAULT_NAME = "New Session"


async def ensure_session_name(
    store: StorageProvider, session_id: str, events: Optional[Iterable[AgentEvent]] = None
) -> Optional[str]:
    """Derive and persist a display name if the session does not have one yet.

    The name is merged without replacing one set in the meantime, and the
    stored name is returned.
    """
    session = await store.get_session_info(session_id)
    if session is None:
        return None
    if session.metadata and session.metadata.get("name"):
        return session.metadata["name"]

    if events is None:
        events = await store.get_session_events(session_id)
    name = derive_session_name(events)
    if name is None:
        logger.debug("Session %s has no user message yet; skipping name generation", session_id)
        return None

    updated = await store.merge_session_metadata(session_id, {"name": name}, keep_existing=True)
    return (updated.metadata or {}).get("name")


def derive_session_name(events: Iterable[AgentEvent]) -> Optional[str]:
    for event in events:
        if event.type == USER_MESSAGE:
            return _truncate_to_limit(_content_text(event.content))
    return None


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(part.get("text"))
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
        ]
        return " ".join(parts)
    return ""


def _truncate_to_limit(text: str) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= _MAX_NAME_LENGTH:
        return cleaned or _DEFAULT_NAME
    trimmed = cleaned[: _MAX_NAME_LENGTH - 1].rstrip()
    return f"{trimmed}…"
