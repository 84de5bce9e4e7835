"""Group a session's flat message list into conversation exchanges.

Rules:
1. A user message always starts a new group.
2. A system message is a group of its own.
3. An assistant or environment message whose ``message_id`` differs from the
   last assistant message already in the current group starts a new group
   (a new response cycle); otherwise it joins the current group.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .models import Message, MessageGroup

_SAMPLE_SIZE = 5


def create_message_groups(messages: Sequence[Message]) -> list[MessageGroup]:
    groups: list[MessageGroup] = []
    current: list[Message] = []

    def close_current() -> None:
        nonlocal current
        if current:
            groups.append(MessageGroup(messages=current))
        current = []

    for message in messages:
        if message.role == "user":
            close_current()
            current = [message]
        elif message.role == "system":
            close_current()
            groups.append(MessageGroup(messages=[message]))
        else:
            last_assistant = _last_assistant(current)
            if (
                message.message_id
                and last_assistant is not None
                and last_assistant.message_id
                and last_assistant.message_id != message.message_id
            ):
                close_current()
            current.append(message)

    close_current()
    return groups


def _last_assistant(group: list[Message]) -> Optional[Message]:
    for message in reversed(group):
        if message.role == "assistant":
            return message
    return None


@dataclass(slots=True)
class _CacheEntry:
    messages: tuple[Message, ...]
    version: Optional[int]
    groups: list[MessageGroup]


class MessageGroupCache:
    """Per-session memo of ``create_message_groups`` results.

    With a ``version`` the entry is reused only when the version matches and
    the message tuple is equal. Without one, full equality decides.
    ``approximate=True`` restores the old fast check (length plus the last
    five ids and timestamps); it can miss an edit to an earlier message and
    serve stale groups, so it is never the default.
    """

    def __init__(self, *, approximate: bool = False) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._approximate = approximate

    def get_groups(
        self, session_id: str, messages: Sequence[Message], version: Optional[int] = None
    ) -> list[MessageGroup]:
        snapshot = tuple(messages)
        entry = self._entries.get(session_id)
        if entry is not None and self._is_unchanged(entry, snapshot, version):
            return entry.groups

        groups = create_message_groups(snapshot)
        self._entries[session_id] = _CacheEntry(messages=snapshot, version=version, groups=groups)
        return groups

    def invalidate(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def retain(self, session_ids: Sequence[str]) -> None:
        """Evict entries for sessions that no longer exist."""
        keep = set(session_ids)
        for session_id in list(self._entries):
            if session_id not in keep:
                del self._entries[session_id]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def _is_unchanged(self, entry: _CacheEntry, snapshot: tuple[Message, ...], version: Optional[int]) -> bool:
        if self._approximate:
            return _sample_equal(entry.messages, snapshot)
        if version is not None and entry.version != version:
            return False
        if len(entry.messages) != len(snapshot):
            return False
        # Identity first; equal-but-distinct objects fall back to value comparison.
        return all(a is b or a == b for a, b in zip(entry.messages, snapshot))


def _sample_equal(cached: Sequence[Message], current: Sequence[Message]) -> bool:
    if len(cached) != len(current):
        return False
    for index in range(max(0, len(current) - _SAMPLE_SIZE), len(current)):
        if cached[index].id != current[index].id or cached[index].timestamp != current[index].timestamp:
            return False
    return True
