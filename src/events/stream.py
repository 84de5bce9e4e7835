from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from .types import (
    ASSISTANT_MESSAGE,
    ASSISTANT_STREAMING_MESSAGE,
    ASSISTANT_STREAMING_THINKING_MESSAGE,
    ASSISTANT_STREAMING_TOOL_CALL,
    TOOL_RESULT,
    AgentEvent,
    create_event,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentEvent], None]

_DEFAULT_MAX_EVENTS = 1000


class AgentEventStream:
    """In-process event source the agent runtime writes to.

    Keeps a sliding window of recent events and notifies subscribers
    synchronously, in subscription order, on every ``send_event``.
    """

    def __init__(self, *, max_events: Optional[int] = _DEFAULT_MAX_EVENTS, auto_trim: bool = True) -> None:
        self._events: list[AgentEvent] = []
        self._subscribers: list[EventCallback] = []
        self._max_events = max_events
        self._auto_trim = auto_trim

    def create_event(self, event_type: str, **fields: Any) -> AgentEvent:
        return create_event(event_type, **fields)

    def send_event(self, event: AgentEvent) -> None:
        self._events.append(event)
        logger.debug("Event added: %s (%s), total events: %d", event.type, event.id, len(self._events))

        for callback in tuple(self._subscribers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001 - one subscriber must not break the stream
                logger.exception("Error in event subscriber for %s", event.type)

        if self._auto_trim and self._max_events and len(self._events) > self._max_events:
            removed = self._events.pop(0)
            logger.debug("Sliding window: removed oldest event %s (%d remaining)", removed.type, len(self._events))

    def get_events(self, types: Optional[Iterable[str]] = None, limit: Optional[int] = None) -> list[AgentEvent]:
        events = self._events
        if types:
            wanted = set(types)
            events = [event for event in events if event.type in wanted]
        if limit and limit > 0 and len(events) > limit:
            events = events[-limit:]
        return list(events)

    def get_latest_tool_results(self) -> list[dict[str, Any]]:
        """Tool results emitted after the most recent assistant message."""
        latest_index = None
        for index in range(len(self._events) - 1, -1, -1):
            if self._events[index].type == ASSISTANT_MESSAGE:
                latest_index = index
                break
        if latest_index is None:
            return []
        return [
            {"toolCallId": event.tool_call_id, "toolName": event.name, "content": event.content}
            for event in self._events[latest_index + 1 :]
            if event.type == TOOL_RESULT
        ]

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        self._subscribers.append(callback)
        logger.debug("Subscribed to events (total subscribers: %d)", len(self._subscribers))

        def unsubscribe() -> None:
            self._subscribers = [cb for cb in self._subscribers if cb is not callback]
            logger.debug("Unsubscribed from events (remaining subscribers: %d)", len(self._subscribers))

        return unsubscribe

    def subscribe_to_types(self, types: Iterable[str], callback: EventCallback) -> Callable[[], None]:
        wanted = frozenset(types)

        def filtered(event: AgentEvent) -> None:
            if event.type in wanted:
                callback(event)

        return self.subscribe(filtered)

    def subscribe_to_streaming_events(self, callback: EventCallback) -> Callable[[], None]:
        return self.subscribe_to_types(
            (
                ASSISTANT_STREAMING_MESSAGE,
                ASSISTANT_STREAMING_THINKING_MESSAGE,
                ASSISTANT_STREAMING_TOOL_CALL,
            ),
            callback,
        )
