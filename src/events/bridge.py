from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from .types import (
    AGENT_RUN_END,
    AGENT_RUN_START,
    ASSISTANT_MESSAGE,
    ASSISTANT_STREAMING_MESSAGE,
    SYSTEM,
    TOOL_CALL,
    TOOL_RESULT,
    USER_MESSAGE,
    AgentEvent,
)

logger = logging.getLogger(__name__)

BridgeHandler = Callable[[str, Any], None]

AGENT_STATUS = "agent-status"


class EventSource(Protocol):
    def subscribe(self, callback: Callable[[AgentEvent], None]) -> Callable[[], None]: ...


class EventStreamBridge:
    """Fans one upstream event source out to client-facing channels."""

    def __init__(self) -> None:
        self._subscribers: list[BridgeHandler] = []

    def subscribe(self, handler: BridgeHandler) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: BridgeHandler) -> None:
        self._subscribers = [h for h in self._subscribers if h != handler]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event_type: str, payload: Any) -> None:
        # Snapshot: handlers added or removed mid-dispatch do not affect this call.
        for handler in tuple(self._subscribers):
            try:
                handler(event_type, payload)
            except Exception:  # noqa: BLE001 - keep fanning out to the other channels
                logger.exception("Bridge subscriber failed while handling %s", event_type)

    def connect(self, source: EventSource) -> Callable[[], None]:
        """Translate raw agent events from ``source`` into client signals.

        Returns the upstream unsubscribe function.
        """
        return source.subscribe(self.translate)

    def translate(self, event: AgentEvent) -> None:
        event_type = event.type
        if event_type == AGENT_RUN_START:
            self.emit(
                AGENT_STATUS,
                {
                    "isProcessing": True,
                    "state": "initializing",
                    "phase": "model_initialization",
                    "message": "Initializing model and processing request...",
                },
            )
        elif event_type == AGENT_RUN_END:
            self.emit(AGENT_STATUS, {"isProcessing": False, "state": getattr(event, "status", None) or "idle"})
        elif event_type == USER_MESSAGE:
            self.emit(
                AGENT_STATUS,
                {
                    "isProcessing": True,
                    "state": "processing",
                    "phase": "request_processing",
                    "message": "Processing your request...",
                },
            )
            self.emit("query", {"text": event.content})
        elif event_type == ASSISTANT_MESSAGE:
            self.emit("answer", {"text": event.content})
        elif event_type == ASSISTANT_STREAMING_MESSAGE:
            if not event.is_complete:
                self.emit(
                    AGENT_STATUS,
                    {
                        "isProcessing": True,
                        "state": "streaming",
                        "phase": "first_token_received",
                        "message": "Generating response...",
                    },
                )
            self.emit(
                "streaming_message",
                {"content": event.content, "isComplete": event.is_complete, "messageId": event.message_id},
            )
        elif event_type == TOOL_CALL:
            self.emit(
                AGENT_STATUS,
                {
                    "isProcessing": True,
                    "state": "executing_tools",
                    "phase": "tool_execution",
                    "message": f"Executing {event.name}...",
                },
            )
            self.emit(TOOL_CALL, event)
        elif event_type == TOOL_RESULT:
            self.emit(TOOL_RESULT, event)
        elif event_type == SYSTEM:
            level = getattr(event, "level", "info")
            if level == "error":
                self.emit("error", event)
            elif level == "debug":
                self.emit("debug", event)
            else:
                self.emit(SYSTEM, event)
        else:
            self.emit(event_type, event)
