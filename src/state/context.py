"""Derived view state and the write paths handlers use to change it."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from src.events.types import now_ms

from .models import Message, PanelContent, PlanState, ToolCallRecord, ToolResultRecord


class SessionViewState:
    """Everything the processor derives from event logs.

    Per-session maps are keyed by session id. ``active_session_id`` names the
    foregrounded session; ``active_panel_content`` is a single slot that only
    the active session's events may overwrite.
    """

    def __init__(self) -> None:
        self.messages: dict[str, list[Message]] = {}
        self.processing: dict[str, bool] = {}
        self.plans: dict[str, PlanState] = {}
        self.tool_calls: dict[str, dict[str, ToolCallRecord]] = {}
        self.tool_results: dict[str, list[ToolResultRecord]] = {}
        self.versions: dict[str, int] = {}
        self.active_session_id: Optional[str] = None
        self.active_panel_content: Optional[PanelContent] = None

    def version(self, session_id: str) -> int:
        return self.versions.get(session_id, 0)

    def drop_session(self, session_id: str) -> None:
        for mapping in (self.messages, self.processing, self.plans, self.tool_calls, self.tool_results, self.versions):
            mapping.pop(session_id, None)
        if self.active_session_id == session_id:
            self.active_session_id = None
            self.active_panel_content = None


class EventHandlerContext:
    def __init__(self, state: SessionViewState) -> None:
        self.state = state

    def is_active(self, session_id: str) -> bool:
        return session_id == self.state.active_session_id

    def get_messages(self, session_id: str) -> list[Message]:
        return self.state.messages.get(session_id, [])

    def find_message(self, session_id: str, message_id: str, *, role: Optional[str] = None) -> Optional[Message]:
        for message in self.get_messages(session_id):
            if message.message_id == message_id and (role is None or message.role == role):
                return message
        return None

    def find_streaming_message(self, session_id: str) -> Optional[Message]:
        for message in reversed(self.get_messages(session_id)):
            if message.role == "assistant" and message.is_streaming:
                return message
        return None

    def update_message(self, session_id: str, update: dict[str, Any]) -> Message:
        """Merge ``update`` into the matching message, or append a new one.

        Identity is ``message_id`` when present, else ``id``. An existing
        message keeps its own ``id``.
        """
        messages = self.get_messages(session_id)
        update_id = update["id"]
        key = update.get("message_id") or update_id

        index = next(
            (
                i
                for i, message in enumerate(messages)
                if (message.message_id and message.message_id == key) or message.id == update_id
            ),
            None,
        )
        updated = list(messages)
        if index is not None:
            changes = {name: value for name, value in update.items() if name != "id"}
            message = replace(messages[index], **changes)
            updated[index] = message
        else:
            fields: dict[str, Any] = {"role": "assistant", "content": "", "timestamp": now_ms()}
            fields.update(update)
            message = Message(**fields)
            updated.append(message)

        self.state.messages[session_id] = updated
        self._touch(session_id)
        return message

    def set_processing(self, session_id: str, value: bool) -> None:
        self.state.processing[session_id] = value

    def set_panel_content(self, content: PanelContent) -> None:
        self.state.active_panel_content = content

    def get_plan(self, session_id: str) -> PlanState:
        return self.state.plans.setdefault(session_id, PlanState())

    def set_plan(self, session_id: str, plan: PlanState) -> None:
        self.state.plans[session_id] = plan

    def pending_tool_calls(self, session_id: str) -> dict[str, ToolCallRecord]:
        return self.state.tool_calls.setdefault(session_id, {})

    def add_tool_result(self, session_id: str, result: ToolResultRecord) -> None:
        self.state.tool_results.setdefault(session_id, []).append(result)

    def _touch(self, session_id: str) -> None:
        self.state.versions[session_id] = self.state.versions.get(session_id, 0) + 1
