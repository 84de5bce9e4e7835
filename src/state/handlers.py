"""Event handlers that fold agent events into the session view state.

Each handler declares the event types it accepts. Handlers never raise on
duplicate or out-of-order events: message updates go through the upsert in
``EventHandlerContext.update_message``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import ClassVar, Iterable

from src.events import types as ev
from src.events.types import AgentEvent

from .context import EventHandlerContext
from .models import PanelContent, PlanState, ToolCallRecord, ToolResultRecord, find_image_url

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "debug": logging.DEBUG,
}


class EventHandler:
    event_types: ClassVar[tuple[str, ...]] = ()

    def handle(self, context: EventHandlerContext, session_id: str, event: AgentEvent) -> None:
        raise NotImplementedError


class AgentRunStartHandler(EventHandler):
    event_types = (ev.AGENT_RUN_START,)

    def handle(self, context, session_id, event):
        if context.is_active(session_id):
            context.set_processing(session_id, True)


class AgentRunEndHandler(EventHandler):
    event_types = (ev.AGENT_RUN_END,)

    def handle(self, context, session_id, event):
        if context.is_active(session_id):
            context.set_processing(session_id, False)


class UserMessageHandler(EventHandler):
    event_types = (ev.USER_MESSAGE,)

    def handle(self, context, session_id, event):
        context.update_message(
            session_id,
            {"id": event.id, "role": "user", "content": event.content, "timestamp": event.timestamp},
        )

        # Uploaded images go straight to the workspace panel.
        image_url = find_image_url(event.content)
        if image_url and context.is_active(session_id):
            context.set_panel_content(
                PanelContent(type="image", source=image_url, title="User Upload", timestamp=event.timestamp)
            )


class AssistantMessageHandler(EventHandler):
    event_types = (ev.ASSISTANT_MESSAGE,)

    def handle(self, context, session_id, event):
        context.update_message(
            session_id,
            {
                "id": event.id,
                "role": "assistant",
                "content": event.content,
                "timestamp": event.timestamp,
                "tool_calls": event.tool_calls,
                "finish_reason": event.finish_reason,
                "message_id": event.message_id,
                "is_streaming": False,
                "ttft_ms": event.ttft_ms,
                "ttlt_ms": event.ttlt_ms,
            },
        )

        if event.finish_reason != "tool_calls" and context.is_active(session_id):
            # Show the latest environment screenshot as the final browser state.
            for message in reversed(context.get_messages(session_id)):
                if message.role == "environment" and find_image_url(message.content):
                    context.set_panel_content(
                        PanelContent(
                            type="image",
                            source=message.content,
                            title=message.description or "Final Browser State",
                            timestamp=message.timestamp,
                            environment_id=message.id,
                        )
                    )
                    break

        context.set_processing(session_id, False)


class StreamingMessageHandler(EventHandler):
    event_types = (ev.ASSISTANT_STREAMING_MESSAGE,)

    def handle(self, context, session_id, event):
        existing = context.find_message(session_id, event.message_id) if event.message_id else None
        if existing is None:
            existing = context.find_streaming_message(session_id)

        if existing is not None:
            current = existing.content if isinstance(existing.content, str) else ""
            context.update_message(
                session_id,
                {
                    "id": existing.id,
                    "content": current + event.content,
                    "is_streaming": not event.is_complete,
                    "tool_calls": event.tool_calls or existing.tool_calls,
                    "message_id": event.message_id or existing.message_id,
                },
            )
        else:
            context.update_message(
                session_id,
                {
                    "id": event.id,
                    "role": "assistant",
                    "content": event.content,
                    "timestamp": event.timestamp,
                    "is_streaming": not event.is_complete,
                    "tool_calls": event.tool_calls,
                    "message_id": event.message_id,
                },
            )

        if event.is_complete:
            context.set_processing(session_id, False)


class ThinkingMessageHandler(EventHandler):
    event_types = (ev.ASSISTANT_THINKING_MESSAGE, ev.ASSISTANT_STREAMING_THINKING_MESSAGE)

    def handle(self, context, session_id, event):
        streaming = event.type == ev.ASSISTANT_STREAMING_THINKING_MESSAGE
        existing = context.find_message(session_id, event.message_id, role="assistant") if event.message_id else None

        if existing is not None:
            thinking = (existing.thinking or "") + event.content if streaming else event.content
            context.update_message(
                session_id,
                {
                    "id": existing.id,
                    "thinking": thinking,
                    "message_id": event.message_id,
                    "is_streaming": streaming and not event.is_complete,
                },
            )
        else:
            context.update_message(
                session_id,
                {
                    "id": event.id,
                    "role": "assistant",
                    "content": "",
                    "timestamp": event.timestamp,
                    "thinking": event.content,
                    "message_id": event.message_id,
                    "is_streaming": streaming and not event.is_complete,
                },
            )


class FinalAnswerHandler(EventHandler):
    event_types = (ev.FINAL_ANSWER,)

    def handle(self, context, session_id, event):
        context.update_message(
            session_id,
            {
                "id": event.id,
                "role": "assistant",
                "content": event.content,
                "timestamp": event.timestamp,
                "message_id": event.message_id,
                "finish_reason": "stop",
                "is_streaming": False,
            },
        )
        if event.is_deep_research and context.is_active(session_id):
            context.set_panel_content(
                PanelContent(
                    type="research_report",
                    source=event.content,
                    title=event.title or "Research Report",
                    timestamp=event.timestamp,
                )
            )
        context.set_processing(session_id, False)


class EnvironmentInputHandler(EventHandler):
    event_types = (ev.ENVIRONMENT_INPUT,)

    def handle(self, context, session_id, event):
        context.update_message(
            session_id,
            {
                "id": event.id,
                "role": "environment",
                "content": event.content,
                "timestamp": event.timestamp,
                "description": event.description or "Environment Input",
            },
        )
        if find_image_url(event.content) and context.is_active(session_id):
            context.set_panel_content(
                PanelContent(
                    type="image",
                    source=event.content,
                    title=event.description or "Environment Input",
                    timestamp=event.timestamp,
                    environment_id=event.id,
                )
            )


class ToolCallHandler(EventHandler):
    event_types = (ev.TOOL_CALL,)

    def handle(self, context, session_id, event):
        pending = context.pending_tool_calls(session_id)
        if event.tool_call_id in pending:
            logger.warning(
                "Duplicate active tool call %s in session %s; keeping the first", event.tool_call_id, session_id
            )
            return
        pending[event.tool_call_id] = ToolCallRecord(
            tool_call_id=event.tool_call_id,
            name=event.name,
            arguments=dict(event.arguments),
            timestamp=event.timestamp,
        )


class ToolResultHandler(EventHandler):
    event_types = (ev.TOOL_RESULT,)

    def handle(self, context, session_id, event):
        call = context.pending_tool_calls(session_id).pop(event.tool_call_id, None)
        if call is None:
            logger.warning("Tool result %s has no matching tool call in session %s", event.tool_call_id, session_id)
            return

        context.add_tool_result(
            session_id,
            ToolResultRecord(
                tool_call_id=event.tool_call_id,
                name=event.name or call.name,
                content=event.content,
                timestamp=event.timestamp,
                arguments=call.arguments,
                elapsed_ms=event.elapsed_ms,
                error=event.error,
            ),
        )
        if context.is_active(session_id):
            context.set_panel_content(
                PanelContent(
                    type="image" if find_image_url(event.content) else "tool_result",
                    source=event.content,
                    title=event.name or call.name,
                    timestamp=event.timestamp,
                    tool_call_id=event.tool_call_id,
                )
            )


class SystemMessageHandler(EventHandler):
    event_types = (ev.SYSTEM,)

    def handle(self, context, session_id, event):
        level = getattr(event, "level", "info")
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] system: %s", session_id, getattr(event, "message", ""))
        context.update_message(
            session_id,
            {
                "id": event.id,
                "role": "system",
                "content": getattr(event, "message", ""),
                "timestamp": event.timestamp,
                "level": level,
                "details": getattr(event, "details", None),
            },
        )


class PlanHandler(EventHandler):
    event_types = (ev.PLAN_START, ev.PLAN_UPDATE, ev.PLAN_FINISH)

    def handle(self, context, session_id, event):
        plan = context.get_plan(session_id)
        if event.type == ev.PLAN_START:
            plan = PlanState()
        elif event.type == ev.PLAN_UPDATE:
            plan = replace(plan, steps=list(event.steps), has_generated_plan=True)
        else:
            plan = replace(plan, is_complete=True, summary=event.summary)
        context.set_plan(session_id, plan)

        if context.is_active(session_id) and plan.has_generated_plan:
            context.set_panel_content(PanelContent(type="plan", source=plan, title="Plan", timestamp=event.timestamp))


class EventHandlerRegistry:
    """Maps event types to their ordered handler lists."""

    def __init__(self, handlers: Iterable[EventHandler] = ()) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: EventHandler) -> None:
        for event_type in handler.event_types:
            self._handlers.setdefault(event_type, []).append(handler)

    def find_handlers(self, event: AgentEvent) -> list[EventHandler]:
        return list(self._handlers.get(event.type, ()))


def default_handlers() -> list[EventHandler]:
    return [
        AgentRunStartHandler(),
        AgentRunEndHandler(),
        UserMessageHandler(),
        AssistantMessageHandler(),
        StreamingMessageHandler(),
        ThinkingMessageHandler(),
        FinalAnswerHandler(),
        EnvironmentInputHandler(),
        ToolCallHandler(),
        ToolResultHandler(),
        SystemMessageHandler(),
        PlanHandler(),
    ]
