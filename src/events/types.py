"""Canonical agent event schema.

Events are immutable pydantic models serialised with camelCase keys. Every
variant carries ``id``, ``type`` and ``timestamp`` (epoch milliseconds).
Event types this module does not know about are parsed into the base
``AgentEvent`` with all of their fields kept as extras, so producers can add
new types without consumers dropping them.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageContent = Union[str, list[dict[str, Any]]]

USER_MESSAGE = "user_message"
ASSISTANT_MESSAGE = "assistant_message"
ASSISTANT_STREAMING_MESSAGE = "assistant_streaming_message"
ASSISTANT_THINKING_MESSAGE = "assistant_thinking_message"
ASSISTANT_STREAMING_THINKING_MESSAGE = "assistant_streaming_thinking_message"
ASSISTANT_STREAMING_TOOL_CALL = "assistant_streaming_tool_call"
TOOL_CALL = "tool_call"
TOOL_RESULT = "tool_result"
AGENT_RUN_START = "agent_run_start"
AGENT_RUN_END = "agent_run_end"
SYSTEM = "system"
ENVIRONMENT_INPUT = "environment_input"
PLAN_START = "plan_start"
PLAN_UPDATE = "plan_update"
PLAN_FINISH = "plan_finish"
FINAL_ANSWER = "final_answer"
FINAL_ANSWER_STREAMING = "final_answer_streaming"

# High-frequency fragments that replay and key-frame export leave out.
STREAMING_EVENT_TYPES: frozenset[str] = frozenset(
    {
        ASSISTANT_STREAMING_MESSAGE,
        ASSISTANT_STREAMING_THINKING_MESSAGE,
        ASSISTANT_STREAMING_TOOL_CALL,
        FINAL_ANSWER_STREAMING,
    }
)


def now_ms() -> int:
    return int(time.time() * 1000)


class AgentEvent(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    type: str
    timestamp: int


class AgentRunStartEvent(AgentEvent):
    type: Literal["agent_run_start"] = AGENT_RUN_START
    session_id: Optional[str] = None
    run_options: Optional[dict[str, Any]] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class AgentRunEndEvent(AgentEvent):
    type: Literal["agent_run_end"] = AGENT_RUN_END
    session_id: Optional[str] = None
    status: Optional[str] = None
    elapsed_ms: Optional[int] = None
    iterations: Optional[int] = None


class UserMessageEvent(AgentEvent):
    type: Literal["user_message"] = USER_MESSAGE
    content: MessageContent = ""


class AssistantMessageEvent(AgentEvent):
    type: Literal["assistant_message"] = ASSISTANT_MESSAGE
    content: str = ""
    raw_content: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None
    finish_reason: Optional[str] = None
    message_id: Optional[str] = None
    ttft_ms: Optional[int] = None
    ttlt_ms: Optional[int] = None


class AssistantStreamingMessageEvent(AgentEvent):
    type: Literal["assistant_streaming_message"] = ASSISTANT_STREAMING_MESSAGE
    content: str = ""
    is_complete: bool = False
    message_id: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None


class AssistantThinkingMessageEvent(AgentEvent):
    type: Literal["assistant_thinking_message"] = ASSISTANT_THINKING_MESSAGE
    content: str = ""
    is_complete: bool = True
    message_id: Optional[str] = None


class AssistantStreamingThinkingMessageEvent(AgentEvent):
    type: Literal["assistant_streaming_thinking_message"] = ASSISTANT_STREAMING_THINKING_MESSAGE
    content: str = ""
    is_complete: bool = False
    message_id: Optional[str] = None


class AssistantStreamingToolCallEvent(AgentEvent):
    type: Literal["assistant_streaming_tool_call"] = ASSISTANT_STREAMING_TOOL_CALL
    tool_call_id: str = ""
    tool_name: str = ""
    arguments_delta: str = ""
    is_complete: bool = False
    message_id: Optional[str] = None


class ToolCallEvent(AgentEvent):
    type: Literal["tool_call"] = TOOL_CALL
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    tool: Optional[dict[str, Any]] = None
    start_time: Optional[int] = None


class ToolResultEvent(AgentEvent):
    type: Literal["tool_result"] = TOOL_RESULT
    tool_call_id: str
    name: str = ""
    content: Any = None
    elapsed_ms: Optional[int] = None
    error: Optional[str] = None


class EnvironmentInputEvent(AgentEvent):
    type: Literal["environment_input"] = ENVIRONMENT_INPUT
    content: MessageContent = ""
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class SystemEvent(AgentEvent):
    type: Literal["system"] = SYSTEM
    level: Literal["info", "warning", "error", "debug"] = "info"
    message: str = ""
    details: Optional[dict[str, Any]] = None


class PlanStartEvent(AgentEvent):
    type: Literal["plan_start"] = PLAN_START
    session_id: Optional[str] = None


class PlanUpdateEvent(AgentEvent):
    type: Literal["plan_update"] = PLAN_UPDATE
    session_id: Optional[str] = None
    steps: list[dict[str, Any]] = Field(default_factory=list)


class PlanFinishEvent(AgentEvent):
    type: Literal["plan_finish"] = PLAN_FINISH
    session_id: Optional[str] = None
    summary: Optional[str] = None


class FinalAnswerEvent(AgentEvent):
    type: Literal["final_answer"] = FINAL_ANSWER
    content: str = ""
    is_deep_research: bool = False
    title: Optional[str] = None
    format: Optional[str] = None
    message_id: Optional[str] = None


class FinalAnswerStreamingEvent(AgentEvent):
    type: Literal["final_answer_streaming"] = FINAL_ANSWER_STREAMING
    content: str = ""
    is_complete: bool = False
    message_id: Optional[str] = None


EVENT_MODELS: dict[str, type[AgentEvent]] = {
    AGENT_RUN_START: AgentRunStartEvent,
    AGENT_RUN_END: AgentRunEndEvent,
    USER_MESSAGE: UserMessageEvent,
    ASSISTANT_MESSAGE: AssistantMessageEvent,
    ASSISTANT_STREAMING_MESSAGE: AssistantStreamingMessageEvent,
    ASSISTANT_THINKING_MESSAGE: AssistantThinkingMessageEvent,
    ASSISTANT_STREAMING_THINKING_MESSAGE: AssistantStreamingThinkingMessageEvent,
    ASSISTANT_STREAMING_TOOL_CALL: AssistantStreamingToolCallEvent,
    TOOL_CALL: ToolCallEvent,
    TOOL_RESULT: ToolResultEvent,
    ENVIRONMENT_INPUT: EnvironmentInputEvent,
    SYSTEM: SystemEvent,
    PLAN_START: PlanStartEvent,
    PLAN_UPDATE: PlanUpdateEvent,
    PLAN_FINISH: PlanFinishEvent,
    FINAL_ANSWER: FinalAnswerEvent,
    FINAL_ANSWER_STREAMING: FinalAnswerStreamingEvent,
}


def is_streaming_event(event: AgentEvent) -> bool:
    return event.type in STREAMING_EVENT_TYPES


def parse_event(data: dict[str, Any]) -> AgentEvent:
    """Validate a raw event dict into its variant model.

    Raises ``pydantic.ValidationError`` when the payload is not a valid event.
    """
    event_type = data.get("type") if isinstance(data, dict) else None
    model = EVENT_MODELS.get(event_type, AgentEvent) if isinstance(event_type, str) else AgentEvent
    return model.model_validate(data)


def create_event(event_type: str, **fields: Any) -> AgentEvent:
    """Build a new event with a fresh id and the current timestamp."""
    fields.setdefault("id", str(uuid4()))
    fields.setdefault("timestamp", now_ms())
    model = EVENT_MODELS.get(event_type, AgentEvent)
    return model(type=event_type, **fields)


def dump_event(event: AgentEvent, *, exclude_none: bool = False) -> dict[str, Any]:
    return event.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)
