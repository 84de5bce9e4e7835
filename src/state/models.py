from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

MessageRole = Literal["user", "assistant", "system", "environment"]
MessageContent = Union[str, list[dict[str, Any]]]


@dataclass(slots=True)
class Message:
    id: str
    role: MessageRole = "assistant"
    content: MessageContent = ""
    timestamp: int = 0
    message_id: Optional[str] = None
    thinking: Optional[str] = None
    is_streaming: bool = False
    tool_calls: Optional[list[dict[str, Any]]] = None
    finish_reason: Optional[str] = None
    ttft_ms: Optional[int] = None
    ttlt_ms: Optional[int] = None
    description: Optional[str] = None
    level: Optional[str] = None
    details: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class MessageGroup:
    messages: list[Message] = field(default_factory=list)


@dataclass(slots=True)
class PanelContent:
    type: str
    source: Any
    title: str
    timestamp: int
    environment_id: Optional[str] = None
    tool_call_id: Optional[str] = None


@dataclass(slots=True)
class PlanState:
    steps: list[dict[str, Any]] = field(default_factory=list)
    is_complete: bool = False
    summary: Optional[str] = None
    has_generated_plan: bool = False


@dataclass(slots=True)
class ToolCallRecord:
    tool_call_id: str
    name: str
    arguments: dict[str, Any]
    timestamp: int


@dataclass(slots=True)
class ToolResultRecord:
    tool_call_id: str
    name: str
    content: Any
    timestamp: int
    arguments: Optional[dict[str, Any]] = None
    elapsed_ms: Optional[int] = None
    error: Optional[str] = None


def find_image_url(content: Any) -> Optional[str]:
    """First ``image_url`` part's URL in a structured content list."""
    if not isinstance(content, list):
        return None
    for part in content:
        if not isinstance(part, dict) or part.get("type") != "image_url":
            continue
        image = part.get("image_url")
        if isinstance(image, dict) and isinstance(image.get("url"), str):
            return image["url"]
    return None
