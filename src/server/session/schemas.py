from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionSummary(_CamelModel):
    id: str
    created_at: int
    updated_at: int
    workspace: str = ""
    user_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class SessionListResponse(_CamelModel):
    sessions: list[SessionSummary]


class SessionCreateRequest(_CamelModel):
    id: Optional[str] = Field(default=None, description="Client-chosen session id; generated when omitted.")
    workspace: str = ""
    user_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Session id must not be empty")
        if "/" in value or "\\" in value:
            raise ValueError("Session id must not contain path separators")
        return value


class SessionUpdateRequest(_CamelModel):
    workspace: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None,
        description="Keys merged into the existing metadata.",
    )


class DeleteResponse(_CamelModel):
    success: bool


class EventListResponse(_CamelModel):
    events: list[dict[str, Any]]


class EventAppendResponse(_CamelModel):
    success: bool
    event_id: str


class MessageView(_CamelModel):
    id: str
    role: str
    content: Any = ""
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


class MessageGroupView(_CamelModel):
    messages: list[MessageView]


class PlanView(_CamelModel):
    steps: list[dict[str, Any]] = Field(default_factory=list)
    is_complete: bool = False
    summary: Optional[str] = None
    has_generated_plan: bool = False


class MessagesResponse(_CamelModel):
    session_id: str
    groups: list[MessageGroupView]
    is_processing: bool = False
    plan: Optional[PlanView] = None


class SessionStatusResponse(_CamelModel):
    session_id: str
    is_processing: bool = False
    state: Optional[str] = None


class ReplayRequest(_CamelModel):
    mode: Literal["local", "upload"] = "local"
    output_dir: Optional[str] = None


class ReplayResponse(_CamelModel):
    success: bool
    file_path: Optional[str] = None
    share_url: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(_CamelModel):
    status: str
    storage: dict[str, Any]
