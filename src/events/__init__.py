"""Agent event schema, the in-process event stream and the client bridge."""

from .bridge import AGENT_STATUS, EventStreamBridge
from .stream import AgentEventStream
from .types import (
    EVENT_MODELS,
    STREAMING_EVENT_TYPES,
    AgentEvent,
    create_event,
    dump_event,
    is_streaming_event,
    parse_event,
)

__all__ = [
    "AGENT_STATUS",
    "EVENT_MODELS",
    "STREAMING_EVENT_TYPES",
    "AgentEvent",
    "AgentEventStream",
    "EventStreamBridge",
    "create_event",
    "dump_event",
    "is_streaming_event",
    "parse_event",
]
