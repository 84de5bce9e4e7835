"""Conversation view reconstruction from agent event streams."""

from .batch import filter_streaming_events, optimize_events
from .context import EventHandlerContext, SessionViewState
from .grouping import MessageGroupCache, create_message_groups
from .handlers import EventHandler, EventHandlerRegistry, default_handlers
from .models import Message, MessageGroup, PanelContent, PlanState
from .processor import SessionEventProcessor

__all__ = [
    "EventHandler",
    "EventHandlerContext",
    "EventHandlerRegistry",
    "Message",
    "MessageGroup",
    "MessageGroupCache",
    "PanelContent",
    "PlanState",
    "SessionEventProcessor",
    "SessionViewState",
    "create_message_groups",
    "default_handlers",
    "filter_streaming_events",
    "optimize_events",
]
