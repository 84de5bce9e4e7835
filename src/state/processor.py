from __future__ import annotations

import logging
import time
from typing import Iterable, Optional, Sequence

from src.errors import HandlerError
from src.events.types import STREAMING_EVENT_TYPES, AgentEvent

from .batch import optimize_events
from .context import EventHandlerContext, SessionViewState
from .grouping import MessageGroupCache
from .handlers import EventHandlerRegistry, default_handlers
from .models import Message, MessageGroup, PanelContent, PlanState, ToolResultRecord

logger = logging.getLogger(__name__)


class SessionEventProcessor:
    """Folds ordered session event streams into the derived conversation view.

    Events for one session must be applied in the order they were appended
    to storage. The fold itself does no I/O, so each event's effect is
    applied atomically with respect to other events.
    """

    def __init__(
        self,
        state: Optional[SessionViewState] = None,
        registry: Optional[EventHandlerRegistry] = None,
        *,
        replay_mode: bool = False,
        group_cache: Optional[MessageGroupCache] = None,
    ) -> None:
        self.state = state or SessionViewState()
        self.registry = registry or EventHandlerRegistry(default_handlers())
        self.replay_mode = replay_mode
        self._context = EventHandlerContext(self.state)
        self._group_cache = group_cache or MessageGroupCache()

    def set_active_session(self, session_id: Optional[str]) -> None:
        if session_id != self.state.active_session_id:
            self.state.active_panel_content = None
        self.state.active_session_id = session_id

    @property
    def active_session_id(self) -> Optional[str]:
        return self.state.active_session_id

    @property
    def active_panel_content(self) -> Optional[PanelContent]:
        return self.state.active_panel_content

    def process_event(self, session_id: str, event: AgentEvent) -> None:
        if self.replay_mode and event.type in STREAMING_EVENT_TYPES:
            return
        self._dispatch(session_id, event)

    def process_events(self, session_id: str, events: Sequence[AgentEvent]) -> None:
        """Apply a whole ordered event log, e.g. when restoring a session."""
        started = time.perf_counter()
        if self.replay_mode:
            events = [event for event in events if event.type not in STREAMING_EVENT_TYPES]
        optimized = optimize_events(events)
        for event in optimized:
            self._dispatch(session_id, event)
        logger.info(
            "Processed %d events (optimized to %d) for session %s in %.1fms",
            len(events),
            len(optimized),
            session_id,
            (time.perf_counter() - started) * 1000,
        )

    def get_messages(self, session_id: str) -> list[Message]:
        return list(self.state.messages.get(session_id, []))

    def get_grouped_messages(self, session_id: str) -> list[MessageGroup]:
        messages = self.state.messages.get(session_id, [])
        return self._group_cache.get_groups(session_id, messages, self.state.version(session_id))

    def is_processing(self, session_id: str) -> bool:
        return self.state.processing.get(session_id, False)

    def get_plan(self, session_id: str) -> Optional[PlanState]:
        return self.state.plans.get(session_id)

    def get_tool_results(self, session_id: str) -> list[ToolResultRecord]:
        return list(self.state.tool_results.get(session_id, []))

    def session_ids(self) -> Iterable[str]:
        return list(self.state.messages)

    def forget_session(self, session_id: str) -> None:
        """Drop all derived state for a deleted or unloaded session."""
        self.state.drop_session(session_id)
        self._group_cache.invalidate(session_id)

    def _dispatch(self, session_id: str, event: AgentEvent) -> None:
        handlers = self.registry.find_handlers(event)
        if not handlers:
            logger.warning("No handler found for event type: %s", event.type)
            return
        for handler in handlers:
            try:
                handler.handle(self._context, session_id, event)
            except Exception as exc:  # noqa: BLE001 - one failing handler must not stop the stream
                error = HandlerError(event.type, f"{type(handler).__name__} failed: {exc}")
                logger.exception("Error handling event %s: %s", event.type, error.message)
