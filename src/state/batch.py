from __future__ import annotations

from typing import Iterable, Optional, Sequence

from src.events import types as ev
from src.events.types import AgentEvent, STREAMING_EVENT_TYPES

# Fragment types whose handlers only concatenate ``content`` onto the same message.
_MERGEABLE_TYPES = frozenset({ev.ASSISTANT_STREAMING_MESSAGE, ev.ASSISTANT_STREAMING_THINKING_MESSAGE})


def filter_streaming_events(events: Iterable[AgentEvent]) -> list[AgentEvent]:
    return [event for event in events if event.type not in STREAMING_EVENT_TYPES]


def optimize_events(events: Sequence[AgentEvent]) -> list[AgentEvent]:
    """Collapse adjacent streaming fragments of one message into a single fragment.

    Only runs of the same fragment type and ``message_id`` with no other event
    in between are merged, and a run ends at its first complete fragment, so
    folding the result gives the same state as folding every fragment.
    Event order is never changed.
    """
    optimized: list[AgentEvent] = []
    run: list[AgentEvent] = []

    for event in events:
        if run and _continues_run(run[-1], event):
            run.append(event)
            continue
        if run:
            optimized.append(_merge_run(run))
            run = []
        if _can_start_run(event):
            run = [event]
        else:
            optimized.append(event)

    if run:
        optimized.append(_merge_run(run))
    return optimized


def _can_start_run(event: AgentEvent) -> bool:
    return event.type in _MERGEABLE_TYPES and bool(getattr(event, "message_id", None))


def _continues_run(previous: AgentEvent, event: AgentEvent) -> bool:
    return (
        event.type == previous.type
        and getattr(event, "message_id", None) == previous.message_id
        and not previous.is_complete
    )


def _merge_run(run: list[AgentEvent]) -> AgentEvent:
    if len(run) == 1:
        return run[0]
    first, last = run[0], run[-1]
    changes = {
        "content": "".join(event.content for event in run),
        "is_complete": last.is_complete,
    }
    if first.type == ev.ASSISTANT_STREAMING_MESSAGE:
        changes["tool_calls"] = _last_tool_calls(run)
    return first.model_copy(update=changes)


def _last_tool_calls(run: list[AgentEvent]) -> Optional[list]:
    for event in reversed(run):
        if event.tool_calls:
            return event.tool_calls
    return run[0].tool_calls
