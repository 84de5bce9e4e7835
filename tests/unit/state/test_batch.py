from src.events.types import create_event
from src.state.batch import filter_streaming_events, optimize_events


def _fragment(content, message_id="m1", complete=False, event_type="assistant_streaming_message"):
    return create_event(event_type, content=content, message_id=message_id, is_complete=complete)


def test_adjacent_fragments_merge():
    events = [_fragment("Hel"), _fragment("lo"), _fragment("", complete=True)]

    (merged,) = optimize_events(events)

    assert merged.content == "Hello"
    assert merged.is_complete is True
    assert merged.id == events[0].id


def test_interleaved_events_are_not_reordered():
    tool_call = create_event("tool_call", tool_call_id="t1", name="search")
    events = [_fragment("a"), tool_call, _fragment("b")]

    optimized = optimize_events(events)

    assert [event.type for event in optimized] == [
        "assistant_streaming_message",
        "tool_call",
        "assistant_streaming_message",
    ]
    assert [getattr(event, "content", None) for event in optimized] == ["a", None, "b"]


def test_runs_split_on_message_id_and_type():
    events = [
        _fragment("a", message_id="m1"),
        _fragment("b", message_id="m2"),
        _fragment("c", message_id="m2", event_type="assistant_streaming_thinking_message"),
    ]

    assert len(optimize_events(events)) == 3


def test_run_stops_after_complete_fragment():
    events = [_fragment("a", complete=True), _fragment("b")]

    optimized = optimize_events(events)

    assert [event.content for event in optimized] == ["a", "b"]


def test_fragments_without_message_id_pass_through():
    events = [_fragment("a", message_id=None), _fragment("b", message_id=None)]

    assert optimize_events(events) == events


def test_merge_keeps_latest_tool_calls():
    calls = [{"id": "t1", "name": "search"}]
    events = [
        _fragment("a"),
        create_event("assistant_streaming_message", content="b", message_id="m1", tool_calls=calls),
        _fragment("c"),
    ]

    (merged,) = optimize_events(events)

    assert merged.tool_calls == calls


def test_filter_streaming_events():
    events = [
        *(_fragment(str(i)) for i in range(5)),
        create_event("final_answer_streaming", content="x"),
        create_event("assistant_message", content="final"),
    ]

    kept = filter_streaming_events(events)

    assert [event.type for event in kept] == ["assistant_message"]
