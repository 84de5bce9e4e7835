import logging

import pytest

from src.events.types import AgentEvent, create_event
from src.state.handlers import EventHandler, EventHandlerRegistry, default_handlers
from src.state.processor import SessionEventProcessor

IMAGE_CONTENT = [
    {"type": "text", "text": "look at this"},
    {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
]


def _processor(active: str = "s1", **kwargs) -> SessionEventProcessor:
    processor = SessionEventProcessor(**kwargs)
    processor.set_active_session(active)
    return processor


def _streaming(content: str, *, message_id: str = "m1", complete: bool = False, **fields) -> AgentEvent:
    return create_event(
        "assistant_streaming_message", content=content, message_id=message_id, is_complete=complete, **fields
    )


def _conversation() -> list[AgentEvent]:
    return [
        create_event("agent_run_start"),
        create_event("user_message", content="What is the weather?"),
        create_event("assistant_streaming_thinking_message", content="Let me ", message_id="m1"),
        create_event("assistant_streaming_thinking_message", content="check.", message_id="m1", is_complete=True),
        _streaming("It is "),
        _streaming("sunny"),
        create_event("tool_call", tool_call_id="t1", name="weather", arguments={"city": "Paris"}),
        create_event("tool_result", tool_call_id="t1", name="weather", content="22C"),
        _streaming("", complete=True),
        create_event("assistant_message", content="It is sunny", message_id="m1", finish_reason="stop"),
        create_event("agent_run_end", status="success"),
    ]


def test_batch_and_incremental_paths_agree():
    events = _conversation()

    incremental = _processor()
    for event in events:
        incremental.process_event("s1", event)

    batch = _processor()
    batch.process_events("s1", events)

    assert batch.get_messages("s1") == incremental.get_messages("s1")
    assert batch.is_processing("s1") == incremental.is_processing("s1") is False


def test_streaming_fragments_accumulate():
    processor = _processor()
    for event in (_streaming("Hel"), _streaming("lo"), _streaming("", complete=True)):
        processor.process_event("s1", event)

    (message,) = processor.get_messages("s1")
    assert message.content == "Hello"
    assert message.is_streaming is False


def test_fragment_with_new_message_id_continues_current_stream():
    processor = _processor()
    processor.process_event("s1", _streaming("Hel", message_id="a"))
    processor.process_event("s1", _streaming("lo", message_id="b", complete=True))

    (message,) = processor.get_messages("s1")
    assert message.content == "Hello"
    assert message.is_streaming is False
    assert message.message_id == "b"


def test_fragment_with_new_message_id_starts_message_after_completed_stream():
    processor = _processor()
    processor.process_event("s1", _streaming("first", message_id="a", complete=True))
    processor.process_event("s1", _streaming("second", message_id="b"))

    first, second = processor.get_messages("s1")
    assert (first.content, first.message_id, first.is_streaming) == ("first", "a", False)
    assert (second.content, second.message_id, second.is_streaming) == ("second", "b", True)


def test_streaming_without_message_id_uses_current_stream():
    processor = _processor()
    processor.process_event("s1", create_event("assistant_streaming_message", content="a"))
    processor.process_event("s1", create_event("assistant_streaming_message", content="b", is_complete=True))

    (message,) = processor.get_messages("s1")
    assert message.content == "ab"
    assert message.is_streaming is False


def test_assistant_messages_upsert_by_message_id():
    processor = _processor()
    first = create_event("assistant_message", content="draft", message_id="m1", finish_reason="tool_calls")
    second = create_event("assistant_message", content="final", message_id="m1", finish_reason="stop")
    processor.process_event("s1", first)
    processor.process_event("s1", second)

    (message,) = processor.get_messages("s1")
    assert message.id == first.id
    assert message.content == "final"
    assert message.finish_reason == "stop"


def test_duplicate_event_does_not_duplicate_message():
    processor = _processor()
    event = create_event("assistant_message", content="once")
    processor.process_event("s1", event)
    processor.process_event("s1", event)

    assert len(processor.get_messages("s1")) == 1


def test_unmatched_tool_result_is_ignored(caplog):
    processor = _processor()
    processor.process_event("s1", create_event("user_message", content="hi"))
    before = processor.get_messages("s1")

    with caplog.at_level(logging.WARNING):
        processor.process_event("s1", create_event("tool_result", tool_call_id="nope", content="x"))

    assert processor.get_messages("s1") == before
    assert processor.get_tool_results("s1") == []
    assert "no matching tool call" in caplog.text


def test_tool_result_pairs_with_call_and_sets_panel():
    processor = _processor()
    processor.process_event("s1", create_event("tool_call", tool_call_id="t1", name="search", arguments={"q": "x"}))
    processor.process_event("s1", create_event("tool_result", tool_call_id="t1", content="found", elapsed_ms=12))

    (result,) = processor.get_tool_results("s1")
    assert result.name == "search"
    assert result.arguments == {"q": "x"}
    assert result.elapsed_ms == 12
    assert processor.active_panel_content.type == "tool_result"
    assert processor.active_panel_content.tool_call_id == "t1"


def test_duplicate_tool_call_keeps_first():
    processor = _processor()
    processor.process_event("s1", create_event("tool_call", tool_call_id="t1", name="first"))
    processor.process_event("s1", create_event("tool_call", tool_call_id="t1", name="second"))
    processor.process_event("s1", create_event("tool_result", tool_call_id="t1", content="ok"))

    (result,) = processor.get_tool_results("s1")
    assert result.name == "first"


def test_replay_mode_skips_streaming_events():
    processor = _processor(replay_mode=True)
    processor.process_event("s1", _streaming("partial"))
    processor.process_event("s1", create_event("final_answer_streaming", content="partial"))
    assert processor.get_messages("s1") == []

    processor.process_events("s1", [_streaming("x"), create_event("assistant_message", content="done")])
    (message,) = processor.get_messages("s1")
    assert message.content == "done"


def test_run_flags_only_follow_active_session():
    processor = _processor(active="s1")
    processor.process_event("s2", create_event("agent_run_start"))
    assert processor.is_processing("s2") is False

    processor.process_event("s1", create_event("agent_run_start"))
    assert processor.is_processing("s1") is True
    processor.process_event("s1", create_event("agent_run_end"))
    assert processor.is_processing("s1") is False


def test_background_session_does_not_touch_panel():
    processor = _processor(active="s1")
    processor.process_event("s2", create_event("user_message", content=IMAGE_CONTENT))

    assert processor.active_panel_content is None
    assert len(processor.get_messages("s2")) == 1


def test_user_image_goes_to_panel():
    processor = _processor()
    processor.process_event("s1", create_event("user_message", content=IMAGE_CONTENT))

    panel = processor.active_panel_content
    assert panel.type == "image"
    assert panel.title == "User Upload"
    assert panel.source == "data:image/png;base64,AAAA"


def test_final_assistant_message_shows_latest_environment_image():
    processor = _processor()
    processor.process_event("s1", create_event("environment_input", content=IMAGE_CONTENT, description="Screenshot"))
    environment_id = processor.get_messages("s1")[0].id
    processor.process_event("s1", create_event("tool_call", tool_call_id="t1", name="click"))
    processor.process_event("s1", create_event("tool_result", tool_call_id="t1", content="clicked"))

    processor.process_event("s1", create_event("assistant_message", content="done", finish_reason="stop"))

    panel = processor.active_panel_content
    assert panel.type == "image"
    assert panel.environment_id == environment_id


def test_thinking_appends_when_streaming_and_replaces_otherwise():
    processor = _processor()
    processor.process_event("s1", create_event("assistant_streaming_thinking_message", content="a", message_id="m1"))
    processor.process_event("s1", create_event("assistant_streaming_thinking_message", content="b", message_id="m1"))
    (message,) = processor.get_messages("s1")
    assert message.thinking == "ab"
    assert message.content == ""

    processor.process_event("s1", create_event("assistant_thinking_message", content="final", message_id="m1"))
    (message,) = processor.get_messages("s1")
    assert message.thinking == "final"


def test_plan_lifecycle():
    processor = _processor()
    processor.process_event("s1", create_event("plan_start"))
    assert processor.get_plan("s1").has_generated_plan is False

    steps = [{"content": "search", "isCompleted": False}]
    processor.process_event("s1", create_event("plan_update", steps=steps))
    processor.process_event("s1", create_event("plan_finish", summary="all done"))

    plan = processor.get_plan("s1")
    assert plan.steps == steps
    assert plan.is_complete is True
    assert plan.summary == "all done"
    assert processor.active_panel_content.type == "plan"


def test_system_events_become_messages_with_level():
    processor = _processor()
    processor.process_event("s1", create_event("system", level="error", message="boom", details={"code": 1}))

    (message,) = processor.get_messages("s1")
    assert message.role == "system"
    assert message.level == "error"
    assert message.content == "boom"


def test_unknown_event_type_is_inert(caplog):
    processor = _processor()
    event = AgentEvent.model_validate({"id": "x", "type": "brand_new_type", "timestamp": 1})

    with caplog.at_level(logging.WARNING):
        processor.process_event("s1", event)

    assert processor.get_messages("s1") == []
    assert "No handler found" in caplog.text


class _ExplodingHandler(EventHandler):
    event_types = ("user_message",)

    def handle(self, context, session_id, event):
        raise RuntimeError("kaboom")


def test_failing_handler_does_not_stop_others(caplog):
    registry = EventHandlerRegistry([_ExplodingHandler(), *default_handlers()])
    processor = _processor(registry=registry)

    with caplog.at_level(logging.ERROR):
        processor.process_event("s1", create_event("user_message", content="still here"))
        processor.process_event("s1", create_event("assistant_message", content="and me"))

    assert [m.content for m in processor.get_messages("s1")] == ["still here", "and me"]
    assert "kaboom" in caplog.text


def test_switching_active_session_clears_panel():
    processor = _processor()
    processor.process_event("s1", create_event("user_message", content=IMAGE_CONTENT))
    assert processor.active_panel_content is not None

    processor.set_active_session("s2")
    assert processor.active_panel_content is None


def test_forget_session_drops_state():
    processor = _processor()
    processor.process_event("s1", create_event("user_message", content="hi"))
    processor.get_grouped_messages("s1")

    processor.forget_session("s1")

    assert processor.get_messages("s1") == []
    assert processor.active_session_id is None
    assert "s1" not in list(processor.session_ids())


def test_grouped_messages_refresh_after_update():
    processor = _processor()
    processor.process_event("s1", create_event("user_message", content="hi"))
    processor.process_event("s1", _streaming("par"))
    first = processor.get_grouped_messages("s1")
    assert first[0].messages[-1].content == "par"

    processor.process_event("s1", _streaming("tial", complete=True))
    second = processor.get_grouped_messages("s1")
    assert second[0].messages[-1].content == "partial"


@pytest.mark.parametrize("complete_at", [0, 1, 2])
def test_batch_matches_incremental_with_early_completion(complete_at):
    events = [
        _streaming(text, complete=index == complete_at)
        for index, text in enumerate(["a", "b", "c"])
    ]

    incremental = _processor()
    for event in events:
        incremental.process_event("s1", event)
    batch = _processor()
    batch.process_events("s1", events)

    assert batch.get_messages("s1") == incremental.get_messages("s1")
