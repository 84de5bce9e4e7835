from src.events.bridge import AGENT_STATUS, EventStreamBridge
from src.events.stream import AgentEventStream
from src.events.types import AgentEvent, create_event


def _connected():
    stream = AgentEventStream()
    bridge = EventStreamBridge()
    signals = []
    bridge.subscribe(lambda event_type, payload: signals.append((event_type, payload)))
    bridge.connect(stream)
    return stream, bridge, signals


def test_tool_call_emits_status_then_event():
    stream, _, signals = _connected()
    event = create_event("tool_call", tool_call_id="t1", name="search")

    stream.send_event(event)

    assert [signal[0] for signal in signals] == [AGENT_STATUS, "tool_call"]
    assert signals[0][1]["state"] == "executing_tools"
    assert signals[0][1]["message"] == "Executing search..."
    assert signals[1][1] is event


def test_user_message_emits_status_and_query():
    stream, _, signals = _connected()
    stream.send_event(create_event("user_message", content="what time is it"))

    assert signals[0] == (
        AGENT_STATUS,
        {
            "isProcessing": True,
            "state": "processing",
            "phase": "request_processing",
            "message": "Processing your request...",
        },
    )
    assert signals[1] == ("query", {"text": "what time is it"})


def test_run_lifecycle_status():
    stream, _, signals = _connected()
    stream.send_event(create_event("agent_run_start"))
    stream.send_event(create_event("agent_run_end", status="aborted"))

    assert signals[0][1]["isProcessing"] is True
    assert signals[1] == (AGENT_STATUS, {"isProcessing": False, "state": "aborted"})


def test_streaming_message_status_only_while_incomplete():
    stream, _, signals = _connected()
    stream.send_event(create_event("assistant_streaming_message", content="a", message_id="m1"))
    stream.send_event(create_event("assistant_streaming_message", content="", message_id="m1", is_complete=True))

    assert [signal[0] for signal in signals] == [AGENT_STATUS, "streaming_message", "streaming_message"]
    assert signals[2][1] == {"content": "", "isComplete": True, "messageId": "m1"}


def test_system_levels_route_to_channels():
    stream, _, signals = _connected()
    for level in ("error", "debug", "info", "warning"):
        stream.send_event(create_event("system", level=level, message=level))

    assert [signal[0] for signal in signals] == ["error", "debug", "system", "system"]


def test_unknown_types_pass_through():
    stream, _, signals = _connected()
    event = AgentEvent.model_validate({"id": "e1", "type": "browser_snapshot", "timestamp": 1})

    stream.send_event(event)

    assert signals == [("browser_snapshot", event)]


def test_unsubscribe_and_duplicate_subscribe():
    bridge = EventStreamBridge()
    seen = []

    def handler(event_type, payload):
        seen.append(event_type)

    bridge.subscribe(handler)
    bridge.subscribe(handler)
    assert bridge.subscriber_count == 1

    bridge.emit("ping", None)
    bridge.unsubscribe(handler)
    bridge.emit("ping", None)

    assert seen == ["ping"]


def test_emit_uses_snapshot_of_subscribers():
    bridge = EventStreamBridge()
    seen = []

    def late(event_type, payload):
        seen.append("late")

    def first(event_type, payload):
        seen.append("first")
        bridge.subscribe(late)

    bridge.subscribe(first)
    bridge.emit("ping", None)
    assert seen == ["first"]

    bridge.emit("ping", None)
    assert seen == ["first", "first", "late"]


def test_failing_subscriber_is_isolated():
    bridge = EventStreamBridge()
    seen = []

    def broken(event_type, payload):
        raise ValueError("nope")

    bridge.subscribe(broken)
    bridge.subscribe(lambda event_type, payload: seen.append(event_type))
    bridge.emit("ping", None)

    assert seen == ["ping"]


def test_connect_returns_upstream_unsubscribe():
    stream = AgentEventStream()
    bridge = EventStreamBridge()
    seen = []
    bridge.subscribe(lambda event_type, payload: seen.append(event_type))

    disconnect = bridge.connect(stream)
    disconnect()
    stream.send_event(create_event("assistant_message", content="x"))

    assert seen == []
