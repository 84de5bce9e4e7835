from dataclasses import replace

from src.state.grouping import MessageGroupCache, create_message_groups
from src.state.models import Message


def _user(message_id: str, content: str = "hi") -> Message:
    return Message(id=message_id, role="user", content=content, timestamp=1)


def _assistant(message_id: str, response_id: str, content: str = "ok", **fields) -> Message:
    return Message(id=message_id, role="assistant", content=content, timestamp=2, message_id=response_id, **fields)


def test_user_message_starts_new_group():
    messages = [
        _user("m1"),
        _assistant("a1", "a", "thinking"),
        _assistant("a2", "a", "done", finish_reason="stop"),
        _user("m2"),
    ]

    groups = create_message_groups(messages)

    assert len(groups) == 2
    assert [m.id for m in groups[0].messages] == ["m1", "a1", "a2"]
    assert [m.id for m in groups[1].messages] == ["m2"]


def test_system_message_is_its_own_group():
    messages = [
        _user("m1"),
        Message(id="sys", role="system", content="warning"),
        _assistant("a1", "a"),
    ]

    groups = create_message_groups(messages)

    assert [[m.id for m in group.messages] for group in groups] == [["m1"], ["sys"], ["a1"]]


def test_new_response_cycle_starts_new_group():
    messages = [
        _user("m1"),
        _assistant("a1", "a", finish_reason="tool_calls"),
        Message(id="env", role="environment", content="screenshot"),
        _assistant("b1", "b"),
    ]

    groups = create_message_groups(messages)

    assert [[m.id for m in group.messages] for group in groups] == [["m1", "a1", "env"], ["b1"]]


def test_empty_input_has_no_groups():
    assert create_message_groups([]) == []


def test_cache_reuses_unchanged_result():
    cache = MessageGroupCache()
    messages = [_user("m1"), _assistant("a1", "a")]

    first = cache.get_groups("s1", messages, version=1)
    second = cache.get_groups("s1", list(messages), version=1)

    assert first is second
    assert "s1" in cache


def test_cache_detects_edit_to_earlier_message():
    cache = MessageGroupCache()
    messages = [_user("m1"), _assistant("a1", "a")] + [_assistant(f"x{i}", "a") for i in range(6)]
    cache.get_groups("s1", messages)

    edited = list(messages)
    edited[1] = replace(messages[1], content="changed")
    groups = cache.get_groups("s1", edited)

    assert groups[0].messages[1].content == "changed"


def test_approximate_cache_can_serve_stale_groups():
    cache = MessageGroupCache(approximate=True)
    messages = [_user("m1"), _assistant("a1", "a")] + [_assistant(f"x{i}", "a") for i in range(6)]
    cache.get_groups("s1", messages)

    edited = list(messages)
    edited[1] = replace(messages[1], content="changed")
    groups = cache.get_groups("s1", edited)

    assert groups[0].messages[1].content == "ok"


def test_cache_version_change_recomputes():
    cache = MessageGroupCache()
    messages = [_user("m1")]
    first = cache.get_groups("s1", messages, version=1)
    second = cache.get_groups("s1", messages, version=2)

    assert first is not second
    assert first == second


def test_cache_eviction():
    cache = MessageGroupCache()
    cache.get_groups("s1", [_user("m1")])
    cache.get_groups("s2", [_user("m2")])

    cache.retain(["s2"])
    assert "s1" not in cache
    assert "s2" in cache

    cache.invalidate("s2")
    assert "s2" not in cache
