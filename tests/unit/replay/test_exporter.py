import json
import re

import httpx
import pytest

from src.config.loader import Settings
from src.errors import ConfigurationError
from src.events.types import create_event
from src.replay.builder import ReplayBuilder
from src.replay.exporter import (
    ReplayOptions,
    extract_query_from_events,
    generate_replay_output,
)
from src.replay.share import upload_replay
from src.server.session.memory import InMemoryStorageProvider
from src.server.session.models import SessionInfo

SHARE_URL = "https://share.example.com/upload"


async def _store_with_session():
    store = InMemoryStorageProvider()
    await store.initialize()
    await store.create_session(SessionInfo(id="s1", created_at=0, updated_at=0, workspace="/tmp"))
    await store.save_event("s1", create_event("user_message", content=[{"type": "text", "text": "find flights"}]))
    for index in range(5):
        await store.save_event(
            "s1", create_event("assistant_streaming_message", content=str(index), message_id="m1")
        )
    await store.save_event("s1", create_event("assistant_message", content="01234", message_id="m1"))
    return store


def _embedded_events(html: str) -> list:
    match = re.search(r"window\.AGENT_EVENT_STREAM = (.*);\n", html)
    assert match is not None
    return json.loads(match.group(1).replace("<\\/", "</"))


@pytest.mark.asyncio
async def test_local_replay_contains_only_key_frames(tmp_path):
    store = await _store_with_session()

    result = await generate_replay_output(store, "s1", ReplayOptions(output_dir=str(tmp_path / "out")))

    assert result.success is True
    assert result.file_path.startswith(str(tmp_path / "out"))
    assert re.search(r"replay-s1-\d+\.html$", result.file_path)

    html = (tmp_path / "out" / result.file_path.rsplit("/", 1)[-1]).read_text(encoding="utf-8")
    assert "window.AGENT_REPLAY_MODE = true;" in html
    assert [event["type"] for event in _embedded_events(html)] == ["user_message", "assistant_message"]


@pytest.mark.asyncio
async def test_local_replay_stays_inside_output_dir(tmp_path):
    store = InMemoryStorageProvider()
    await store.initialize()
    await store.create_session(SessionInfo(id="../../escape", created_at=0, updated_at=0))
    await store.save_event("../../escape", create_event("user_message", content="hi"))
    output_dir = tmp_path / "out"

    result = await generate_replay_output(store, "../../escape", ReplayOptions(output_dir=str(output_dir)))

    assert result.success is True
    written = list(output_dir.iterdir())
    assert len(written) == 1
    assert re.fullmatch(r"replay-escape-\d+\.html", written[0].name)
    assert list(tmp_path.iterdir()) == [output_dir]


@pytest.mark.asyncio
async def test_missing_session_returns_failure():
    store = InMemoryStorageProvider()
    await store.initialize()

    result = await generate_replay_output(store, "missing")

    assert result.success is False
    assert result.error == "Session not found"
    assert result.to_dict() == {"success": False, "error": "Session not found"}


@pytest.mark.asyncio
async def test_missing_storage_returns_failure():
    result = await generate_replay_output(None, "s1")

    assert result.success is False
    assert "Storage not configured" in result.error


@pytest.mark.asyncio
async def test_upload_without_provider_fails():
    store = await _store_with_session()

    result = await generate_replay_output(store, "s1", ReplayOptions(mode="upload"), Settings())

    assert result.success is False
    assert "Share provider is not configured" in result.error


@pytest.mark.asyncio
async def test_upload_posts_html_and_returns_share_url():
    store = await _store_with_session()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"url": "https://share.example.com/s/s1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await generate_replay_output(
            store,
            "s1",
            ReplayOptions(mode="upload"),
            Settings(share_provider=SHARE_URL),
            http_client=client,
        )

    assert result.success is True
    assert result.share_url == "https://share.example.com/s/s1"
    (request,) = requests
    assert str(request.url) == SHARE_URL
    body = request.content.decode("utf-8")
    assert 'name="slug"' in body and "s1" in body
    assert "find flights" in body
    assert "AGENT_EVENT_STREAM" in body


@pytest.mark.asyncio
async def test_upload_http_error_is_reported():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await upload_replay("<html></html>", SHARE_URL, slug="s1", client=client)


@pytest.mark.asyncio
async def test_upload_requires_provider():
    with pytest.raises(ConfigurationError):
        await upload_replay("<html></html>", None, slug="s1")


def test_extract_query_from_events():
    assert extract_query_from_events([create_event("user_message", content="plain")]) == "plain"
    structured = create_event(
        "user_message",
        content=[{"type": "image_url", "image_url": {"url": "x"}}, {"type": "text", "text": "caption"}],
    )
    assert extract_query_from_events([structured]) == "caption"
    assert extract_query_from_events([create_event("assistant_message", content="no query")]) == ""


def test_builder_injects_into_static_bundle(tmp_path):
    (tmp_path / "index.html").write_text("<html><head><title>UI</title></head><body></body></html>", encoding="utf-8")
    events = [create_event("assistant_message", content="</script><b>bold</b>")]
    info = SessionInfo(id="s1", created_at=1, updated_at=2)

    html = ReplayBuilder(events, info, static_path=str(tmp_path), ui_config={"title": "Replay"}).dump()

    head, body = html.split("</head>", 1)
    assert "window.AGENT_SESSION_DATA" in head
    assert 'window.AGENT_WEB_UI_CONFIG = {"title": "Replay"};' in head
    assert "</script><b>" not in head
    assert body == "<body></body></html>"


def test_builder_missing_index_raises(tmp_path):
    info = SessionInfo(id="s1", created_at=1, updated_at=2)

    with pytest.raises(ConfigurationError):
        ReplayBuilder([], info, static_path=str(tmp_path)).dump()
