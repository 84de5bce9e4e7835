from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Literal, Optional

import httpx

from src.config.loader import Settings
from src.errors import ConfigurationError, NotFoundError
from src.events.types import USER_MESSAGE, AgentEvent, now_ms
from src.server.session.provider import StorageProvider
from src.state.batch import filter_streaming_events

from .builder import ReplayBuilder
from .share import upload_replay

logger = logging.getLogger(__name__)

_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(slots=True)
class ReplayOptions:
    mode: Literal["local", "upload"] = "local"
    output_dir: Optional[str] = None


@dataclass(slots=True)
class ReplayResult:
    success: bool
    file_path: Optional[str] = None
    share_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.file_path:
            data["filePath"] = self.file_path
        if self.share_url:
            data["shareUrl"] = self.share_url
        if self.error:
            data["error"] = self.error
        return data


def filter_key_frame_events(events: Iterable[AgentEvent]) -> list[AgentEvent]:
    return filter_streaming_events(events)


def extract_query_from_events(events: Iterable[AgentEvent]) -> str:
    """Text of the first user message, or ``""``."""
    for event in events:
        if event.type != USER_MESSAGE:
            continue
        content = getattr(event, "content", None)
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            for part in content:
                if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                    return part["text"]
        return ""
    return ""


async def generate_replay_output(
    storage: Optional[StorageProvider],
    session_id: str,
    options: Optional[ReplayOptions] = None,
    settings: Optional[Settings] = None,
    *,
    server_info: Optional[dict[str, Any]] = None,
    ui_config: Optional[dict[str, Any]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ReplayResult:
    """Export a session as a replay page, to disk or to the sharing backend.

    Never raises: failures come back as ``ReplayResult(success=False, error=...)``.
    """
    options = options or ReplayOptions()
    settings = settings or Settings()
    try:
        if storage is None:
            raise ConfigurationError("Storage not configured, cannot generate replay")

        session_info = await storage.get_session_info(session_id)
        if session_info is None:
            raise NotFoundError("Session not found")

        events = await storage.get_session_events(session_id)
        key_frames = filter_key_frame_events(events)
        builder = ReplayBuilder(
            key_frames,
            session_info,
            static_path=settings.replay_static_path,
            server_info=server_info,
            ui_config=ui_config,
        )

        if options.mode == "upload":
            if not settings.share_provider:
                raise ConfigurationError("Share provider is not configured, cannot upload replay")
            share_url = await upload_replay(
                builder.dump(),
                settings.share_provider,
                slug=session_id,
                query=extract_query_from_events(events),
                client=http_client,
            )
            return ReplayResult(success=True, share_url=share_url)

        output_dir = Path(options.output_dir or settings.replay_output_dir or os.getcwd())
        output_dir.mkdir(parents=True, exist_ok=True)
        file_path = output_dir / f"replay-{_file_slug(session_id)}-{now_ms()}.html"
        builder.dump(str(file_path))
        return ReplayResult(success=True, file_path=str(file_path))
    except Exception as exc:  # noqa: BLE001 - headless callers branch on the result
        logger.error("Failed to generate replay for session %s: %s", session_id, exc)
        return ReplayResult(success=False, error=str(exc))


def _file_slug(session_id: str) -> str:
    slug = _UNSAFE_FILE_CHARS.sub("_", session_id).strip("._")
    return slug or "session"
