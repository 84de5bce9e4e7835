"""Static session replays: key-frame export, HTML artifact and sharing upload."""

from .builder import ReplayBuilder
from .exporter import (
    ReplayOptions,
    ReplayResult,
    extract_query_from_events,
    filter_key_frame_events,
    generate_replay_output,
)
from .share import upload_replay

__all__ = [
    "ReplayBuilder",
    "ReplayOptions",
    "ReplayResult",
    "extract_query_from_events",
    "filter_key_frame_events",
    "generate_replay_output",
    "upload_replay",
]
