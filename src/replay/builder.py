from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from src.errors import ConfigurationError
from src.events.types import AgentEvent, dump_event
from src.server.session.models import SessionInfo

logger = logging.getLogger(__name__)

_FALLBACK_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8" />
<title>Session Replay</title>
<style>
body { font-family: system-ui, sans-serif; max-width: 880px; margin: 2rem auto; color: #222; }
.event { border-left: 3px solid #ccc; margin: 0.75rem 0; padding: 0.25rem 0.75rem; white-space: pre-wrap; }
.user_message { border-color: #3b82f6; }
.assistant_message { border-color: #10b981; }
.system { border-color: #ef4444; }
.type { font-size: 0.75rem; color: #888; }
</style>
</head>
<body>
<h1 id="title">Session Replay</h1>
<div id="events"></div>
<script>
(function () {
  var root = document.getElementById("events");
  var session = window.AGENT_SESSION_DATA || {};
  if (session.metadata && session.metadata.name) {
    document.getElementById("title").textContent = session.metadata.name;
  }
  (window.AGENT_EVENT_STREAM || []).forEach(function (event) {
    var item = document.createElement("div");
    item.className = "event " + event.type;
    var label = document.createElement("div");
    label.className = "type";
    label.textContent = event.type + " @ " + new Date(event.timestamp).toISOString();
    var body = document.createElement("div");
    var content = event.content !== undefined ? event.content : (event.message || event.arguments || "");
    body.textContent = typeof content === "string" ? content : JSON.stringify(content, null, 2);
    item.appendChild(label);
    item.appendChild(body);
    root.appendChild(item);
  });
})();
</script>
</body>
</html>
"""


class ReplayBuilder:
    """Builds a self-contained replay page from key-frame events.

    The payload is injected into the UI bundle's ``index.html`` when a static
    path is configured, otherwise into a minimal built-in page.
    """

    def __init__(
        self,
        events: Sequence[AgentEvent],
        session_info: SessionInfo,
        *,
        static_path: Optional[str] = None,
        server_info: Optional[dict[str, Any]] = None,
        ui_config: Optional[dict[str, Any]] = None,
    ) -> None:
        self.events = list(events)
        self.session_info = session_info
        self.static_path = static_path
        self.server_info = server_info or {}
        self.ui_config = ui_config or {}

    def build_payload(self) -> dict[str, Any]:
        return {
            "events": [dump_event(event, exclude_none=True) for event in self.events],
            "sessionInfo": self.session_info.to_dict(),
            "serverInfo": self.server_info,
            "uiConfig": self.ui_config,
        }

    def dump(self, file_path: Optional[str] = None) -> str:
        html = self._inject(self._load_template(), self.build_payload())
        if file_path:
            path = Path(file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8")
            logger.info("Replay written to %s (%d events)", path, len(self.events))
        return html

    def _load_template(self) -> str:
        if not self.static_path:
            return _FALLBACK_TEMPLATE
        index = Path(self.static_path) / "index.html"
        if not index.is_file():
            raise ConfigurationError(f"Cannot find index.html in static path: {self.static_path}")
        return index.read_text(encoding="utf-8")

    @staticmethod
    def _inject(template: str, payload: dict[str, Any]) -> str:
        script = (
            "<script>\n"
            "window.AGENT_REPLAY_MODE = true;\n"
            f"window.AGENT_SESSION_DATA = {_script_json(payload['sessionInfo'])};\n"
            f"window.AGENT_EVENT_STREAM = {_script_json(payload['events'])};\n"
            f"window.AGENT_VERSION_INFO = {_script_json(payload['serverInfo'])};\n"
            f"window.AGENT_WEB_UI_CONFIG = {_script_json(payload['uiConfig'])};\n"
            "</script>\n"
        )
        marker = template.find("</head>")
        if marker == -1:
            return script + template
        return template[:marker] + script + template[marker:]


def _script_json(value: Any) -> str:
    # "</" inside a string literal would close the script element early.
    return json.dumps(value, ensure_ascii=False).replace("</", "<\\/")
