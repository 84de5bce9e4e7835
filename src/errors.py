"""Error taxonomy shared by storage, event processing and replay export."""

from __future__ import annotations

from typing import Any, Optional


class SessionEngineError(Exception):
    code = "ENGINE_ERROR"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(SessionEngineError):
    code = "NOT_FOUND"


class DuplicateSessionError(SessionEngineError):
    code = "SESSION_EXISTS"


class ConfigurationError(SessionEngineError):
    code = "CONFIGURATION_ERROR"


class PersistenceError(SessionEngineError):
    """Wraps a failure raised by the underlying storage engine."""

    code = "PERSISTENCE_ERROR"


class HandlerError(SessionEngineError):
    code = "HANDLER_ERROR"

    def __init__(self, event_type: str, message: str) -> None:
        super().__init__(message, details={"eventType": event_type})
        self.event_type = event_type


def to_error_response(error: Any) -> dict[str, Any]:
    """Normalise an exception (or anything raised as one) into an error payload."""
    if isinstance(error, SessionEngineError):
        payload: dict[str, Any] = {"code": error.code, "message": error.message}
        if error.details:
            payload["details"] = error.details
        return payload
    if isinstance(error, Exception):
        return {"code": getattr(error, "code", None) or "AGENT_ERROR", "message": str(error)}
    if isinstance(error, str):
        return {"code": "AGENT_ERROR", "message": error}
    if isinstance(error, dict):
        payload = {
            "code": error.get("code") or "AGENT_ERROR",
            "message": error.get("message") or "Unknown error occurred",
        }
        if error.get("details"):
            payload["details"] = error["details"]
        return payload
    return {"code": "UNKNOWN_ERROR", "message": "An unknown error occurred"}
