"""Session storage, live agent sessions and the sessions HTTP API."""

from .agent_session import AgentSession
from .dependencies import get_session_manager, get_session_store
from .manager import SessionManager
from .memory import InMemoryStorageProvider
from .models import SessionInfo
from .provider import StorageProvider
from .store import SQLiteStorageProvider

__all__ = [
    "AgentSession",
    "InMemoryStorageProvider",
    "SQLiteStorageProvider",
    "SessionInfo",
    "SessionManager",
    "StorageProvider",
    "get_session_manager",
    "get_session_store",
]
