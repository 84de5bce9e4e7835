from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from src.config.loader import Settings, load_settings

from .manager import SessionManager
from .memory import InMemoryStorageProvider
from .provider import StorageProvider
from .store import SQLiteStorageProvider

logger = logging.getLogger(__name__)

_SETTINGS: Optional[Settings] = None
_SESSION_STORE: Optional[StorageProvider] = None
_SESSION_MANAGER: Optional[SessionManager] = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def set_settings(settings: Optional[Settings]) -> None:
    global _SETTINGS
    _SETTINGS = settings


def create_storage_provider(settings: Settings) -> StorageProvider:
    if settings.storage_type == "memory":
        return InMemoryStorageProvider()
    return SQLiteStorageProvider(settings.session_db_path)


def initialise_session_store() -> StorageProvider:
    """Create the storage provider configured by the environment."""
    global _SESSION_STORE
    if _SESSION_STORE is not None:
        return _SESSION_STORE

    settings = get_settings()
    store = create_storage_provider(settings)
    _SESSION_STORE = store
    logger.info("Initialised %s session storage", settings.storage_type)
    return store


def set_session_store(store: Optional[StorageProvider]) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store(_: StorageProvider = Depends(initialise_session_store)) -> StorageProvider:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE


def initialise_session_manager(store: StorageProvider) -> SessionManager:
    global _SESSION_MANAGER
    _SESSION_MANAGER = SessionManager(store, get_settings())
    return _SESSION_MANAGER


def set_session_manager(manager: Optional[SessionManager]) -> None:
    global _SESSION_MANAGER
    _SESSION_MANAGER = manager


def get_session_manager(store: StorageProvider = Depends(get_session_store)) -> SessionManager:
    if _SESSION_MANAGER is None:
        return initialise_session_manager(store)
    return _SESSION_MANAGER
