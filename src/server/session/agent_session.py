from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from src.errors import PersistenceError, SessionEngineError
from src.events.bridge import AGENT_STATUS, EventStreamBridge
from src.events.stream import AgentEventStream
from src.events.types import STREAMING_EVENT_TYPES, USER_MESSAGE, AgentEvent

from .models import SessionInfo
from .provider import StorageProvider
from .title import ensure_session_name

logger = logging.getLogger(__name__)

_CHANNEL_SIZE = 1000

_WriteItem = tuple[AgentEvent, Optional[asyncio.Future]]


class AgentSession:
    """One live session: its event stream, client bridge and persistence.

    Events sent to ``event_stream`` are queued and written by a single writer
    task, which keeps appends for the session serialised and in order.
    ``persist`` additionally waits for the write and re-raises its failure.
    """

    def __init__(
        self,
        info: SessionInfo,
        storage: StorageProvider,
        *,
        persist_streaming_events: bool = True,
        event_stream: Optional[AgentEventStream] = None,
    ) -> None:
        self.id = info.id
        self.info = info
        self.event_stream = event_stream or AgentEventStream()
        self.event_bridge = EventStreamBridge()
        self._storage = storage
        self._persist_streaming_events = persist_streaming_events
        self._queue: Optional[asyncio.Queue[Optional[_WriteItem]]] = None
        self._writer: Optional[asyncio.Task] = None
        self._waiters: dict[str, list[asyncio.Future[None]]] = {}
        self._unsubscribes: list[Callable[[], None]] = []
        self._status: dict[str, Any] = {"isProcessing": False, "state": "idle"}
        self._has_name = bool(info.metadata and info.metadata.get("name"))

    async def initialize(self) -> None:
        self._queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._write_events(), name=f"session-writer-{self.id}")
        self._unsubscribes.append(self.event_stream.subscribe(self._enqueue))
        self._unsubscribes.append(self.event_bridge.connect(self.event_stream))
        self.event_bridge.subscribe(self._track_status)
        self.event_bridge.emit("ready", {"sessionId": self.id})
        logger.info("Session %s initialised", self.id)

    def ingest(self, event: AgentEvent) -> None:
        self.event_stream.send_event(event)

    async def persist(self, event: AgentEvent) -> None:
        """Ingest ``event`` and wait for its write.

        Raises the storage failure (``NotFoundError`` or ``PersistenceError``)
        if the event could not be saved. Events the session is configured not
        to store resolve immediately.
        """
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(event.id, []).append(waiter)
        try:
            self.ingest(event)
        finally:
            self._release_waiter(event, waiter)
        await waiter

    async def drain(self) -> None:
        """Wait until every queued event has been written."""
        if self._queue is not None:
            await self._queue.join()

    def get_status(self) -> dict[str, Any]:
        return {"sessionId": self.id, **self._status}

    def subscribe_channel(self) -> tuple[asyncio.Queue, Callable[[], None]]:
        """Client channel receiving ``(type, payload)`` bridge signals."""
        channel: asyncio.Queue = asyncio.Queue(maxsize=_CHANNEL_SIZE)

        def forward(event_type: str, payload: Any) -> None:
            try:
                channel.put_nowait((event_type, payload))
            except asyncio.QueueFull:
                logger.warning("Client channel for session %s is full; dropping %s", self.id, event_type)

        self.event_bridge.subscribe(forward)
        return channel, lambda: self.event_bridge.unsubscribe(forward)

    async def close(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        self.event_bridge.unsubscribe(self._track_status)
        if self._queue is not None and self._writer is not None:
            self._queue.put_nowait(None)
            await self._writer
        self._queue = None
        self._writer = None
        logger.info("Session %s closed", self.id)

    def _enqueue(self, event: AgentEvent) -> None:
        waiter = self._take_waiter(event)
        if self._queue is None:
            logger.warning("Session %s is not initialised; dropping %s", self.id, event.type)
            _fail(waiter, PersistenceError(f"Session {self.id} is not accepting events"))
            return
        if not self._persist_streaming_events and event.type in STREAMING_EVENT_TYPES:
            _resolve(waiter)
            return
        self._queue.put_nowait((event, waiter))

    def _take_waiter(self, event: AgentEvent) -> Optional[asyncio.Future[None]]:
        pending = self._waiters.get(event.id)
        if not pending:
            return None
        waiter = pending.pop(0)
        if not pending:
            del self._waiters[event.id]
        return waiter

    def _release_waiter(self, event: AgentEvent, waiter: asyncio.Future[None]) -> None:
        # Still registered means the writer subscription never saw the event.
        pending = self._waiters.get(event.id)
        if pending and waiter in pending:
            pending.remove(waiter)
            if not pending:
                del self._waiters[event.id]
            _fail(waiter, PersistenceError(f"Session {self.id} is not accepting events"))

    def _track_status(self, event_type: str, payload: Any) -> None:
        if event_type == AGENT_STATUS and isinstance(payload, dict):
            self._status = {"isProcessing": payload.get("isProcessing", False), "state": payload.get("state")}

    async def _write_events(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            item = await queue.get()
            try:
                if item is None:
                    return
                event, waiter = item
                try:
                    await self._storage.save_event(self.id, event)
                except Exception as exc:  # noqa: BLE001 - a failed write must not stop later writes
                    logger.exception("Failed to save %s event for session %s", event.type, self.id)
                    _fail(waiter, _as_engine_error(exc, event))
                    continue
                if event.type == USER_MESSAGE and not self._has_name:
                    await self._name_session(event)
                _resolve(waiter)
            finally:
                queue.task_done()

    async def _name_session(self, event: AgentEvent) -> None:
        try:
            await ensure_session_name(self._storage, self.id, [event])
        except Exception:  # noqa: BLE001 - naming is best effort
            logger.exception("Failed to name session %s", self.id)
            return
        self._has_name = True


def _as_engine_error(exc: Exception, event: AgentEvent) -> SessionEngineError:
    if isinstance(exc, SessionEngineError):
        return exc
    error = PersistenceError(f"Failed to save event {event.id}: {exc}")
    error.__cause__ = exc
    return error


def _resolve(waiter: Optional[asyncio.Future[None]]) -> None:
    if waiter is not None and not waiter.done():
        waiter.set_result(None)


def _fail(waiter: Optional[asyncio.Future[None]], error: SessionEngineError) -> None:
    if waiter is not None and not waiter.done():
        waiter.set_exception(error)
