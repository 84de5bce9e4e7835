from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from src.config.loader import Settings
from src.events.types import dump_event, now_ms, parse_event
from src.replay.exporter import ReplayOptions, generate_replay_output
from src.state.processor import SessionEventProcessor

from .dependencies import get_session_manager, get_session_store, get_settings
from .manager import SessionManager
from .models import SessionInfo
from .provider import StorageProvider
from .schemas import (
    DeleteResponse,
    EventAppendResponse,
    EventListResponse,
    MessageGroupView,
    MessagesResponse,
    MessageView,
    PlanView,
    ReplayRequest,
    ReplayResponse,
    SessionCreateRequest,
    SessionListResponse,
    SessionStatusResponse,
    SessionSummary,
    SessionUpdateRequest,
)

logger = logging.getLogger(__name__)

_KEEPALIVE_SECONDS = 15.0

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    user_id: Optional[str] = Query(default=None, alias="userId", description="Only sessions owned by this user."),
    store: StorageProvider = Depends(get_session_store),
) -> SessionListResponse:
    if user_id:
        records = await store.get_user_sessions(user_id)
    else:
        records = await store.get_all_sessions()
    return SessionListResponse(sessions=[_to_summary(record) for record in records])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SessionSummary)
async def create_session(
    payload: SessionCreateRequest,
    store: StorageProvider = Depends(get_session_store),
) -> SessionSummary:
    session = await store.create_session(
        SessionInfo(
            id=payload.id or str(uuid4()),
            created_at=0,
            updated_at=0,
            workspace=payload.workspace,
            user_id=payload.user_id,
            metadata=payload.metadata,
        )
    )
    return _to_summary(session)


@router.get("/{session_id}", response_model=SessionSummary)
async def get_session(
    session_id: str,
    store: StorageProvider = Depends(get_session_store),
) -> SessionSummary:
    return _to_summary(await _require_session(store, session_id))


@router.patch("/{session_id}", response_model=SessionSummary)
async def update_session(
    session_id: str,
    payload: SessionUpdateRequest,
    store: StorageProvider = Depends(get_session_store),
) -> SessionSummary:
    session = await _require_session(store, session_id)

    if payload.metadata is not None:
        session = await store.merge_session_metadata(session_id, payload.metadata)
    if payload.workspace is not None:
        session = await store.update_session_info(session_id, {"workspace": payload.workspace})
    return _to_summary(session)


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(
    session_id: str,
    store: StorageProvider = Depends(get_session_store),
    manager: SessionManager = Depends(get_session_manager),
) -> DeleteResponse:
    await _require_session(store, session_id)
    await manager.remove(session_id)
    return DeleteResponse(success=await store.delete_session(session_id))


@router.get("/{session_id}/events", response_model=EventListResponse)
async def list_events(
    session_id: str,
    store: StorageProvider = Depends(get_session_store),
) -> EventListResponse:
    await _require_session(store, session_id)
    events = await store.get_session_events(session_id)
    return EventListResponse(events=[dump_event(event, exclude_none=True) for event in events])


@router.post("/{session_id}/events", status_code=status.HTTP_201_CREATED, response_model=EventAppendResponse)
async def append_event(
    session_id: str,
    payload: dict[str, Any] = Body(...),
    manager: SessionManager = Depends(get_session_manager),
) -> EventAppendResponse:
    data = dict(payload)
    data.setdefault("id", str(uuid4()))
    data.setdefault("timestamp", now_ms())
    try:
        event = parse_event(data)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    session = await manager.get_or_create(session_id)
    await session.persist(event)
    return EventAppendResponse(success=True, event_id=event.id)


@router.get("/{session_id}/messages", response_model=MessagesResponse)
async def get_messages(
    session_id: str,
    store: StorageProvider = Depends(get_session_store),
) -> MessagesResponse:
    await _require_session(store, session_id)
    events = await store.get_session_events(session_id)

    processor = SessionEventProcessor()
    processor.set_active_session(session_id)
    processor.process_events(session_id, events)

    plan = processor.get_plan(session_id)
    return MessagesResponse(
        session_id=session_id,
        groups=[
            MessageGroupView(messages=[MessageView(**asdict(message)) for message in group.messages])
            for group in processor.get_grouped_messages(session_id)
        ],
        is_processing=processor.is_processing(session_id),
        plan=PlanView(**asdict(plan)) if plan is not None else None,
    )


@router.get("/{session_id}/status", response_model=SessionStatusResponse)
async def get_status(
    session_id: str,
    store: StorageProvider = Depends(get_session_store),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionStatusResponse:
    await _require_session(store, session_id)
    live = manager.get(session_id)
    if live is None:
        return SessionStatusResponse(session_id=session_id, is_processing=False, state="idle")
    current = live.get_status()
    return SessionStatusResponse(
        session_id=session_id,
        is_processing=bool(current.get("isProcessing")),
        state=current.get("state"),
    )


@router.get("/{session_id}/stream")
async def stream_session(
    session_id: str,
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> StreamingResponse:
    session = await manager.get_or_create(session_id)
    channel, unsubscribe = session.subscribe_channel()

    async def event_source():
        try:
            yield _make_event("ready", {"sessionId": session_id})
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event_type, payload = await asyncio.wait_for(channel.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _make_event(event_type, payload)
        finally:
            unsubscribe()
            logger.debug("Stream client for session %s disconnected", session_id)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{session_id}/replay", response_model=ReplayResponse)
async def export_replay(
    session_id: str,
    payload: Optional[ReplayRequest] = Body(default=None),
    store: StorageProvider = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> ReplayResponse:
    await _require_session(store, session_id)
    request = payload or ReplayRequest()
    result = await generate_replay_output(
        store,
        session_id,
        ReplayOptions(mode=request.mode, output_dir=request.output_dir),
        settings,
        server_info={"version": "0.1.0"},
    )
    return ReplayResponse(
        success=result.success,
        file_path=result.file_path,
        share_url=result.share_url,
        error=result.error,
    )


async def _require_session(store: StorageProvider, session_id: str) -> SessionInfo:
    session = await store.get_session_info(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


def _to_summary(record: SessionInfo) -> SessionSummary:
    return SessionSummary(
        id=record.id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        workspace=record.workspace,
        user_id=record.user_id,
        metadata=record.metadata,
    )


def _make_event(event_type: str, data: Any) -> str:
    try:
        json_data = json.dumps(data, ensure_ascii=False, default=_json_default)
    except (TypeError, ValueError) as e:
        logger.error("Error serializing %s event data: %s", event_type, e)
        error_data = json.dumps({"error": "Serialization failed"}, ensure_ascii=False)
        return f"event: error\ndata: {error_data}\n\n"
    return f"event: {event_type}\ndata: {json_data}\n\n"


def _json_default(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
