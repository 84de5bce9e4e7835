# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config.loader import configure_logging
from src.errors import (
    ConfigurationError,
    DuplicateSessionError,
    NotFoundError,
    PersistenceError,
    SessionEngineError,
    to_error_response,
)
from src.server.session.dependencies import (
    get_session_store,
    get_settings,
    initialise_session_manager,
    initialise_session_store,
    set_session_manager,
    set_session_store,
)
from src.server.session.provider import StorageProvider
from src.server.session.router import router as session_router
from src.server.session.schemas import HealthResponse

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    NotFoundError: 404,
    DuplicateSessionError: 409,
    PersistenceError: 500,
    ConfigurationError: 503,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    session_store = initialise_session_store()
    await session_store.initialize()
    set_session_store(session_store)
    session_manager = initialise_session_manager(session_store)
    try:
        yield
    finally:
        await session_manager.close_all()
        set_session_manager(None)
        await session_store.close()


app = FastAPI(
    title="Agent Session API",
    description="Event log storage, live event streams and replays for agent sessions",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins = get_settings().allowed_origins
logger.info("Allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(session_router)


@app.exception_handler(SessionEngineError)
async def session_engine_error_handler(_: Request, exc: SessionEngineError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error("Request failed with %s: %s", exc.code, exc.message)
    return JSONResponse(status_code=status_code, content={"error": to_error_response(exc)})


@app.get("/api/health", response_model=HealthResponse)
async def health(store: StorageProvider = Depends(get_session_store)) -> HealthResponse:
    result = await store.health_check()
    return HealthResponse(status="ok" if result.get("healthy") else "degraded", storage=result)
