# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""HTTP surface of the session engine.

``app`` and ``session_router`` are resolved on first access, so importing
``src.server.session`` alone does not build the FastAPI application.
"""

from typing import TYPE_CHECKING

__all__ = ["app", "session_router"]

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import APIRouter, FastAPI

    app: FastAPI
    session_router: APIRouter


def __getattr__(name: str):
    if name == "app":
        from .app import app as session_app

        return session_app
    if name == "session_router":
        from .session.router import router

        return router
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
