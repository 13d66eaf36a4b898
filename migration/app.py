"""
FastAPI application for migrated reads.

Run with ``uvicorn migration.app:create_app --factory``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from migration.config import Settings, get_settings
from migration.db import TargetStore
from migration.dependencies import build_legacy_store, build_target_store
from migration.errors import ConnectionUnavailable, ReadTimeout
from migration.legacy import LegacyStore
from migration.read_router import ReadRouter
from migration.routes import router as api_router

_UNSET: Any = object()


def create_app(
    settings: Optional[Settings] = None,
    *,
    target: Optional[TargetStore] = None,
    legacy: Optional[LegacyStore] = _UNSET,
    router: Optional[ReadRouter] = None,
) -> FastAPI:
    """
    Build the app around explicit store handles.

    Handles passed in belong to the caller. Anything built here from settings
    is closed when the app shuts down. Pass ``legacy=None`` to run without a
    legacy store.
    """
    settings = settings or get_settings()
    owned: list[Any] = []

    if target is None:
        target = build_target_store(settings)
        owned.append(target)
    if legacy is _UNSET:
        legacy = build_legacy_store(settings)
        if legacy is not None:
            owned.append(legacy)
    if router is None:
        router = ReadRouter.from_settings(settings)
        owned.append(router)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for handle in owned:
            handle.close()

    app = FastAPI(title="Migration Read API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.target = target
    app.state.legacy = legacy
    app.state.read_router = router

    @app.exception_handler(ConnectionUnavailable)
    @app.exception_handler(ReadTimeout)
    async def store_unavailable(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(api_router, prefix=settings.api_prefix)
    return app
