"""
Dependency wiring for the FastAPI app.

Store handles live on ``app.state`` and are set once by ``create_app``; the
functions here only hand them to route handlers.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request

from migration.config import Settings
from migration.db import PostgresTargetStore, TargetStore
from migration.errors import ConnectionUnavailable
from migration.legacy import LegacyStore, connect_legacy_store
from migration.read_router import ReadRouter
from migration.readers import MigratedReads

logger = logging.getLogger(__name__)

IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def build_target_store(settings: Settings) -> TargetStore:
    """
    Postgres when DATABASE_URL is set. Development falls back to an
    in-memory SQLite database so the API can boot without one. Only
    development creates missing tables; elsewhere the schema is managed
    outside the app.
    """
    if settings.database_url:
        return PostgresTargetStore(
            settings.database_url, create_schema=settings.is_development
        )
    if settings.is_development:
        logger.warning("DATABASE_URL not set; using in-memory SQLite target store")
        return PostgresTargetStore(IN_MEMORY_DATABASE_URL, create_schema=True)
    raise RuntimeError("DATABASE_URL is required outside development")


def build_legacy_store(settings: Settings) -> Optional[LegacyStore]:
    """
    The API keeps serving from the target store when the legacy store is
    down; the secondary read then fails on its own.
    """
    try:
        return connect_legacy_store(settings)
    except ConnectionUnavailable as exc:
        logger.warning("Legacy store unavailable, serving target-only reads: %s", exc)
        return None


def get_target_store(request: Request) -> TargetStore:
    return request.app.state.target


def get_legacy_store(request: Request) -> Optional[LegacyStore]:
    return request.app.state.legacy


def get_read_router(request: Request) -> ReadRouter:
    return request.app.state.read_router


def get_reads(
    router: ReadRouter = Depends(get_read_router),
    target: TargetStore = Depends(get_target_store),
    legacy: Optional[LegacyStore] = Depends(get_legacy_store),
) -> MigratedReads:
    return MigratedReads(router, target, legacy)
