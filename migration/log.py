"""
Structured log helpers.

Entries render as ``[COMPONENT] message {"key": "value"}`` so operators and CI
can grep by component and still parse the metadata. The metadata dict is also
attached to the record as ``event_meta`` for handlers that want it raw.
"""

from __future__ import annotations

import json
import logging
from typing import Any

BACKFILL = "BACKFILL"
VALIDATION = "VALIDATION"
READ_SWITCH = "READ SWITCH"
READ_FALLBACK = "READ FALLBACK"
PARITY = "PARITY"
DUAL_WRITE = "DUAL WRITE"


def render_meta(meta: dict[str, Any] | None) -> str:
    if not meta:
        return "{}"
    return json.dumps(meta, default=str, sort_keys=True)


def log_event(
    logger: logging.Logger,
    level: int,
    component: str,
    message: str,
    meta: dict[str, Any] | None = None,
    *,
    exc_info: bool = False,
) -> None:
    logger.log(
        level,
        "[%s] %s %s",
        component,
        message,
        render_meta(meta),
        exc_info=exc_info,
        extra={"component": component, "event_meta": dict(meta or {})},
    )


def error_meta(exc: BaseException) -> dict[str, Any]:
    """Production-safe description of an exception (no payloads)."""
    return {
        "name": type(exc).__name__,
        "code": getattr(exc, "code", None),
        "message": str(exc) or type(exc).__name__,
    }
