"""
Target-first reads with fallback to the legacy store.

Request handlers that already have data in both stores pass two thunks: the
primary reads the target store, the secondary reads the legacy store. Both
must return the same logical shape; normalizing field names is the thunks'
job (see ``migration.readers``).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from migration.config import Settings
from migration.errors import ReadTimeout
from migration.log import PARITY, READ_FALLBACK, READ_SWITCH, error_meta, log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRIMARY_HIT = "primary_hit"
FALLBACK = "fallback"
PRIMARY_FAILED = "primary_failed"
SECONDARY_FAILED = "secondary_failed_after_empty"
PARITY_DRIFT = "parity_drift"


@dataclass(frozen=True)
class ReadEvent:
    kind: str
    label: str
    meta: dict[str, Any] = field(default_factory=dict)
    reason: Optional[dict[str, Any]] = None


def is_empty_result(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, set, dict, str)):
        return len(value) == 0
    return False


def _cardinality(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, tuple, set)):
        return len(value)
    return 1


class ReadRouter:
    """
    Synchronous primary/secondary read dispatcher.

    The primary is tried first. A raised error or a timeout falls back to the
    secondary, whose own failure propagates to the caller. An empty primary
    result triggers one secondary check: a non-empty secondary result wins,
    anything else keeps the empty primary result. The two reads never run
    concurrently.

    Each attempt runs on an executor so a stalled store costs at most
    ``timeout_seconds`` per attempt. Python threads cannot be killed, so a
    timed-out read keeps its worker until the driver gives up. Primary and
    secondary reads get separate pools: a hung target store can exhaust the
    primary pool without starving legacy reads.

    Primary hits are logged at ``hit_log_level``; ``from_settings`` raises it
    to INFO in development so hit/fallback ratios show up in plain logs.
    """

    def __init__(
        self,
        *,
        fallback_enabled: bool = True,
        fallback_on_empty: bool = True,
        timeout_seconds: Optional[float] = 2.0,
        runtime_parity: bool = False,
        listener: Optional[Callable[[ReadEvent], None]] = None,
        max_workers: int = 8,
        hit_log_level: int = logging.DEBUG,
    ):
        self.fallback_enabled = fallback_enabled
        self.fallback_on_empty = fallback_on_empty
        self.timeout_seconds = timeout_seconds
        self.runtime_parity = runtime_parity
        self.listener = listener
        self.hit_log_level = hit_log_level
        self._executors: dict[str, ThreadPoolExecutor] = {}
        if timeout_seconds:
            for which in ("primary", "secondary"):
                self._executors[which] = ThreadPoolExecutor(
                    max_workers=max_workers, thread_name_prefix=f"read-router-{which}"
                )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ReadRouter":
        options: dict[str, Any] = {
            "fallback_enabled": settings.fallback_enabled,
            "timeout_seconds": settings.read_timeout_seconds,
            "runtime_parity": settings.runtime_parity_check,
            "hit_log_level": logging.INFO if settings.is_development else logging.DEBUG,
        }
        options.update(kwargs)
        return cls(**options)

    def close(self) -> None:
        for executor in self._executors.values():
            executor.shutdown(wait=False)

    def _attempt(self, read: Callable[[], T], label: str, which: str) -> T:
        executor = self._executors.get(which)
        if executor is None:
            return read()
        future = executor.submit(read)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise ReadTimeout(
                f"{which} read exceeded {self.timeout_seconds}s label={label}"
            ) from exc

    def _emit(self, event: ReadEvent, level: int) -> None:
        component = READ_SWITCH if event.kind == PRIMARY_HIT else READ_FALLBACK
        if event.kind == PARITY_DRIFT:
            component = PARITY
        meta = dict(event.meta)
        if event.reason:
            meta.update(event.reason)
        log_event(logger, level, component, f"{event.kind} label={event.label}", meta)
        if self.listener is not None:
            self.listener(event)

    def read(
        self,
        label: str,
        meta: Optional[dict[str, Any]],
        primary: Callable[[], T],
        secondary: Callable[[], T],
    ) -> T:
        meta = dict(meta or {})
        try:
            result = self._attempt(primary, label, "primary")
        except Exception as exc:
            if not self.fallback_enabled:
                self._emit(
                    ReadEvent(PRIMARY_FAILED, label, meta, error_meta(exc)),
                    logging.WARNING,
                )
                raise
            self._emit(ReadEvent(FALLBACK, label, meta, error_meta(exc)), logging.WARNING)
            return self._attempt(secondary, label, "secondary")

        if self.fallback_enabled and self.fallback_on_empty and is_empty_result(result):
            try:
                secondary_result = self._attempt(secondary, label, "secondary")
            except Exception as exc:
                self._emit(
                    ReadEvent(SECONDARY_FAILED, label, meta, error_meta(exc)),
                    logging.WARNING,
                )
                return result
            if not is_empty_result(secondary_result):
                self._emit(
                    ReadEvent(FALLBACK, label, meta, {"name": "primary_empty"}),
                    logging.WARNING,
                )
                return secondary_result
            self._emit(ReadEvent(PRIMARY_HIT, label, meta), self.hit_log_level)
            return result

        self._emit(ReadEvent(PRIMARY_HIT, label, meta), self.hit_log_level)
        if self.runtime_parity:
            self._sample_parity(label, meta, result, secondary)
        return result

    def _sample_parity(
        self, label: str, meta: dict[str, Any], result: Any, secondary: Callable[[], Any]
    ) -> None:
        try:
            secondary_result = self._attempt(secondary, label, "secondary")
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                PARITY,
                f"parity_check_failed label={label}",
                {**meta, **error_meta(exc)},
            )
            return
        primary_count = _cardinality(result)
        secondary_count = _cardinality(secondary_result)
        if primary_count != secondary_count:
            self._emit(
                ReadEvent(
                    PARITY_DRIFT,
                    label,
                    meta,
                    {"primary": primary_count, "secondary": secondary_count},
                ),
                logging.WARNING,
            )
