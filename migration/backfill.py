"""
Backfill historical legacy documents into the target store.

One job per entity type. The cursor walks legacy documents oldest first so a
limited or resumed run always restarts from the same place, and each record
is isolated: a bad document is logged, counted and skipped, never fatal.
Documents missing the order field are picked up after the ordered pass.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

from migration.db import TargetStore
from migration.identity import derive
from migration.legacy import LegacyDocument, LegacyStore
from migration.log import BACKFILL, error_meta, log_event
from migration.mappings import EntitySpec, KeyKind, OnExisting

logger = logging.getLogger(__name__)

CREATED = "created"
SKIPPED = "skipped"


@dataclass
class BackfillOptions:
    dry_run: bool = False
    limit: Optional[int] = None
    owner: Optional[str] = None
    subtype: Optional[str] = None
    on_existing: Optional[OnExisting] = None


@dataclass
class BackfillSummary:
    entity: str
    on_existing: str
    dry_run: bool = False
    limit: Optional[int] = None
    owner: Optional[str] = None
    subtype: Optional[str] = None
    scanned: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class BackfillJob:
    def __init__(self, spec: EntitySpec, legacy: LegacyStore, target: TargetStore):
        self.spec = spec
        self.legacy = legacy
        self.target = target

    def run(self, options: Optional[BackfillOptions] = None) -> BackfillSummary:
        options = options or BackfillOptions()
        if options.limit is not None and options.limit < 0:
            raise ValueError(f"limit must be >= 0, got {options.limit}")
        policy = OnExisting(options.on_existing or self.spec.on_existing)

        summary = BackfillSummary(
            entity=self.spec.name,
            on_existing=policy.value,
            dry_run=options.dry_run,
            limit=options.limit,
            owner=options.owner,
            subtype=options.subtype,
        )
        log_event(logger, logging.INFO, BACKFILL, f"{self.spec.name} start", summary.as_dict())

        # Keys a dry run would have written, so later duplicates classify as a real run would.
        planned: set[tuple] = set()
        documents = self.spec.iter_legacy(
            self.legacy,
            owner=options.owner,
            subtype=options.subtype,
            limit=options.limit,
        )
        for document in documents:
            self._handle(document, policy, options, summary, planned)

        remaining = None if options.limit is None else options.limit - summary.scanned
        if remaining is None or remaining > 0:
            total = self.spec.count_legacy(
                self.legacy, owner=options.owner, subtype=options.subtype
            )
            if total > summary.scanned:
                # Ordered streams leave out documents missing the order field.
                unordered = self.spec.iter_legacy_unordered(
                    self.legacy,
                    owner=options.owner,
                    subtype=options.subtype,
                    limit=remaining,
                )
                for document in unordered:
                    self._handle(document, policy, options, summary, planned)

        log_event(logger, logging.INFO, BACKFILL, f"{self.spec.name} complete", summary.as_dict())
        return summary

    def _handle(
        self,
        document: LegacyDocument,
        policy: OnExisting,
        options: BackfillOptions,
        summary: BackfillSummary,
        planned: set[tuple],
    ) -> None:
        summary.scanned += 1
        try:
            outcome = self._process(document, policy, dry_run=options.dry_run, planned=planned)
        except Exception as exc:
            summary.failed += 1
            log_event(
                logger,
                logging.WARNING,
                BACKFILL,
                f"{self.spec.name} record_failed",
                {"legacyId": document.id, **error_meta(exc)},
            )
            return
        if outcome == SKIPPED:
            summary.skipped += 1
        else:
            summary.created += 1

    def _process(
        self,
        document: LegacyDocument,
        policy: OnExisting,
        *,
        dry_run: bool,
        planned: Optional[set[tuple]] = None,
    ) -> str:
        values: Optional[dict[str, Any]] = None
        if self.spec.key_kind == KeyKind.DERIVED:
            key = {self.spec.id_column: derive(self.spec.namespace, document.id)}
        else:
            values = self.spec.translate(document)
            key = self.spec.target_key(values)

        frozen = tuple(sorted(key.items()))
        already_planned = dry_run and planned is not None and frozen in planned
        existing = self.target.find_unique(self.spec.model, key)
        if policy == OnExisting.SKIP and (existing is not None or already_planned):
            return SKIPPED

        if values is None:
            values = self.spec.translate(document)
        if dry_run:
            if planned is not None:
                planned.add(frozen)
            return CREATED

        if existing is None and policy == OnExisting.SKIP:
            self.target.create(self.spec.model, values)
        else:
            self.target.upsert(self.spec.model, key, values)
        return CREATED
