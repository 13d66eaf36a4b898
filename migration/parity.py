"""
Read-only parity validation between the legacy and target stores.

A run compares counts, newest timestamps and a sample of the most recent
records field by field. Drift is collected into the report rather than
raised, so one run surfaces everything that disagrees.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from migration.db import TargetStore
from migration.errors import EXIT_DRIFT, EXIT_OK, InvalidLegacyRecord
from migration.legacy import LegacyStore
from migration.log import VALIDATION, log_event
from migration.mappings import EntitySpec

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50


@dataclass
class MissingRecord:
    legacy_id: str
    target_key: dict[str, Any]


@dataclass
class FieldMismatch:
    legacy_id: str
    target_key: dict[str, Any]
    fields: list[str]
    legacy: dict[str, Any]
    target: dict[str, Any]


@dataclass
class InvalidRecord:
    legacy_id: str
    reason: str


@dataclass
class ValidationReport:
    entity: str
    owner: Optional[str] = None
    subtype: Optional[str] = None
    sample_size: int = DEFAULT_SAMPLE_SIZE
    legacy_count: int = 0
    target_count: int = 0
    legacy_latest: Optional[datetime] = None
    target_latest: Optional[datetime] = None
    recency_mismatch: bool = False
    sampled: int = 0
    missing: list[MissingRecord] = field(default_factory=list)
    field_mismatches: list[FieldMismatch] = field(default_factory=list)
    invalid: list[InvalidRecord] = field(default_factory=list)

    @property
    def count_mismatch(self) -> bool:
        return self.legacy_count != self.target_count

    @property
    def mismatch_count(self) -> int:
        return (
            int(self.count_mismatch)
            + int(self.recency_mismatch)
            + len(self.missing)
            + len(self.field_mismatches)
            + len(self.invalid)
        )

    @property
    def ok(self) -> bool:
        return self.mismatch_count == 0

    def mismatched_fields_for(self, legacy_id: str) -> list[str]:
        for mismatch in self.field_mismatches:
            if mismatch.legacy_id == legacy_id:
                return list(mismatch.fields)
        return []

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["count_mismatch"] = self.count_mismatch
        payload["mismatch_count"] = self.mismatch_count
        payload["ok"] = self.ok
        return payload


def exit_code_for(reports: Iterable[ValidationReport]) -> int:
    return EXIT_OK if all(report.ok for report in reports) else EXIT_DRIFT


def _within(
    a: Optional[datetime], b: Optional[datetime], tolerance_seconds: float
) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs((a - b).total_seconds()) <= tolerance_seconds


class ParityValidator:
    """Compares one entity type across stores. Never writes to either store."""

    def __init__(
        self,
        spec: EntitySpec,
        legacy: LegacyStore,
        target: TargetStore,
        *,
        recency_tolerance_seconds: float = 5.0,
        field_time_tolerance_seconds: float = 2.0,
    ):
        self.spec = spec
        self.legacy = legacy
        self.target = target
        self.recency_tolerance_seconds = recency_tolerance_seconds
        self.field_time_tolerance_seconds = field_time_tolerance_seconds

    def run(
        self,
        *,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        owner: Optional[str] = None,
        subtype: Optional[str] = None,
    ) -> ValidationReport:
        if sample_size <= 0:
            raise ValueError(f"sample_size must be > 0, got {sample_size}")

        report = ValidationReport(
            entity=self.spec.name, owner=owner, subtype=subtype, sample_size=sample_size
        )
        scope = {"userId": owner, "subtype": subtype}

        self._check_counts(report, scope)
        self._check_recency(report, scope)
        self._check_sample(report)

        log_event(
            logger,
            logging.INFO if report.ok else logging.ERROR,
            VALIDATION,
            f"{self.spec.name} sample parity summary",
            {
                "sampled": report.sampled,
                "missingInTarget": len(report.missing),
                "fieldMismatches": len(report.field_mismatches),
                "invalidLegacy": len(report.invalid),
                "mismatchCount": report.mismatch_count,
            },
        )
        return report

    def _check_counts(self, report: ValidationReport, scope: dict[str, Any]) -> None:
        report.legacy_count = self.spec.count_legacy(
            self.legacy, owner=report.owner, subtype=report.subtype
        )
        report.target_count = self.target.count(
            self.spec.model, self.spec.target_where(report.owner, report.subtype)
        )
        if report.count_mismatch:
            log_event(
                logger,
                logging.WARNING,
                VALIDATION,
                f"{self.spec.name} count mismatch",
                {"legacy": report.legacy_count, "target": report.target_count, "scope": scope},
            )
        else:
            log_event(
                logger,
                logging.INFO,
                VALIDATION,
                f"{self.spec.name} counts match",
                {"count": report.legacy_count, "scope": scope},
            )

    def _check_recency(self, report: ValidationReport, scope: dict[str, Any]) -> None:
        latest_document = self.spec.latest_legacy(
            self.legacy, owner=report.owner, subtype=report.subtype
        )
        try:
            report.legacy_latest = self.spec.legacy_timestamp(latest_document)
        except ValueError as exc:
            log_event(
                logger,
                logging.WARNING,
                VALIDATION,
                f"{self.spec.name} unreadable legacy timestamp",
                {"legacyId": latest_document.id, "message": str(exc)},
            )
            report.legacy_latest = None

        latest_row = self.target.find_first(
            self.spec.model,
            self.spec.target_where(report.owner, report.subtype),
            order_by=self.spec.order_column,
        )
        report.target_latest = latest_row.get(self.spec.order_column) if latest_row else None

        report.recency_mismatch = not _within(
            report.legacy_latest, report.target_latest, self.recency_tolerance_seconds
        )
        if report.recency_mismatch:
            log_event(
                logger,
                logging.WARNING,
                VALIDATION,
                f"most recent {self.spec.name} timestamp mismatch",
                {
                    "legacy": report.legacy_latest,
                    "target": report.target_latest,
                    "legacyId": latest_document.id if latest_document else None,
                    "scope": scope,
                },
            )
        else:
            log_event(
                logger,
                logging.INFO,
                VALIDATION,
                f"most recent {self.spec.name} timestamps align",
                {"at": report.legacy_latest or report.target_latest},
            )

    def _check_sample(self, report: ValidationReport) -> None:
        documents = self.spec.iter_legacy(
            self.legacy,
            owner=report.owner,
            subtype=report.subtype,
            descending=True,
            limit=report.sample_size,
        )
        for document in documents:
            report.sampled += 1
            try:
                expected = self.spec.translate(document)
            except InvalidLegacyRecord as exc:
                report.invalid.append(InvalidRecord(legacy_id=document.id, reason=exc.reason))
                log_event(
                    logger,
                    logging.WARNING,
                    VALIDATION,
                    f"{self.spec.name} legacy record cannot be translated",
                    {"legacyId": document.id, "reason": exc.reason},
                )
                continue

            key = self.spec.target_key(expected)
            row = self.target.find_unique(self.spec.model, key)
            if row is None:
                report.missing.append(MissingRecord(legacy_id=document.id, target_key=key))
                log_event(
                    logger,
                    logging.WARNING,
                    VALIDATION,
                    f"missing target {self.spec.name} row",
                    {"legacyId": document.id, "expectedKey": key},
                )
                continue

            fields = self.spec.mismatched_fields(
                expected, row, time_tolerance=self.field_time_tolerance_seconds
            )
            if fields:
                report.field_mismatches.append(
                    FieldMismatch(
                        legacy_id=document.id,
                        target_key=key,
                        fields=fields,
                        legacy=self.spec.present(expected),
                        target=self.spec.present(row),
                    )
                )
                log_event(
                    logger,
                    logging.WARNING,
                    VALIDATION,
                    f"{self.spec.name} field mismatch",
                    {"legacyId": document.id, "fields": fields, "key": key},
                )
