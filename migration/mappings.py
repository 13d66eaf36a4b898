"""
Per-entity mapping tables between legacy documents and target rows.

Each migrated record type is described once by an ``EntitySpec``: where its
documents live, which table its rows go to, how each legacy field is coerced
into a column, how rows are keyed and what a backfill does when the row
already exists. The registry is validated against the SQLAlchemy models at
import time, so a bad table fails loudly before any record is touched.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Union

from migration.db import (
    ActionPlanRow,
    AiMessageRow,
    OnboardingProfileRow,
    PillarCheckInRow,
    PillarScoreRow,
    UserCoreStateRow,
    as_utc,
)
from migration.errors import InvalidLegacyRecord, MappingError
from migration.identity import derive, derive_natural
from migration.legacy import LegacyDocument, LegacyStore
from shared.json_utils import snake_to_camel, to_json_compatible

# Source markers: the document id itself, or the whole document body.
DOCUMENT_ID = "__id__"
WHOLE_DOCUMENT = "*"


class KeyKind(str, Enum):
    DERIVED = "derived"
    NATURAL = "natural"


class OnExisting(str, Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"unsupported timestamp {value!r}")
    if isinstance(value, (int, float)):
        # Epoch milliseconds vs seconds.
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise ValueError(f"unsupported timestamp {value!r}")


def _string(value: Any, default: Any) -> Any:
    if value is None:
        return default
    return str(value)


def _optional_string(value: Any, default: Any) -> Optional[str]:
    if value is None or value == "":
        return default
    return str(value)


def _text(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    return str(value)


def _finite(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _rounded_int(value: Any, default: Any) -> Any:
    number = _finite(value)
    if number is None:
        return default
    # Half-up, matching how the legacy handlers stored whole-number values.
    return int(math.floor(number + 0.5))


def _number(value: Any, default: Any) -> Any:
    if value is None:
        return default
    number = _finite(value)
    return default if number is None else number


def _timestamp(value: Any, default: Any) -> Optional[datetime]:
    parsed = to_datetime(value)
    return default if parsed is None else parsed


def _json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    return to_json_compatible(value)


def _json_list(value: Any, default: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return to_json_compatible(list(value))
    return [] if default is None else default


COERCIONS: dict[str, Callable[[Any, Any], Any]] = {
    "string": _string,
    "optional_string": _optional_string,
    "text": _text,
    "rounded_int": _rounded_int,
    "number": _number,
    "timestamp": _timestamp,
    "json": _json,
    "json_list": _json_list,
    "document": _json,
}


@dataclass(frozen=True)
class FieldMapping:
    """One legacy field (or group of fields) to one target column."""

    source: Union[str, tuple[str, ...]]
    target: str
    coerce: str = "json"
    default: Any = None
    required: bool = False

    @property
    def source_label(self) -> str:
        if isinstance(self.source, tuple):
            return ",".join(self.source)
        return self.source

    def read(self, document: LegacyDocument) -> Any:
        if isinstance(self.source, tuple):
            return {name: document.data[name] for name in self.source if name in document.data}
        if self.source == DOCUMENT_ID:
            return document.id
        if self.source == WHOLE_DOCUMENT:
            return dict(document.data)
        return document.get(self.source)


def _missing(value: Any) -> bool:
    return value is None or value == ""


def _values_match(coerce: str, expected: Any, actual: Any, time_tolerance: float) -> bool:
    if coerce == "timestamp":
        if expected is None or actual is None:
            return expected is None and actual is None
        return abs((as_utc(expected) - as_utc(actual)).total_seconds()) <= time_tolerance
    if coerce == "number":
        if expected is None or actual is None:
            return expected is None and actual is None
        return math.isclose(float(expected), float(actual), rel_tol=1e-9, abs_tol=1e-9)
    if coerce == "text":
        return (expected or "") == (actual or "")
    if coerce in ("json", "json_list", "document"):
        return to_json_compatible(expected) == to_json_compatible(actual)
    return expected == actual


@dataclass(frozen=True)
class EntitySpec:
    """How one record type moves from the legacy store to the target store."""

    name: str
    collection: str
    model: type
    fields: tuple[FieldMapping, ...]
    key_kind: KeyKind
    natural_key: tuple[str, ...] = ()
    id_column: Optional[str] = "id"
    on_existing: OnExisting = OnExisting.SKIP
    order_field: str = "createdAt"
    order_column: str = "created_at"
    owner_field: Optional[str] = "userId"
    owner_column: str = "user_id"
    subtype_field: Optional[str] = None
    subtype_column: Optional[str] = None

    @property
    def namespace(self) -> str:
        return self.name

    @property
    def columns(self) -> set[str]:
        return {column.key for column in self.model.__table__.columns}

    def mapping_for(self, target: str) -> FieldMapping:
        for mapping in self.fields:
            if mapping.target == target:
                return mapping
        raise KeyError(target)

    def validate(self) -> None:
        columns = self.columns
        targets = [mapping.target for mapping in self.fields]
        problems = []
        if len(targets) != len(set(targets)):
            problems.append("duplicate target columns")
        for mapping in self.fields:
            if mapping.coerce not in COERCIONS:
                problems.append(f"unknown coercion {mapping.coerce!r} for {mapping.target}")
            if mapping.target not in columns:
                problems.append(f"{mapping.target} is not a column of {self.model.__tablename__}")
        covered = set(targets)
        if self.id_column:
            if self.id_column not in columns:
                problems.append(f"id column {self.id_column} missing")
            covered.add(self.id_column)
        uncovered = columns - covered
        if uncovered:
            problems.append(f"unmapped columns {sorted(uncovered)}")
        if self.key_kind == KeyKind.DERIVED and not self.id_column:
            problems.append("derived keys need an id column")
        if self.key_kind == KeyKind.NATURAL:
            if not self.natural_key:
                problems.append("natural keys need key columns")
            for column in self.natural_key:
                if column not in targets:
                    problems.append(f"natural key column {column} is not mapped")
        for column in (self.order_column, self.owner_column, self.subtype_column):
            if column and column not in columns:
                problems.append(f"{column} is not a column of {self.model.__tablename__}")
        if self.owner_field is None:
            owner_mapping = next(
                (m for m in self.fields if m.target == self.owner_column), None
            )
            if owner_mapping is None or owner_mapping.source != DOCUMENT_ID:
                problems.append("owner taken from the document id must map DOCUMENT_ID")
        if problems:
            raise MappingError(f"{self.name}: " + "; ".join(problems))

    # --- translation ---------------------------------------------------

    def translate(self, document: LegacyDocument) -> dict[str, Any]:
        """Legacy document -> full target row values, key columns included."""
        values: dict[str, Any] = {}
        for mapping in self.fields:
            raw = mapping.read(document)
            if mapping.required and _missing(raw):
                raise InvalidLegacyRecord(document.id, f"missing {mapping.source_label}")
            try:
                values[mapping.target] = COERCIONS[mapping.coerce](raw, mapping.default)
            except (TypeError, ValueError) as exc:
                raise InvalidLegacyRecord(
                    document.id, f"{mapping.target}: {exc}"
                ) from exc

        if self.key_kind == KeyKind.DERIVED:
            values[self.id_column] = derive(self.namespace, document.id)
        elif self.id_column:
            values[self.id_column] = derive_natural(
                self.namespace, *(values[column] for column in self.natural_key)
            )
        return values

    def target_key(self, values: dict[str, Any]) -> dict[str, Any]:
        if self.key_kind == KeyKind.DERIVED:
            return {self.id_column: values[self.id_column]}
        return {column: values[column] for column in self.natural_key}

    def present(self, values: dict[str, Any]) -> dict[str, Any]:
        """Row values -> the camelCase shape handed to request handlers."""
        return {
            snake_to_camel(name): to_json_compatible(values.get(name))
            for name in sorted(self.columns)
        }

    def mismatched_fields(
        self,
        expected: dict[str, Any],
        actual: dict[str, Any],
        *,
        time_tolerance: float,
    ) -> list[str]:
        return [
            mapping.target
            for mapping in self.fields
            if not _values_match(
                mapping.coerce,
                expected.get(mapping.target),
                actual.get(mapping.target),
                time_tolerance,
            )
        ]

    # --- scoping -------------------------------------------------------

    def legacy_filters(
        self, owner: Optional[str] = None, subtype: Optional[str] = None
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {}
        if owner and self.owner_field:
            filters[self.owner_field] = owner
        if subtype and self.subtype_field:
            filters[self.subtype_field] = subtype
        return filters

    def target_where(
        self, owner: Optional[str] = None, subtype: Optional[str] = None
    ) -> dict[str, Any]:
        where: dict[str, Any] = {}
        if owner:
            where[self.owner_column] = owner
        if subtype and self.subtype_column:
            where[self.subtype_column] = subtype
        return where

    def _owned_document(
        self, legacy: LegacyStore, owner: str, subtype: Optional[str]
    ) -> Optional[LegacyDocument]:
        document = legacy.get(self.collection, owner)
        if document is None:
            return None
        for name, value in self.legacy_filters(subtype=subtype).items():
            if document.get(name) != value:
                return None
        return document

    def iter_legacy(
        self,
        legacy: LegacyStore,
        *,
        owner: Optional[str] = None,
        subtype: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Iterator[LegacyDocument]:
        if owner and self.owner_field is None:
            document = self._owned_document(legacy, owner, subtype)
            if document is not None and (limit is None or limit > 0):
                yield document
            return
        yield from legacy.stream(
            self.collection,
            self.legacy_filters(owner, subtype),
            order_by=self.order_field,
            descending=descending,
            limit=limit,
        )

    def iter_legacy_unordered(
        self,
        legacy: LegacyStore,
        *,
        owner: Optional[str] = None,
        subtype: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Iterator[LegacyDocument]:
        """Documents that ordered streams leave out: the order field is absent."""
        if owner and self.owner_field is None:
            return
        found = 0
        for document in legacy.stream_all(self.collection, self.legacy_filters(owner, subtype)):
            if limit is not None and found >= limit:
                return
            if self.order_field not in document.data:
                found += 1
                yield document

    def count_legacy(
        self,
        legacy: LegacyStore,
        *,
        owner: Optional[str] = None,
        subtype: Optional[str] = None,
    ) -> int:
        if owner and self.owner_field is None:
            return 1 if self._owned_document(legacy, owner, subtype) else 0
        return legacy.count(self.collection, self.legacy_filters(owner, subtype))

    def latest_legacy(
        self,
        legacy: LegacyStore,
        *,
        owner: Optional[str] = None,
        subtype: Optional[str] = None,
    ) -> Optional[LegacyDocument]:
        return next(
            self.iter_legacy(legacy, owner=owner, subtype=subtype, descending=True, limit=1),
            None,
        )

    def legacy_timestamp(self, document: Optional[LegacyDocument]) -> Optional[datetime]:
        if document is None:
            return None
        return to_datetime(document.get(self.order_field))


PILLAR_CHECK_IN = EntitySpec(
    name="pillar_check_in",
    collection="pillarCheckIns",
    model=PillarCheckInRow,
    fields=(
        FieldMapping("userId", "user_id", "string", required=True),
        FieldMapping("pillarId", "pillar_identifier", "string", required=True),
        FieldMapping("value", "value", "rounded_int", default=0),
        FieldMapping("note", "note", "text", default=""),
        FieldMapping("createdAt", "created_at", "timestamp"),
        FieldMapping("updatedAt", "updated_at", "timestamp"),
    ),
    key_kind=KeyKind.DERIVED,
    on_existing=OnExisting.SKIP,
    order_field="createdAt",
    order_column="created_at",
    subtype_field="pillarId",
    subtype_column="pillar_identifier",
)

PILLAR_SCORE = EntitySpec(
    name="pillar_score",
    collection="pillarScores",
    model=PillarScoreRow,
    fields=(
        FieldMapping("userId", "user_id", "string", required=True),
        FieldMapping("pillar", "pillar_identifier", "string", required=True),
        FieldMapping("score", "score", "number", default=50.0),
        FieldMapping("trend", "trend", "text", default="stable"),
        FieldMapping("weeklyScores", "weekly_scores", "json_list"),
        FieldMapping("monthlyScores", "monthly_scores", "json_list"),
        FieldMapping("quickWins", "quick_wins", "json_list"),
        FieldMapping("createdAt", "created_at", "timestamp"),
        FieldMapping("updatedAt", "updated_at", "timestamp"),
    ),
    key_kind=KeyKind.NATURAL,
    natural_key=("user_id", "pillar_identifier"),
    on_existing=OnExisting.SKIP,
    order_field="updatedAt",
    order_column="updated_at",
    subtype_field="pillar",
    subtype_column="pillar_identifier",
)

ONBOARDING_PROFILE = EntitySpec(
    name="onboarding_profile",
    collection="onboardingProfiles",
    model=OnboardingProfileRow,
    fields=(
        FieldMapping("userId", "user_id", "string", required=True),
        FieldMapping(
            (
                "userId",
                "demographics",
                "com_b",
                "selectedGoals",
                "assessments",
                "psychologyProfile",
                "completedAt",
                "createdAt",
                "updatedAt",
            ),
            "doc",
            "document",
        ),
        FieldMapping("completedAt", "completed_at", "timestamp"),
        FieldMapping("createdAt", "created_at", "timestamp"),
        FieldMapping("updatedAt", "updated_at", "timestamp"),
    ),
    key_kind=KeyKind.NATURAL,
    natural_key=("user_id",),
    id_column=None,
    on_existing=OnExisting.OVERWRITE,
    order_field="updatedAt",
    order_column="updated_at",
)

USER_CORE_STATE = EntitySpec(
    name="user_core_state",
    collection="users",
    model=UserCoreStateRow,
    fields=(
        FieldMapping(DOCUMENT_ID, "user_id", "string", required=True),
        FieldMapping("allowedPillars", "allowed_pillars", "json"),
        FieldMapping("pillars", "pillars", "json"),
        FieldMapping("settings", "settings", "json"),
        FieldMapping("subscriptionTier", "subscription_tier", "optional_string"),
        FieldMapping("createdAt", "created_at", "timestamp"),
        FieldMapping("updatedAt", "updated_at", "timestamp"),
    ),
    key_kind=KeyKind.NATURAL,
    natural_key=("user_id",),
    id_column=None,
    on_existing=OnExisting.OVERWRITE,
    order_field="updatedAt",
    order_column="updated_at",
    owner_field=None,
)

ACTION_PLAN = EntitySpec(
    name="action_plan",
    collection="actionPlans",
    model=ActionPlanRow,
    fields=(
        FieldMapping("userId", "user_id", "string", required=True),
        FieldMapping("pillarId", "pillar_identifier", "optional_string"),
        FieldMapping(WHOLE_DOCUMENT, "doc", "document"),
        FieldMapping("createdAt", "created_at", "timestamp"),
        FieldMapping("updatedAt", "updated_at", "timestamp"),
    ),
    key_kind=KeyKind.DERIVED,
    on_existing=OnExisting.OVERWRITE,
    order_field="createdAt",
    order_column="created_at",
    subtype_field="pillarId",
    subtype_column="pillar_identifier",
)

AI_MESSAGE = EntitySpec(
    name="ai_message",
    collection="aiMessages",
    model=AiMessageRow,
    fields=(
        FieldMapping("userId", "user_id", "string", required=True),
        FieldMapping("sessionId", "session_id", "optional_string"),
        FieldMapping("role", "role", "string", required=True),
        FieldMapping("content", "content", "json"),
        FieldMapping("meta", "meta", "json"),
        FieldMapping("createdAt", "created_at", "timestamp"),
    ),
    key_kind=KeyKind.DERIVED,
    on_existing=OnExisting.OVERWRITE,
    order_field="createdAt",
    order_column="created_at",
    subtype_field="sessionId",
    subtype_column="session_id",
)


def _build_registry(*specs: EntitySpec) -> dict[str, EntitySpec]:
    registry: dict[str, EntitySpec] = {}
    for spec in specs:
        spec.validate()
        if spec.name in registry:
            raise MappingError(f"duplicate entity {spec.name}")
        registry[spec.name] = spec
    return registry


ENTITY_SPECS = _build_registry(
    PILLAR_CHECK_IN,
    PILLAR_SCORE,
    ONBOARDING_PROFILE,
    USER_CORE_STATE,
    ACTION_PLAN,
    AI_MESSAGE,
)


def get_entity_spec(name: str) -> EntitySpec:
    try:
        return ENTITY_SPECS[name]
    except KeyError:
        raise KeyError(
            f"unknown entity {name!r}; expected one of {sorted(ENTITY_SPECS)}"
        ) from None
