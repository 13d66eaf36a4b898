"""
Read call sites for migrated entity types.

Every read goes through the ReadRouter: the primary thunk reads target rows,
the secondary reads legacy documents and translates them with the same
mapping table, so both sides hand back identical camelCase dicts.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from migration.db import TargetStore
from migration.errors import ConnectionUnavailable, InvalidLegacyRecord
from migration.legacy import LegacyDocument, LegacyStore
from migration.mappings import (
    ACTION_PLAN,
    AI_MESSAGE,
    ONBOARDING_PROFILE,
    PILLAR_CHECK_IN,
    PILLAR_SCORE,
    USER_CORE_STATE,
    EntitySpec,
)
from migration.read_router import ReadRouter

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


class MigratedReads:
    def __init__(
        self,
        router: ReadRouter,
        target: TargetStore,
        legacy: Optional[LegacyStore] = None,
    ):
        self.router = router
        self.target = target
        self.legacy = legacy

    def _legacy_store(self) -> LegacyStore:
        if self.legacy is None:
            raise ConnectionUnavailable("legacy store is not configured")
        return self.legacy

    def _present_legacy(
        self, spec: EntitySpec, documents: Iterable[LegacyDocument]
    ) -> list[dict[str, Any]]:
        presented = []
        for document in documents:
            try:
                presented.append(spec.present(spec.translate(document)))
            except InvalidLegacyRecord as exc:
                logger.warning(
                    "Skipping untranslatable %s document %s: %s",
                    spec.name,
                    document.id,
                    exc.reason,
                )
        return presented

    def _list(
        self,
        spec: EntitySpec,
        label: str,
        *,
        owner: str,
        subtype: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[dict[str, Any]]:
        def primary() -> list[dict[str, Any]]:
            rows = self.target.find_many(
                spec.model,
                spec.target_where(owner, subtype),
                order_by=spec.order_column,
                descending=True,
                limit=limit,
            )
            return [spec.present(row) for row in rows]

        def secondary() -> list[dict[str, Any]]:
            documents = spec.iter_legacy(
                self._legacy_store(),
                owner=owner,
                subtype=subtype,
                descending=True,
                limit=limit,
            )
            return self._present_legacy(spec, documents)

        meta = {"entity": spec.name, "userId": owner}
        if subtype:
            meta["subtype"] = subtype
        return self.router.read(label, meta, primary, secondary)

    def _one(
        self,
        spec: EntitySpec,
        label: str,
        key: dict[str, Any],
        *,
        owner: str,
        subtype: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        def primary() -> Optional[dict[str, Any]]:
            row = self.target.find_unique(spec.model, key)
            return spec.present(row) if row else None

        def secondary() -> Optional[dict[str, Any]]:
            documents = spec.iter_legacy(
                self._legacy_store(),
                owner=owner,
                subtype=subtype,
                descending=True,
                limit=1,
            )
            presented = self._present_legacy(spec, documents)
            return presented[0] if presented else None

        return self.router.read(label, {"entity": spec.name, **key}, primary, secondary)

    def recent_checkins(
        self, user_id: str, *, pillar: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[dict[str, Any]]:
        return self._list(
            PILLAR_CHECK_IN, "timeline:checkins", owner=user_id, subtype=pillar, limit=limit
        )

    def pillar_scores(self, user_id: str) -> list[dict[str, Any]]:
        return self._list(PILLAR_SCORE, "timeline:pillarScores", owner=user_id)

    def pillar_score(self, user_id: str, pillar: str) -> Optional[dict[str, Any]]:
        return self._one(
            PILLAR_SCORE,
            "friends:pillarScore",
            {"user_id": user_id, "pillar_identifier": pillar},
            owner=user_id,
            subtype=pillar,
        )

    def onboarding_profile(self, user_id: str) -> Optional[dict[str, Any]]:
        return self._one(
            ONBOARDING_PROFILE,
            "onboarding:getOnboarding",
            {"user_id": user_id},
            owner=user_id,
        )

    def user_core_state(self, user_id: str) -> Optional[dict[str, Any]]:
        return self._one(
            USER_CORE_STATE,
            "user:coreState",
            {"user_id": user_id},
            owner=user_id,
        )

    def action_plans(
        self, user_id: str, *, pillar: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[dict[str, Any]]:
        return self._list(
            ACTION_PLAN, "actionPlans:list", owner=user_id, subtype=pillar, limit=limit
        )

    def ai_messages(
        self,
        user_id: str,
        *,
        session_id: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[dict[str, Any]]:
        return self._list(
            AI_MESSAGE, "ai:messages", owner=user_id, subtype=session_id, limit=limit
        )
