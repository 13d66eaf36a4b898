"""
Best-effort mirroring of live legacy writes into the target store.

Write handlers keep the legacy store authoritative during the transition and
call ``DualWriter.mirror`` right after their own write. A failed mirror is
logged and left for the next backfill pass to repair; it never fails the
request. Target rows are only ever upserted here, never deleted.
"""

from __future__ import annotations

import logging
from typing import Any, Union

from migration.db import TargetStore
from migration.legacy import LegacyDocument
from migration.log import DUAL_WRITE, error_meta, log_event
from migration.mappings import EntitySpec, get_entity_spec

logger = logging.getLogger(__name__)


class DualWriter:
    def __init__(self, target: TargetStore):
        self.target = target

    def mirror(
        self,
        entity: Union[str, EntitySpec],
        document: LegacyDocument,
    ) -> bool:
        spec = get_entity_spec(entity) if isinstance(entity, str) else entity
        try:
            values = spec.translate(document)
            self.target.upsert(spec.model, spec.target_key(values), values)
        except Exception as exc:
            meta: dict[str, Any] = {
                "legacyId": document.id,
                "userId": document.get("userId"),
                **error_meta(exc),
            }
            log_event(logger, logging.WARNING, DUAL_WRITE, f"{spec.name} target_upsert_failed", meta)
            return False
        return True
