"""
Legacy (document) store access for Firestore and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore as gcloud_firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from migration.config import Settings
from migration.errors import ConnectionUnavailable

logger = logging.getLogger(__name__)

LEGACY_APP_NAME = "legacy-store"
DEFAULT_PAGE_SIZE = 300


@dataclass
class LegacyDocument:
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


class LegacyStore(Protocol):
    """Read operations the migration layer needs from the document store."""

    def stream(
        self,
        collection: str,
        filters: dict[str, Any],
        *,
        order_by: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Iterator[LegacyDocument]:
        ...

    def stream_all(
        self, collection: str, filters: dict[str, Any], *, limit: Optional[int] = None
    ) -> Iterator[LegacyDocument]:
        ...

    def count(self, collection: str, filters: dict[str, Any]) -> int:
        ...

    def find_one(
        self, collection: str, filters: dict[str, Any], *, order_by: str
    ) -> Optional[LegacyDocument]:
        ...

    def get(self, collection: str, doc_id: str) -> Optional[LegacyDocument]:
        ...

    def close(self) -> None:
        ...


class InMemoryLegacyStore:
    """
    Dict-backed document store for development and tests.

    Ordering mirrors Firestore: documents lacking the order field are left
    out of ordered queries, explicit nulls sort first. ``stream_all`` orders
    by document id and returns everything.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}

    def add(self, collection: str, doc_id: str, data: dict[str, Any]) -> LegacyDocument:
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        return LegacyDocument(id=doc_id, data=copy.deepcopy(data))

    def delete(self, collection: str, doc_id: str) -> None:
        self.collections.get(collection, {}).pop(doc_id, None)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.collections.clear()

    def _matching(
        self, collection: str, filters: dict[str, Any]
    ) -> list[LegacyDocument]:
        docs = []
        for doc_id, data in self.collections.get(collection, {}).items():
            if all(data.get(name) == value for name, value in filters.items()):
                docs.append(LegacyDocument(id=doc_id, data=copy.deepcopy(data)))
        return docs

    def stream(
        self,
        collection: str,
        filters: dict[str, Any],
        *,
        order_by: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Iterator[LegacyDocument]:
        docs = [doc for doc in self._matching(collection, filters) if order_by in doc.data]
        docs.sort(
            key=lambda doc: (doc.get(order_by) is not None, doc.get(order_by), doc.id),
            reverse=descending,
        )
        if limit is not None:
            docs = docs[:limit]
        return iter(docs)

    def stream_all(
        self, collection: str, filters: dict[str, Any], *, limit: Optional[int] = None
    ) -> Iterator[LegacyDocument]:
        docs = sorted(self._matching(collection, filters), key=lambda doc: doc.id)
        if limit is not None:
            docs = docs[:limit]
        return iter(docs)

    def count(self, collection: str, filters: dict[str, Any]) -> int:
        return len(self._matching(collection, filters))

    def find_one(
        self, collection: str, filters: dict[str, Any], *, order_by: str
    ) -> Optional[LegacyDocument]:
        return next(
            self.stream(collection, filters, order_by=order_by, descending=True, limit=1),
            None,
        )

    def get(self, collection: str, doc_id: str) -> Optional[LegacyDocument]:
        data = self.collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return LegacyDocument(id=doc_id, data=copy.deepcopy(data))

    def close(self) -> None:
        return None


class FirestoreLegacyStore:
    """
    Firestore-backed legacy store.

    Streams are paged with ``start_after`` so a long backfill never holds a
    single server-side cursor open.
    """

    def __init__(self, client: Any, *, page_size: int = DEFAULT_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def _query(self, collection: str, filters: dict[str, Any]) -> Any:
        query = self.client.collection(collection)
        for name, value in filters.items():
            query = query.where(filter=FieldFilter(name, "==", value))
        return query

    def _paged(self, base: Any, limit: Optional[int]) -> Iterator[LegacyDocument]:
        remaining = limit
        last_snapshot = None
        while remaining is None or remaining > 0:
            page_size = self.page_size if remaining is None else min(self.page_size, remaining)
            query = base
            if last_snapshot is not None:
                query = query.start_after(last_snapshot)
            snapshots = list(query.limit(page_size).stream())
            if not snapshots:
                return
            for snapshot in snapshots:
                yield LegacyDocument(id=snapshot.id, data=snapshot.to_dict() or {})
            if remaining is not None:
                remaining -= len(snapshots)
            if len(snapshots) < page_size:
                return
            last_snapshot = snapshots[-1]

    def stream(
        self,
        collection: str,
        filters: dict[str, Any],
        *,
        order_by: str,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Iterator[LegacyDocument]:
        direction = (
            firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        )
        base = self._query(collection, filters).order_by(order_by, direction=direction)
        return self._paged(base, limit)

    def stream_all(
        self, collection: str, filters: dict[str, Any], *, limit: Optional[int] = None
    ) -> Iterator[LegacyDocument]:
        base = self._query(collection, filters).order_by(
            FieldPath.document_id()
        )
        return self._paged(base, limit)

    def count(self, collection: str, filters: dict[str, Any]) -> int:
        results = self._query(collection, filters).count(alias="total").get()
        return int(results[0][0].value)

    def find_one(
        self, collection: str, filters: dict[str, Any], *, order_by: str
    ) -> Optional[LegacyDocument]:
        return next(
            self.stream(collection, filters, order_by=order_by, descending=True, limit=1),
            None,
        )

    def get(self, collection: str, doc_id: str) -> Optional[LegacyDocument]:
        snapshot = self.client.collection(collection).document(doc_id).get()
        if not snapshot.exists:
            return None
        return LegacyDocument(id=snapshot.id, data=snapshot.to_dict() or {})

    def close(self) -> None:
        self.client.close()


def _firebase_app(settings: Settings) -> firebase_admin.App:
    try:
        return firebase_admin.get_app(LEGACY_APP_NAME)
    except ValueError:
        pass
    if settings.google_application_credentials:
        credential = credentials.Certificate(settings.google_application_credentials)
    else:
        credential = credentials.ApplicationDefault()
    options = {"projectId": settings.firestore_project_id}
    return firebase_admin.initialize_app(credential, options, name=LEGACY_APP_NAME)


def connect_legacy_store(settings: Settings) -> Optional[FirestoreLegacyStore]:
    """
    Return a Firestore-backed store, or None when no legacy store is configured.

    Missing configuration is a normal state (the store has been retired or
    was never set up here). A configured store that cannot be reached raises
    ConnectionUnavailable.
    """
    if not settings.legacy_store_configured:
        logger.info("Legacy store not configured; skipping Firestore connection")
        return None

    try:
        if settings.firestore_emulator_host:
            os.environ.setdefault("FIRESTORE_EMULATOR_HOST", settings.firestore_emulator_host)
            client = gcloud_firestore.Client(
                project=settings.firestore_project_id or "demo-legacy"
            )
        else:
            client = firestore.client(_firebase_app(settings))
        # Cheap round trip so an unreachable store fails here, not mid-run.
        next(iter(client.collections()), None)
    except (
        exceptions.GoogleAPIError,
        auth_exceptions.GoogleAuthError,
        ValueError,
        OSError,
    ) as exc:
        raise ConnectionUnavailable(f"Firestore unavailable: {exc}") from exc

    return FirestoreLegacyStore(client)
