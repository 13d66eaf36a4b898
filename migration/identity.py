"""
Stable identifier derivation for migrated records.

Legacy document ids are mapped onto target primary keys without a lookup
table: the same (namespace, legacy id) pair yields the same identifier in
every process and every run, so independent backfill and validation runs
agree on which row belongs to which document.
"""

from __future__ import annotations

import hashlib
import uuid


def derive(namespace: str, legacy_id: str) -> str:
    """
    Map ``legacy_id`` within ``namespace`` to a UUID-shaped string.

    The first 16 bytes of SHA-256("{namespace}:legacy:{legacy_id}") are
    stamped with the version-5 and RFC 4122 variant bits so the value fits a
    UUID primary key column.
    """
    if not namespace:
        raise ValueError("namespace must be a non-empty string")
    if legacy_id is None or str(legacy_id) == "":
        raise ValueError("legacy_id must be a non-empty string")

    digest = hashlib.sha256(
        f"{namespace}:legacy:{legacy_id}".encode("utf-8")
    ).digest()
    raw = bytearray(digest[:16])
    raw[6] = (raw[6] & 0x0F) | 0x50
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def derive_natural(namespace: str, *parts: str) -> str:
    """Derive a row id from a natural composite key."""
    if not parts:
        raise ValueError("at least one key part is required")
    return derive(namespace, ":".join(str(part) for part in parts))
