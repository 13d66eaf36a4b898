"""
Error taxonomy for the migration layer.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_CRASH = 1
EXIT_PRECONDITION = 2
EXIT_DRIFT = 3


class MigrationError(Exception):
    """Base class for errors raised by the migration layer."""


class ConnectionUnavailable(MigrationError):
    """A configured store could not be reached, or no store is configured."""


class EnvironmentGuardTripped(MigrationError):
    """A batch job was started in an environment it must not run in."""


class MappingError(MigrationError):
    """An entity mapping table is inconsistent with its target model."""


class InvalidLegacyRecord(MigrationError):
    """A legacy document cannot be translated into its target row."""

    def __init__(self, legacy_id: str, reason: str):
        super().__init__(f"{legacy_id}: {reason}")
        self.legacy_id = legacy_id
        self.reason = reason


class ReadTimeout(MigrationError):
    """A routed read did not finish within its per-attempt budget."""
