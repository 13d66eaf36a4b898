"""
Command-line shell for the backfill and validation scripts.

Each script under ``scripts/`` is a few lines that pick the entity types and
hand argv to ``run_backfill_cli`` or ``run_validate_cli``. The shell owns the
process concerns: argument parsing, logging setup, precondition gates, store
lifetimes and the exit code. The jobs themselves never exit the process.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Callable, Optional, Sequence

from sqlalchemy.exc import OperationalError

from migration.backfill import BackfillJob, BackfillOptions
from migration.config import Settings, get_settings
from migration.db import PostgresTargetStore, TargetStore
from migration.errors import (
    EXIT_CRASH,
    EXIT_OK,
    EXIT_PRECONDITION,
    ConnectionUnavailable,
    EnvironmentGuardTripped,
)
from migration.legacy import LegacyStore, connect_legacy_store
from migration.log import BACKFILL, VALIDATION, error_meta, log_event
from migration.mappings import ENTITY_SPECS, OnExisting, get_entity_spec
from migration.parity import DEFAULT_SAMPLE_SIZE, ParityValidator, exit_code_for

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_UNSET: Any = object()


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def _add_scope_arguments(
    parser: argparse.ArgumentParser, subtype_flag: Optional[str]
) -> None:
    parser.add_argument(
        "--userId",
        "--user-id",
        dest="owner",
        default=None,
        help="Only process records owned by this user",
    )
    if subtype_flag:
        parser.add_argument(
            subtype_flag,
            dest="subtype",
            default=None,
            help="Only process records with this sub-type",
        )


def _add_subset_arguments(
    parser: argparse.ArgumentParser, subsets: Optional[dict[str, str]]
) -> None:
    if not subsets:
        return
    group = parser.add_mutually_exclusive_group()
    for flag, entity in subsets.items():
        group.add_argument(
            flag,
            dest="only",
            action="store_const",
            const=entity,
            help=f"Only process {entity}",
        )


def _selected(entities: Sequence[str], args: argparse.Namespace) -> list[str]:
    only = getattr(args, "only", None)
    return [only] if only else list(entities)


def _configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def _check_environment(settings: Settings, component: str) -> None:
    if settings.is_guarded_environment:
        log_event(
            logger,
            logging.ERROR,
            component,
            "refusing to run in a guarded environment",
            {"appEnv": settings.app_env},
        )
        raise EnvironmentGuardTripped(
            f"APP_ENV={settings.app_env} is guarded; batch jobs are disabled"
        )


def _open_legacy(settings: Settings) -> LegacyStore:
    legacy = connect_legacy_store(settings)
    if legacy is None:
        raise ConnectionUnavailable(
            "legacy store is not configured (set FIRESTORE_PROJECT_ID or FIRESTORE_EMULATOR_HOST)"
        )
    return legacy


def _open_target(settings: Settings, create_schema: bool = False) -> TargetStore:
    if not settings.database_url:
        raise ConnectionUnavailable("target database is not configured (set DATABASE_URL)")
    target = PostgresTargetStore(settings.database_url)
    try:
        if create_schema:
            target.create_schema()
        missing = target.missing_tables()
    except OperationalError as exc:
        target.close()
        raise ConnectionUnavailable(f"target database is unreachable: {exc}") from exc
    if missing:
        target.close()
        raise ConnectionUnavailable(
            f"target schema is missing tables: {', '.join(missing)}"
        )
    return target


def _run(
    component: str,
    settings: Optional[Settings],
    legacy: Optional[LegacyStore],
    target: Optional[TargetStore],
    work: Callable[[LegacyStore, TargetStore], int],
    create_schema: bool = False,
) -> int:
    settings = settings or get_settings()
    owned: list[Any] = []
    try:
        _check_environment(settings, component)
        if legacy is _UNSET:
            legacy = _open_legacy(settings)
            owned.append(legacy)
        elif legacy is None:
            raise ConnectionUnavailable("legacy store is not configured")
        if target is None:
            target = _open_target(settings, create_schema)
            owned.append(target)
        return work(legacy, target)
    except (ConnectionUnavailable, EnvironmentGuardTripped) as exc:
        log_event(logger, logging.ERROR, component, "precondition failed", error_meta(exc))
        return EXIT_PRECONDITION
    except Exception:
        logger.exception("[%s] unexpected failure", component)
        return EXIT_CRASH
    finally:
        for handle in owned:
            try:
                handle.close()
            except Exception:
                logger.warning("Failed to close %s", type(handle).__name__, exc_info=True)


def build_backfill_parser(
    description: str,
    *,
    subsets: Optional[dict[str, str]] = None,
    subtype_flag: Optional[str] = None,
) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Read and classify records without writing to the target store",
    )
    parser.add_argument(
        "--limit",
        type=_non_negative_int,
        default=None,
        help="Max number of legacy records to scan per entity",
    )
    parser.add_argument(
        "--on-existing",
        choices=[policy.value for policy in OnExisting],
        default=None,
        help="Override the per-entity policy for rows that already exist",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing target tables before writing",
    )
    _add_scope_arguments(parser, subtype_flag)
    _add_subset_arguments(parser, subsets)
    return parser


def build_validate_parser(
    description: str,
    *,
    subsets: Optional[dict[str, str]] = None,
    subtype_flag: Optional[str] = None,
    entity_choice: bool = False,
) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--sample",
        type=_positive_int,
        default=DEFAULT_SAMPLE_SIZE,
        help="How many of the most recent records to compare field by field",
    )
    if entity_choice:
        parser.add_argument(
            "--entity",
            dest="entities",
            action="append",
            choices=sorted(ENTITY_SPECS),
            default=None,
            help="Entity type to validate (repeatable, default all)",
        )
    _add_scope_arguments(parser, subtype_flag)
    _add_subset_arguments(parser, subsets)
    return parser


def run_backfill_cli(
    entities: Sequence[str],
    argv: Optional[Sequence[str]] = None,
    *,
    description: str,
    subsets: Optional[dict[str, str]] = None,
    subtype_flag: Optional[str] = None,
    settings: Optional[Settings] = None,
    legacy: Optional[LegacyStore] = _UNSET,
    target: Optional[TargetStore] = None,
) -> int:
    """Backfill the given entity types in order and return the process exit code."""
    parser = build_backfill_parser(
        description, subsets=subsets, subtype_flag=subtype_flag
    )
    args = parser.parse_args(argv)
    _configure_logging()

    options = BackfillOptions(
        dry_run=args.dry_run,
        limit=args.limit,
        owner=args.owner,
        subtype=getattr(args, "subtype", None),
        on_existing=OnExisting(args.on_existing) if args.on_existing else None,
    )

    def work(legacy_store: LegacyStore, target_store: TargetStore) -> int:
        for name in _selected(entities, args):
            summary = BackfillJob(get_entity_spec(name), legacy_store, target_store).run(
                options
            )
            if summary.failed:
                log_event(
                    logger,
                    logging.WARNING,
                    BACKFILL,
                    f"{name} finished with failed records",
                    {"failed": summary.failed},
                )
        return EXIT_OK

    return _run(BACKFILL, settings, legacy, target, work, create_schema=args.create_schema)


def run_validate_cli(
    entities: Sequence[str],
    argv: Optional[Sequence[str]] = None,
    *,
    description: str,
    subsets: Optional[dict[str, str]] = None,
    subtype_flag: Optional[str] = None,
    entity_choice: bool = False,
    settings: Optional[Settings] = None,
    legacy: Optional[LegacyStore] = _UNSET,
    target: Optional[TargetStore] = None,
) -> int:
    """Validate the given entity types; exit 3 if any of them drifted."""
    parser = build_validate_parser(
        description,
        subsets=subsets,
        subtype_flag=subtype_flag,
        entity_choice=entity_choice,
    )
    args = parser.parse_args(argv)
    _configure_logging()

    names = _selected(entities, args)
    if entity_choice and args.entities:
        names = list(dict.fromkeys(args.entities))

    def work(legacy_store: LegacyStore, target_store: TargetStore) -> int:
        active = settings or get_settings()
        reports = []
        for name in names:
            validator = ParityValidator(
                get_entity_spec(name),
                legacy_store,
                target_store,
                recency_tolerance_seconds=active.recency_tolerance_seconds,
                field_time_tolerance_seconds=active.field_time_tolerance_seconds,
            )
            reports.append(
                validator.run(
                    sample_size=args.sample,
                    owner=args.owner,
                    subtype=getattr(args, "subtype", None),
                )
            )
        exit_code = exit_code_for(reports)
        log_event(
            logger,
            logging.INFO if exit_code == EXIT_OK else logging.ERROR,
            VALIDATION,
            "parity check finished",
            {
                "entities": names,
                "drifted": [report.entity for report in reports if not report.ok],
                "exitCode": exit_code,
            },
        )
        return exit_code

    return _run(VALIDATION, settings, legacy, target, work)
