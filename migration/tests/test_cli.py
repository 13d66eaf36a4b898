import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine, inspect

from migration.cli import run_backfill_cli, run_validate_cli
from migration.config import Settings
from migration.db import PillarCheckInRow, PillarScoreRow, PostgresTargetStore
from migration.errors import EXIT_CRASH, EXIT_DRIFT, EXIT_OK, EXIT_PRECONDITION
from migration.identity import derive
from migration.legacy import InMemoryLegacyStore
from migration.mappings import ENTITY_SPECS

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)

PILLAR_SUBSETS = {"--checkins-only": "pillar_check_in", "--scores-only": "pillar_score"}


class CliTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(
            _env_file=None,
            app_env="development",
            database_url=None,
            firestore_project_id=None,
            firestore_emulator_host=None,
        )
        self.legacy = InMemoryLegacyStore()
        self.target = PostgresTargetStore("sqlite+pysqlite:///:memory:", create_schema=True)
        self.addCleanup(self.target.close)
        for i in range(4):
            self.legacy.add(
                "pillarCheckIns",
                f"c{i}",
                {
                    "userId": "u1" if i < 3 else "u2",
                    "pillarId": "sleep",
                    "value": 7,
                    "createdAt": T0 + timedelta(hours=i),
                },
            )
        self.legacy.add(
            "pillarScores",
            "s1",
            {"userId": "u1", "pillar": "sleep", "score": 70, "updatedAt": T0},
        )

    def backfill(self, argv, **kwargs):
        options = {"settings": self.settings, "legacy": self.legacy, "target": self.target}
        options.update(kwargs)
        return run_backfill_cli(
            ["pillar_check_in", "pillar_score"],
            argv,
            description="test backfill",
            subsets=PILLAR_SUBSETS,
            subtype_flag="--pillar",
            **options,
        )

    def validate(self, argv, entities=("pillar_check_in", "pillar_score"), **kwargs):
        options = {"settings": self.settings, "legacy": self.legacy, "target": self.target}
        options.update(kwargs)
        return run_validate_cli(
            list(entities),
            argv,
            description="test validate",
            **options,
        )

    def test_backfill_all_selected_entities(self):
        self.assertEqual(self.backfill([]), EXIT_OK)
        self.assertEqual(self.target.count(PillarCheckInRow, {}), 4)
        self.assertEqual(self.target.count(PillarScoreRow, {}), 1)

    def test_subset_flag(self):
        self.assertEqual(self.backfill(["--scores-only"]), EXIT_OK)
        self.assertEqual(self.target.count(PillarCheckInRow, {}), 0)
        self.assertEqual(self.target.count(PillarScoreRow, {}), 1)

    def test_subset_flags_are_exclusive(self):
        with self.assertRaises(SystemExit):
            self.backfill(["--scores-only", "--checkins-only"])

    def test_scope_and_limit_flags(self):
        self.assertEqual(self.backfill(["--checkins-only", "--userId", "u1", "--limit", "2"]), EXIT_OK)
        self.assertEqual(self.target.count(PillarCheckInRow, {}), 2)
        self.assertEqual(self.backfill(["--checkins-only", "--user-id", "u2"]), EXIT_OK)
        self.assertEqual(self.target.count(PillarCheckInRow, {"user_id": "u2"}), 1)

    def test_dry_run(self):
        self.assertEqual(self.backfill(["--dry-run"]), EXIT_OK)
        self.assertEqual(self.target.count(PillarCheckInRow, {}), 0)

    def test_on_existing_overwrite(self):
        self.backfill(["--checkins-only"])
        self.legacy.collections["pillarCheckIns"]["c0"]["value"] = 2
        self.assertEqual(self.backfill(["--checkins-only", "--on-existing", "overwrite"]), EXIT_OK)
        row = self.target.find_unique(PillarCheckInRow, {"id": derive("pillar_check_in", "c0")})
        self.assertEqual(row["value"], 2)

    def test_invalid_on_existing_is_usage_error(self):
        with self.assertRaises(SystemExit):
            self.backfill(["--on-existing", "merge"])

    def test_guarded_environment(self):
        settings = Settings(_env_file=None, app_env="production")
        with self.assertLogs("migration.cli", level="ERROR"):
            code = self.backfill([], settings=settings)
        self.assertEqual(code, EXIT_PRECONDITION)
        self.assertEqual(self.target.count(PillarCheckInRow, {}), 0)

    def test_missing_legacy_store(self):
        self.assertEqual(self.backfill([], legacy=None), EXIT_PRECONDITION)

    def test_unconfigured_legacy_store_from_settings(self):
        code = run_backfill_cli(
            ["pillar_check_in"],
            [],
            description="test backfill",
            settings=self.settings,
            target=self.target,
        )
        self.assertEqual(code, EXIT_PRECONDITION)

    def test_missing_database_url(self):
        self.assertEqual(self.backfill([], target=None), EXIT_PRECONDITION)

    def test_unexpected_crash(self):
        legacy = MagicMock()
        legacy.stream.side_effect = RuntimeError("cursor exploded")
        with self.assertLogs("migration.cli", level="ERROR") as logs:
            code = self.backfill([], legacy=legacy)
        self.assertEqual(code, EXIT_CRASH)
        self.assertTrue(any("Traceback" in line for line in logs.output))

    @patch("migration.cli.PostgresTargetStore")
    def test_owned_target_is_closed(self, mock_store):
        mock_store.return_value.missing_tables.return_value = []
        settings = Settings(_env_file=None, app_env="development", database_url="postgresql://db")
        self.assertEqual(self.backfill(["--dry-run"], settings=settings, target=None), EXIT_OK)
        mock_store.assert_called_once_with("postgresql://db")
        mock_store.return_value.close.assert_called_once()

    def file_database(self):
        handle, path = tempfile.mkstemp(suffix=".db")
        os.close(handle)
        self.addCleanup(os.remove, path)
        return Settings(
            _env_file=None, app_env="development", database_url=f"sqlite+pysqlite:///{path}"
        )

    def table_names(self, settings):
        engine = create_engine(settings.database_url)
        self.addCleanup(engine.dispose)
        return inspect(engine).get_table_names()

    def test_validate_never_creates_tables(self):
        settings = self.file_database()
        with self.assertLogs("migration.cli", level="ERROR") as logs:
            code = self.validate([], settings=settings, target=None)
        self.assertEqual(code, EXIT_PRECONDITION)
        self.assertTrue(any("missing tables" in line for line in logs.output))
        self.assertEqual(self.table_names(settings), [])

    def test_backfill_requires_schema_unless_asked_to_create_it(self):
        settings = self.file_database()
        self.assertEqual(self.backfill([], settings=settings, target=None), EXIT_PRECONDITION)
        self.assertEqual(self.table_names(settings), [])

        code = self.backfill(["--create-schema"], settings=settings, target=None)
        self.assertEqual(code, EXIT_OK)
        self.assertIn("pillar_check_ins", self.table_names(settings))
        self.assertEqual(self.validate([], settings=settings, target=None), EXIT_OK)

    def test_validate_clean(self):
        self.backfill([])
        self.assertEqual(self.validate(["--sample", "10"]), EXIT_OK)

    def test_validate_drift(self):
        self.backfill([])
        self.target.upsert(
            PillarCheckInRow, {"id": derive("pillar_check_in", "c2")}, {"value": 8}
        )
        self.assertEqual(self.validate([]), EXIT_DRIFT)

    def test_validate_scoped_to_pillar(self):
        self.backfill(["--pillar", "sleep"])
        code = run_validate_cli(
            ["pillar_check_in", "pillar_score"],
            ["--checkins-only", "--pillar", "sleep", "--userId", "u1"],
            description="test validate",
            subsets=PILLAR_SUBSETS,
            subtype_flag="--pillar",
            settings=self.settings,
            legacy=self.legacy,
            target=self.target,
        )
        self.assertEqual(code, EXIT_OK)

    def test_validate_entity_choice(self):
        self.backfill(["--checkins-only"])
        argv = ["--entity", "pillar_check_in"]
        self.assertEqual(
            self.validate(argv, entities=list(ENTITY_SPECS), entity_choice=True), EXIT_OK
        )
        argv = ["--entity", "pillar_check_in", "--entity", "pillar_score"]
        self.assertEqual(
            self.validate(argv, entities=list(ENTITY_SPECS), entity_choice=True), EXIT_DRIFT
        )

    def test_validate_guarded_environment(self):
        settings = Settings(_env_file=None, app_env="production")
        self.assertEqual(self.validate([], settings=settings), EXIT_PRECONDITION)


if __name__ == "__main__":
    unittest.main()
