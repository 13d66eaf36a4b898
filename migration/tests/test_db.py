import unittest
from datetime import datetime, timedelta, timezone

from migration.db import (
    OnboardingProfileRow,
    PillarCheckInRow,
    PillarScoreRow,
    PostgresTargetStore,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def checkin_values(i, user_id="u1"):
    return {
        "id": f"id-{i}",
        "user_id": user_id,
        "pillar_identifier": "sleep",
        "value": i,
        "note": "",
        "created_at": T0 + timedelta(minutes=i),
        "updated_at": None,
    }


class PostgresTargetStoreTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.store = PostgresTargetStore("sqlite+pysqlite:///:memory:", create_schema=True)

    def tearDown(self):
        self.store.close()

    def test_requires_url(self):
        with self.assertRaises(ValueError):
            PostgresTargetStore("")

    def test_schema_is_opt_in(self):
        store = PostgresTargetStore("sqlite+pysqlite:///:memory:")
        self.addCleanup(store.close)
        self.assertIn("pillar_check_ins", store.missing_tables())
        store.create_schema()
        self.assertEqual(store.missing_tables(), [])
        self.assertEqual(self.store.missing_tables(), [])

    def test_create_and_find_unique(self):
        self.store.create(PillarCheckInRow, checkin_values(1))
        row = self.store.find_unique(PillarCheckInRow, {"id": "id-1"})
        self.assertEqual(row["value"], 1)
        self.assertEqual(row["created_at"], T0 + timedelta(minutes=1))
        self.assertEqual(row["created_at"].tzinfo, timezone.utc)
        self.assertIsNone(self.store.find_unique(PillarCheckInRow, {"id": "nope"}))

    def test_count_with_filters(self):
        for i in range(3):
            self.store.create(PillarCheckInRow, checkin_values(i))
        self.store.create(PillarCheckInRow, checkin_values(9, user_id="u2"))
        self.assertEqual(self.store.count(PillarCheckInRow, {}), 4)
        self.assertEqual(self.store.count(PillarCheckInRow, {"user_id": "u1"}), 3)

    def test_find_many_orders_newest_first(self):
        for i in (2, 0, 1):
            self.store.create(PillarCheckInRow, checkin_values(i))
        rows = self.store.find_many(PillarCheckInRow, {}, order_by="created_at", limit=2)
        self.assertEqual([row["id"] for row in rows], ["id-2", "id-1"])

        oldest = self.store.find_many(
            PillarCheckInRow, {}, order_by="created_at", descending=False
        )
        self.assertEqual([row["id"] for row in oldest], ["id-0", "id-1", "id-2"])

        latest = self.store.find_first(PillarCheckInRow, {}, order_by="created_at")
        self.assertEqual(latest["id"], "id-2")
        self.assertIsNone(
            self.store.find_first(PillarCheckInRow, {"user_id": "x"}, order_by="created_at")
        )

    def test_upsert_inserts_then_updates(self):
        key = {"user_id": "u1", "pillar_identifier": "sleep"}
        values = {
            "id": "score-1",
            **key,
            "score": 60.0,
            "trend": "up",
            "weekly_scores": [1, 2],
            "monthly_scores": [],
            "quick_wins": [{"title": "walk"}],
            "created_at": T0,
            "updated_at": T0,
        }
        self.store.upsert(PillarScoreRow, key, values)
        self.store.upsert(PillarScoreRow, key, dict(values, score=65.0))

        self.assertEqual(self.store.count(PillarScoreRow, {}), 1)
        row = self.store.find_unique(PillarScoreRow, key)
        self.assertEqual(row["score"], 65.0)
        self.assertEqual(row["quick_wins"], [{"title": "walk"}])

    def test_json_document_roundtrip(self):
        doc = {"userId": "u1", "demographics": {"age": 30}, "selectedGoals": ["sleep"]}
        self.store.upsert(
            OnboardingProfileRow,
            {"user_id": "u1"},
            {"user_id": "u1", "doc": doc, "completed_at": None, "created_at": T0, "updated_at": T0},
        )
        row = self.store.find_unique(OnboardingProfileRow, {"user_id": "u1"})
        self.assertEqual(row["doc"], doc)
        self.assertIsNone(row["completed_at"])


if __name__ == "__main__":
    unittest.main()
