import logging
import threading
import unittest
from unittest.mock import MagicMock

from migration.config import Settings
from migration.read_router import (
    FALLBACK,
    PARITY_DRIFT,
    PRIMARY_FAILED,
    PRIMARY_HIT,
    SECONDARY_FAILED,
    ReadRouter,
    is_empty_result,
)


class ReadRouterTests(unittest.TestCase):
    def setUp(self):
        self.events = []
        self.router = ReadRouter(listener=self.events.append)

    def tearDown(self):
        self.router.close()

    def kinds(self):
        return [event.kind for event in self.events]

    def test_primary_hit_skips_secondary(self):
        secondary = MagicMock(return_value=["legacy"])
        result = self.router.read("timeline", {"userId": "u1"}, lambda: ["target"], secondary)
        self.assertEqual(result, ["target"])
        secondary.assert_not_called()
        self.assertEqual(self.kinds(), [PRIMARY_HIT])
        self.assertEqual(self.events[0].meta, {"userId": "u1"})

    def test_primary_error_falls_back(self):
        def primary():
            raise RuntimeError("relation does not exist")

        with self.assertLogs("migration.read_router", level="WARNING") as logs:
            result = self.router.read("timeline", {}, primary, lambda: ["legacy"])

        self.assertEqual(result, ["legacy"])
        self.assertEqual(self.kinds(), [FALLBACK])
        self.assertEqual(self.events[0].reason["name"], "RuntimeError")
        self.assertTrue(any("[READ FALLBACK]" in line for line in logs.output))

    def test_fallback_disabled_propagates_primary_error(self):
        router = ReadRouter(fallback_enabled=False, listener=self.events.append)
        self.addCleanup(router.close)
        secondary = MagicMock(return_value=["legacy"])

        def primary():
            raise RuntimeError("down")

        with self.assertRaises(RuntimeError):
            router.read("timeline", {}, primary, secondary)
        secondary.assert_not_called()
        self.assertEqual(self.kinds(), [PRIMARY_FAILED])

    def test_secondary_error_after_primary_error_propagates(self):
        def primary():
            raise RuntimeError("primary down")

        def secondary():
            raise ValueError("secondary down")

        with self.assertRaises(ValueError):
            self.router.read("timeline", {}, primary, secondary)

    def test_empty_primary_uses_non_empty_secondary(self):
        result = self.router.read("timeline", {}, lambda: [], lambda: ["legacy"])
        self.assertEqual(result, ["legacy"])
        self.assertEqual(self.kinds(), [FALLBACK])
        self.assertEqual(self.events[0].reason, {"name": "primary_empty"})

    def test_empty_primary_and_empty_secondary_returns_primary(self):
        primary_result = []
        result = self.router.read("timeline", {}, lambda: primary_result, lambda: None)
        self.assertIs(result, primary_result)
        self.assertEqual(self.kinds(), [PRIMARY_HIT])

    def test_empty_primary_survives_secondary_failure(self):
        def secondary():
            raise ConnectionError("legacy gone")

        result = self.router.read("profile", {}, lambda: None, secondary)
        self.assertIsNone(result)
        self.assertEqual(self.kinds(), [SECONDARY_FAILED])

    def test_empty_primary_without_fallback_on_empty(self):
        router = ReadRouter(fallback_on_empty=False, listener=self.events.append)
        self.addCleanup(router.close)
        secondary = MagicMock(return_value=["legacy"])
        self.assertEqual(router.read("timeline", {}, lambda: [], secondary), [])
        secondary.assert_not_called()

    def test_slow_primary_times_out_and_falls_back(self):
        release = threading.Event()
        self.addCleanup(release.set)
        router = ReadRouter(timeout_seconds=0.05, listener=self.events.append)
        self.addCleanup(router.close)

        def primary():
            release.wait(2)
            return ["late"]

        result = router.read("timeline", {}, primary, lambda: ["legacy"])
        self.assertEqual(result, ["legacy"])
        self.assertEqual(self.kinds(), [FALLBACK])
        self.assertEqual(self.events[0].reason["name"], "ReadTimeout")


    def test_hung_primaries_do_not_starve_secondary(self):
        release = threading.Event()
        self.addCleanup(release.set)
        router = ReadRouter(timeout_seconds=0.05, max_workers=2, listener=self.events.append)
        self.addCleanup(router.close)

        def primary():
            release.wait(5)
            return ["late"]

        results = [router.read("timeline", {}, primary, lambda: ["legacy"]) for _ in range(5)]

        self.assertEqual(results, [["legacy"]] * 5)
        self.assertEqual(self.kinds(), [FALLBACK] * 5)

    def test_primary_hit_log_level(self):
        router = ReadRouter(hit_log_level=logging.INFO)
        self.addCleanup(router.close)
        with self.assertLogs("migration.read_router", level="INFO") as logs:
            router.read("timeline", {"userId": "u1"}, lambda: ["target"], lambda: [])
        self.assertTrue(any("[READ SWITCH]" in line for line in logs.output))
    def test_runtime_parity_reports_cardinality_drift(self):
        router = ReadRouter(runtime_parity=True, listener=self.events.append)
        self.addCleanup(router.close)
        result = router.read("timeline", {}, lambda: [1], lambda: [1, 2])
        self.assertEqual(result, [1])
        self.assertEqual(self.kinds(), [PRIMARY_HIT, PARITY_DRIFT])
        self.assertEqual(self.events[1].reason, {"primary": 1, "secondary": 2})

    def test_runtime_parity_quiet_when_aligned(self):
        router = ReadRouter(runtime_parity=True, listener=self.events.append)
        self.addCleanup(router.close)
        router.read("timeline", {}, lambda: [1, 2], lambda: [2, 1])
        self.assertEqual(self.kinds(), [PRIMARY_HIT])

    def test_runs_inline_without_timeout(self):
        router = ReadRouter(timeout_seconds=None)
        self.assertEqual(router.read("x", None, lambda: {"a": 1}, lambda: {}), {"a": 1})
        router.close()

    def test_is_empty_result(self):
        self.assertTrue(is_empty_result(None))
        self.assertTrue(is_empty_result([]))
        self.assertTrue(is_empty_result({}))
        self.assertFalse(is_empty_result([0]))
        self.assertFalse(is_empty_result(0))


class RouterSettingsTests(unittest.TestCase):
    def test_fallback_defaults_on_in_development_only(self):
        dev = ReadRouter.from_settings(Settings(_env_file=None, app_env="development"))
        prod = ReadRouter.from_settings(Settings(_env_file=None, app_env="production"))
        self.addCleanup(dev.close)
        self.addCleanup(prod.close)
        self.assertTrue(dev.fallback_enabled)
        self.assertFalse(prod.fallback_enabled)

    def test_kill_switch_overrides_environment(self):
        router = ReadRouter.from_settings(
            Settings(_env_file=None, app_env="production", legacy_fallback_enabled=True),
            runtime_parity=True,
        )
        self.addCleanup(router.close)
        self.assertTrue(router.fallback_enabled)
        self.assertTrue(router.runtime_parity)

    def test_primary_hits_logged_at_info_in_development(self):
        dev = ReadRouter.from_settings(Settings(_env_file=None, app_env="development"))
        prod = ReadRouter.from_settings(Settings(_env_file=None, app_env="production"))
        self.addCleanup(dev.close)
        self.addCleanup(prod.close)
        self.assertEqual(dev.hit_log_level, logging.INFO)
        self.assertEqual(prod.hit_log_level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
