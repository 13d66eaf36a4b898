"""
Backfill per-user core state (allowed pillars, settings, tier) from the users collection.
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from migration.cli import run_backfill_cli


def main() -> int:
    return run_backfill_cli(
        ["user_core_state"],
        description="Backfill user core state into the target store",
    )


if __name__ == "__main__":
    raise SystemExit(main())
