"""
Backfill action plans from Firestore into Postgres.
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
        ["action_plan"],
        description="Backfill action plans into the target store",
        subtype_flag="--pillar",
    )


if __name__ == "__main__":
    raise SystemExit(main())
