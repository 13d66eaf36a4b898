"""
Backfill onboarding profiles from Firestore into Postgres (one row per user).
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
        ["onboarding_profile"],
        description="Backfill onboarding profiles into the target store",
    )


if __name__ == "__main__":
    raise SystemExit(main())
