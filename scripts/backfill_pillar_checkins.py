"""
Backfill pillar check-ins and pillar scores from Firestore into Postgres.

Check-ins are keyed by an id derived from the Firestore document id; scores
are keyed by (user, pillar). Both skip rows that already exist unless
--on-existing overwrite is passed.
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
        ["pillar_check_in", "pillar_score"],
        description="Backfill pillar check-ins and scores into the target store",
        subsets={"--checkins-only": "pillar_check_in", "--scores-only": "pillar_score"},
        subtype_flag="--pillar",
    )


if __name__ == "__main__":
    raise SystemExit(main())
