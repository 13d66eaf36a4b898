"""
Check that pillar check-ins and scores agree between Firestore and Postgres.

Exits 3 when any count, recency or sampled field drifts.
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from migration.cli import run_validate_cli


def main() -> int:
    return run_validate_cli(
        ["pillar_check_in", "pillar_score"],
        description="Validate pillar check-in and score parity",
        subsets={"--checkins-only": "pillar_check_in", "--scores-only": "pillar_score"},
        subtype_flag="--pillar",
    )


if __name__ == "__main__":
    raise SystemExit(main())
