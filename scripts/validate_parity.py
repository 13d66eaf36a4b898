"""
Parity check for any migrated entity type (all of them by default).
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from migration.cli import run_validate_cli
from migration.mappings import ENTITY_SPECS


def main() -> int:
    return run_validate_cli(
        list(ENTITY_SPECS),
        description="Validate parity between the legacy and target stores",
        entity_choice=True,
    )


if __name__ == "__main__":
    raise SystemExit(main())
