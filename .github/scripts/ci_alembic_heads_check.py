"""CI gate: the Alembic migration graph must be a single linear chain.

Expected state:
  One root (001, the initial session schema) and one head.

A new migration MUST chain off the current head. Two heads means two
migrations were written against the same parent; merge or re-parent them.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

# Alembic needs the api directory on sys.path and the alembic.ini location.
api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

EXPECTED_ROOTS = {"001"}


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())

    if len(heads) != 1:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected exactly one head, found {len(heads)}:")
        for h in sorted(heads):
            print(f"    - {h}")
        print()
        print("  Fix: set down_revision of the newer migration to the other head.")
        return 1

    revisions = list(script.walk_revisions())
    roots = {r.revision for r in revisions if r.down_revision is None}

    if roots != EXPECTED_ROOTS:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected roots: {sorted(EXPECTED_ROOTS)}")
        print(f"  Actual roots:   {sorted(roots)}")
        print()
        print("  Fix: new migrations must chain off the existing head, not use down_revision = None.")
        return 1

    print(f"Migration integrity check: OK (head {next(iter(heads))}, {len(revisions)} total)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
