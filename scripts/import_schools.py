"""
Import schools from a CSV export (Department of Education style columns).

Rows are matched on external id (roll number), else name + county; matches are updated.

Usage:
  python scripts/import_schools.py --csv schools.csv
  python scripts/import_schools.py --csv post_primary.csv --default-level secondary
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.modules.schools.csv_import import parse_schools_csv
from app.spipuniform.modules.schools.service import import_school_rows
from scripts._db_utils import script_session


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--csv", required=True, help="Path to the schools CSV file")
    ap.add_argument("--default-level", default="primary", choices=["primary", "secondary", "mixed"])
    ap.add_argument("--database-url", default=None)
    args = ap.parse_args()

    path = Path(args.csv)
    if not path.exists():
        print(f"File not found: {path}", flush=True)
        return 1

    rows, errors = parse_schools_csv(path.read_bytes(), default_level=args.default_level)
    print(f"Parsed {len(rows)} rows ({len(errors)} rejected)", flush=True)

    with script_session(args.database_url) as s:
        summary = import_school_rows(s, rows, errors)

    print(f"Created: {summary.created}  Updated: {summary.updated}  Errors: {len(summary.errors)}", flush=True)
    for e in summary.errors[:50]:
        print(f"  row {e.row_number}: {e.message}", flush=True)
    if len(summary.errors) > 50:
        print(f"  ... {len(summary.errors) - 50} more", flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
