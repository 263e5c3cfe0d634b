#!/usr/bin/env python3
"""Seed the default uniform catalog (categories, product types, attributes, conditions).

Idempotent: existing rows are matched by slug/name and left alone.

Usage:
  python scripts/seed_catalog.py
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.modules.catalog.seed import seed_catalog
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    with script_session(args.database_url) as s:
        counts = seed_catalog(s)

    print("=== Catalog seed complete ===", flush=True)
    for k, v in counts.items():
        print(f"  {k}: {v} created", flush=True)


if __name__ == "__main__":
    main()
