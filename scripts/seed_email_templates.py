#!/usr/bin/env python3
"""Seed the account-lifecycle email templates (approval, welcome, verification, reset).

Usage:
  python scripts/seed_email_templates.py
  python scripts/seed_email_templates.py --overwrite   # reset edited templates to the defaults
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.modules.email.defaults import DEFAULT_TEMPLATES, seed_default_templates
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--overwrite", action="store_true", help="Replace existing templates with the same name")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    with script_session(args.database_url) as s:
        counts = seed_default_templates(s, overwrite=args.overwrite)

    print(f"Templates: {', '.join(t['name'] for t in DEFAULT_TEMPLATES)}", flush=True)
    print(f"created={counts['created']} updated={counts['updated']} skipped={counts['skipped']}", flush=True)


if __name__ == "__main__":
    main()
