"""
Fetch towns/villages/hamlets from OpenStreetMap (Overpass) and store them as localities.

Counties are seeded first if missing. Existing localities are kept (case-insensitive match).

Usage:
  python scripts/populate_localities_osm.py
  python scripts/populate_localities_osm.py --county Cork --county Kerry
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.modules.geography.models import County
from app.spipuniform.modules.geography.overpass_client import DEFAULT_ENDPOINT, OverpassClient, OverpassError
from app.spipuniform.modules.geography.service import fetch_localities_for_county, get_county_by_name, seed_irish_counties
from scripts._db_utils import script_session


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--county", action="append", default=[], help="County name (repeatable). Default: all counties.")
    ap.add_argument("--database-url", default=None)
    args = ap.parse_args()

    client = OverpassClient(
        endpoint=(os.environ.get("OVERPASS_ENDPOINT") or DEFAULT_ENDPOINT).strip(),
        timeout_seconds=int(os.environ.get("OVERPASS_TIMEOUT") or 25),
    )

    failed = 0
    with script_session(args.database_url) as s:
        seeded = seed_irish_counties(s)
        if seeded:
            print(f"Seeded {seeded} counties", flush=True)

        if args.county:
            counties = []
            for name in args.county:
                c = get_county_by_name(s, name)
                if not c:
                    print(f"Unknown county: {name}", flush=True)
                    failed += 1
                    continue
                counties.append(c)
        else:
            counties = s.query(County).order_by(County.name.asc()).all()

        totals = {"fetched": 0, "inserted": 0, "skipped": 0}
        for county in counties:
            try:
                result = fetch_localities_for_county(s, county, client)
            except OverpassError as e:
                print(f"{county.name}: FAILED ({e})", flush=True)
                failed += 1
                continue
            # Keep what we have so far if a later county fails.
            s.commit()
            for k in totals:
                totals[k] += getattr(result, k)
            print(
                f"{county.name}: fetched={result.fetched} inserted={result.inserted} skipped={result.skipped}",
                flush=True,
            )

    print(
        f"Done. counties={len(counties)} fetched={totals['fetched']} inserted={totals['inserted']} "
        f"skipped={totals['skipped']} failed={failed}",
        flush=True,
    )
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
