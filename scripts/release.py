"""
Release-phase helper (container deploys), run before the web process starts.

Steps, in order:
  1. DATABASE_URL must be set; SQLite is refused when ENV=production.
  2. alembic upgrade head.
  3. Seed roles, auth settings, counties and the admin user (scripts/init_db.py).
  4. Seed the uniform catalog and the account email templates unless
     SEED_CATALOG=0 / SEED_EMAIL_TEMPLATES=0. Both only fill in what's
     missing, so admin edits survive a redeploy.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    return db_url


def _enabled(name: str) -> bool:
    return (os.environ.get(name) or "1").strip().lower() not in ("0", "false", "no", "off")


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def seed_content(db_url: str) -> None:
    from app.spipuniform.modules.catalog.seed import seed_catalog
    from app.spipuniform.modules.email.defaults import seed_default_templates
    from scripts._db_utils import script_session

    with script_session(db_url) as s:
        if _enabled("SEED_CATALOG"):
            counts = seed_catalog(s)
            print("Catalog: " + ", ".join(f"{k}={v}" for k, v in counts.items()), flush=True)
        if _enabled("SEED_EMAIL_TEMPLATES"):
            counts = seed_default_templates(s)
            print(f"Email templates: created={counts['created']} skipped={counts['skipped']}", flush=True)


def run_release() -> None:
    db_url = _database_url()
    print("=== SpipUniform release start ===", flush=True)
    print(f"ENV={(os.environ.get('ENV') or '').strip() or '(unset)'}", flush=True)

    print("Running Alembic migrations...", flush=True)
    migrate(db_url)
    print("Migrations complete.", flush=True)

    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    seed_content(db_url)
    print("=== SpipUniform release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
