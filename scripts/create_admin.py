#!/usr/bin/env python3
"""Create an admin user (prompts for anything not passed as a flag).

Usage:
  python scripts/create_admin.py --email admin@example.com --name "Site Admin"
  python scripts/create_admin.py            # interactive
"""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.errors import ApiError
from app.spipuniform.modules.user_management.service import UserCreatePayload, create_user, seed_default_roles
from app.spipuniform.rbac import ADMIN_ROLE
from app.spipuniform.validation import parse_payload
from scripts._db_utils import script_session


def _ask(label: str, current: str | None) -> str:
    if current:
        return current.strip()
    return input(f"{label}: ").strip()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email")
    parser.add_argument("--name")
    parser.add_argument("--password", help="Omit to be prompted (recommended)")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    email = _ask("Email", args.email)
    name = _ask("Name", args.name)
    password = args.password or getpass.getpass("Password (min 8 chars): ")

    try:
        with script_session(args.database_url) as s:
            seed_default_roles(s)
            payload = parse_payload(UserCreatePayload, {"name": name, "email": email, "password": password, "email_verified": True})
            u = create_user(s, payload, None, role=ADMIN_ROLE)
            print(f"Admin created: {u.email} (id={u.id})", flush=True)
    except ApiError as e:
        print(f"ERROR: {e.message}", flush=True)
        for field, msg in (e.details or {}).items():
            print(f"  {field}: {msg}", flush=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
