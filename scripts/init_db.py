"""
Idempotent seed: default roles, the auth settings row, Irish counties and
(optionally) an admin user from ADMIN_EMAIL / ADMIN_PASSWORD.

Does NOT overwrite an existing user's password or an existing role's permissions.

Usage:
  python scripts/init_db.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.models import User
from app.spipuniform.modules.geography.service import seed_irish_counties
from app.spipuniform.modules.user_management.models import AuthSettings
from app.spipuniform.modules.user_management.service import get_auth_settings, get_user_by_email, seed_default_roles
from app.spipuniform.rbac import ADMIN_ROLE
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or ""
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///spipuniform.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        created_roles = seed_default_roles(s)
        print(f"Roles: {len(created_roles)} created", flush=True)

        if get_auth_settings(s) is None:
            s.add(AuthSettings(require_admin_approval=False))
            print("Auth settings: created (admin approval off)", flush=True)

        counties = seed_irish_counties(s)
        print(f"Counties: {counties} created", flush=True)

        if not admin_email:
            print("ADMIN_EMAIL not set; the first signup becomes the admin.", flush=True)
        else:
            user = get_user_by_email(s, admin_email)
            if not user:
                if not admin_password:
                    raise RuntimeError("ADMIN_PASSWORD is required to create the admin user.")
                user = User(
                    name=admin_name,
                    email=admin_email,
                    password_hash=generate_password_hash(admin_password),
                    role=ADMIN_ROLE,
                    email_verified=True,
                    banned=False,
                )
                s.add(user)
                print(f"Admin user created: {admin_email}", flush=True)
            elif (user.role or "").lower() != ADMIN_ROLE:
                user.role = ADMIN_ROLE
                print(f"Admin role attached to existing user: {admin_email}", flush=True)
            else:
                print(f"Admin user exists: {admin_email}", flush=True)

    print("Initialized database (seed_only).", flush=True)


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
