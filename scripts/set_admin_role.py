#!/usr/bin/env python3
"""Give an existing user the admin role (idempotent).

Usage:
  python scripts/set_admin_role.py --email someone@example.com
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.spipuniform.audit import record_event
from app.spipuniform.modules.user_management.service import get_role_by_name, get_user_by_email
from app.spipuniform.rbac import ADMIN_ROLE
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email to promote")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    with script_session(args.database_url) as s:
        user = get_user_by_email(s, args.email)
        if not user:
            print(f"User not found: {args.email}")
            sys.exit(1)
        if not get_role_by_name(s, ADMIN_ROLE):
            print("Admin role not found. Run python scripts/init_db.py first.")
            sys.exit(1)
        if (user.role or "").lower() == ADMIN_ROLE:
            print(f"User already has admin role: {args.email}")
            return
        previous = user.role
        user.role = ADMIN_ROLE
        user.updated_at = datetime.utcnow()
        record_event(s, actor=None, action="user.role_change", entity_type="User", entity_id=user.id, reason="set_admin_role script", metadata={"from": previous, "to": ADMIN_ROLE})
        print(f"Admin role set for {args.email} (was {previous or 'none'})")


if __name__ == "__main__":
    main()
