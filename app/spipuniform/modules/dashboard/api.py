from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.spipuniform.audit import event_to_dict, events_query
from app.spipuniform.db import db_session
from app.spipuniform.models import PENDING_APPROVAL, User
from app.spipuniform.modules.listings.models import Listing
from app.spipuniform.modules.schools.models import School
from app.spipuniform.modules.shops.models import Shop
from app.spipuniform.modules.transactions.models import Transaction
from app.spipuniform.modules.user_management.service import pending_approval_count
from app.spipuniform.rbac import require_admin, require_permission
from app.spipuniform.utils import arg_int, page_params, paginate

bp = Blueprint("dashboard", __name__)


def _count(s, col, *criteria) -> int:
    return int(s.query(func.count(col)).filter(*criteria).scalar() or 0)


def dashboard_stats(s, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    week_ago = now - timedelta(days=7)
    return {
        "users": _count(s, User.id),
        "new_users_7d": _count(s, User.id, User.created_at >= week_ago),
        "pending_approvals": pending_approval_count(s),
        # Pending signups are stored as bans; only count real ones here.
        "banned_users": _count(s, User.id, User.banned.is_(True), or_(User.ban_reason.is_(None), User.ban_reason != PENDING_APPROVAL)),
        "active_listings": _count(s, Listing.id, Listing.status == "active"),
        "sold_listings": _count(s, Listing.id, Listing.status == "sold"),
        "schools": _count(s, School.id, School.is_active.is_(True)),
        "shops": _count(s, Shop.id),
        "open_transactions": _count(s, Transaction.id, Transaction.status == "pending"),
        "completed_transactions": _count(s, Transaction.id, Transaction.status == "completed"),
    }


@bp.get("/dashboard-stats")
@require_permission("viewDashboard")
def stats():
    return jsonify({"success": True, "data": dashboard_stats(db_session())})


@bp.get("/audit-events")
@require_admin
def audit_events():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=("created_at",), default_limit=50)
    q = events_query(
        s,
        action_prefix=(request.args.get("action") or "").strip(),
        entity_type=(request.args.get("entity_type") or "").strip(),
        entity_id=(request.args.get("entity_id") or "").strip(),
        actor_user_id=arg_int("actor_user_id"),
    )
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [event_to_dict(ev) for ev in rows], "pagination": pagination})
