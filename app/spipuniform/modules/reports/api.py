from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.spipuniform.db import db_session
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.modules.reports.models import REPORT_STATUSES
from app.spipuniform.modules.reports.service import (
    ReportPayload,
    ReportUpdatePayload,
    create_report,
    handle_report,
    report_to_dict,
    reports_query,
)
from app.spipuniform.rbac import require_login, require_permission
from app.spipuniform.utils import arg_int
from app.spipuniform.validation import parse_json

bp = Blueprint("reports", __name__)


@bp.get("/reports")
@require_permission("viewDashboardReports")
def reports_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    if status and status not in REPORT_STATUSES:
        raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(REPORT_STATUSES)}")
    limit = min(max(arg_int("limit", 50), 1), 100)
    offset = max(arg_int("offset", 0), 0)
    q = reports_query(s, status=status or None)
    total = q.order_by(None).count()
    rows = q.offset(offset).limit(limit).all()
    return jsonify(
        {
            "success": True,
            "data": [report_to_dict(r) for r in rows],
            "pagination": {"limit": limit, "offset": offset, "total": total},
        }
    )


@bp.post("/reports")
@require_login
def reports_create():
    s = db_session()
    r = create_report(s, parse_json(ReportPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": report_to_dict(r), "message": "Report submitted successfully"}), 201


@bp.put("/reports/<int:report_id>")
@require_permission("viewDashboardReports")
def reports_update(report_id: int):
    s = db_session()
    r = handle_report(s, report_id, parse_json(ReportUpdatePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": report_to_dict(r), "message": "Report updated successfully"})
