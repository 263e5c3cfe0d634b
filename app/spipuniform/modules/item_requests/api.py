from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import Blueprint, g, jsonify, request

from app.spipuniform.db import db_session
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.modules.item_requests.models import REQUEST_STATUSES, ItemRequest
from app.spipuniform.modules.item_requests.service import (
    SORTS,
    RequestPayload,
    create_request,
    delete_request,
    get_request_for_owner,
    get_visible_request,
    match_count,
    own_requests_query,
    potential_matches,
    request_to_dict,
    search_requests_query,
    update_request,
)
from app.spipuniform.rbac import is_admin, require_permission
from app.spipuniform.utils import arg_bool, arg_int, page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("item_requests", __name__)


def _arg_decimal(name: str) -> Decimal | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ValidationFailed(f"Query parameter '{name}' must be a number.") from e
    if not value.is_finite() or value < 0:
        raise ValidationFailed(f"Query parameter '{name}' must be a non-negative number.")
    return value


def _arg_status() -> str | None:
    status = (request.args.get("status") or "").strip()
    if status and status not in REQUEST_STATUSES:
        raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(REQUEST_STATUSES)}")
    return status or None


@bp.get("/requests")
def requests_search():
    """Public board of open requests; signed-in users don't see their own unless include_own."""
    s = db_session()
    params = page_params(default_sort="newest", allowed_sorts=tuple(SORTS), default_limit=20)
    viewer = getattr(g, "current_user", None)
    q = search_requests_query(
        s,
        viewer=viewer,
        q=(request.args.get("q") or "").strip(),
        status=_arg_status(),
        product_type_id=arg_int("product_type_id"),
        category_id=arg_int("category_id"),
        school_id=arg_int("school_id"),
        locality_id=arg_int("locality_id"),
        county_id=arg_int("county_id"),
        min_price=_arg_decimal("min_price"),
        max_price=_arg_decimal("max_price"),
        include_own=bool(arg_bool("include_own")),
        sort=params.sort_by,
    )
    rows, pagination = paginate(q, params)
    data = [request_to_dict(r, viewer=viewer, match_count=match_count(s, r)) for r in rows]
    return jsonify({"success": True, "data": data, "pagination": pagination})


@bp.get("/requests/mine")
@require_permission("viewUserRequests")
def requests_mine():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=("created_at",), default_limit=20)
    rows, pagination = paginate(own_requests_query(s, g.current_user, status=_arg_status()), params)
    data = [request_to_dict(r, viewer=g.current_user, match_count=match_count(s, r)) for r in rows]
    return jsonify({"success": True, "data": data, "pagination": pagination})


@bp.post("/requests")
@require_permission("viewUserRequests")
def requests_create():
    s = db_session()
    r = create_request(s, parse_json(RequestPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": request_to_dict(r, viewer=g.current_user), "message": "Request created successfully"}), 201


@bp.get("/requests/<int:request_id>")
def requests_detail(request_id: int):
    """Owners also get the live listings that currently satisfy the request."""
    s = db_session()
    viewer = getattr(g, "current_user", None)
    r = get_visible_request(s, request_id, viewer)
    is_owner = viewer is not None and viewer.id == r.user_id
    data = request_to_dict(r, viewer=viewer, match_count=match_count(s, r))
    data["potential_matches"] = potential_matches(s, r) if is_owner or is_admin(viewer) else []
    return jsonify({"success": True, "data": data, "is_owner": is_owner})


@bp.put("/requests/<int:request_id>")
@require_permission("viewUserRequests")
def requests_update(request_id: int):
    s = db_session()
    r = get_request_for_owner(s, request_id, g.current_user)
    update_request(s, r, parse_json(RequestPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": request_to_dict(r, viewer=g.current_user)})


@bp.delete("/requests/<int:request_id>")
@require_permission("viewUserRequests")
def requests_delete(request_id: int):
    s = db_session()
    r = get_request_for_owner(s, request_id, g.current_user)
    delete_request(s, r, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Request deleted successfully"})


# ---------- Moderation ----------
@bp.get("/admin/requests")
@require_permission("viewRequests")
def requests_admin_list():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=("created_at",), default_limit=20)
    q = s.query(ItemRequest)
    status = _arg_status()
    if status:
        q = q.filter(ItemRequest.status == status)
    user_id = arg_int("user_id")
    if user_id:
        q = q.filter(ItemRequest.user_id == user_id)
    q = q.order_by(ItemRequest.created_at.desc(), ItemRequest.id.desc())
    rows, pagination = paginate(q, params)
    return jsonify(
        {"success": True, "data": [request_to_dict(r, viewer=g.current_user) for r in rows], "pagination": pagination}
    )
