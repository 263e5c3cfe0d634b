from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound
from app.spipuniform.modules.branding.models import Branding
from app.spipuniform.modules.branding.service import (
    BrandingPayload,
    activate_branding,
    active_branding_dict,
    branding_to_dict,
    create_branding,
    update_branding,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.validation import parse_json

bp = Blueprint("branding", __name__)


@bp.get("/branding/active")
def branding_active():
    """Public: the storefront needs this before anyone signs in."""
    return jsonify({"success": True, "data": active_branding_dict(db_session())})


@bp.get("/branding")
@require_permission("viewBranding")
def branding_list():
    s = db_session()
    rows = s.query(Branding).order_by(Branding.created_at.desc(), Branding.id.desc()).all()
    return jsonify({"success": True, "data": [branding_to_dict(b) for b in rows]})


@bp.post("/branding")
@require_permission("viewBranding")
def branding_create():
    s = db_session()
    payload = parse_json(BrandingPayload)
    b = create_branding(s, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": branding_to_dict(b)}), 201


@bp.put("/branding/<int:branding_id>")
@require_permission("viewBranding")
def branding_update(branding_id: int):
    s = db_session()
    b = s.get(Branding, branding_id)
    if not b:
        raise NotFound("Branding not found")
    payload = parse_json(BrandingPayload)
    update_branding(s, b, payload, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": branding_to_dict(b)})


@bp.post("/branding/<int:branding_id>/activate")
@require_permission("viewBranding")
def branding_activate(branding_id: int):
    s = db_session()
    b = activate_branding(s, branding_id, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": branding_to_dict(b)})
