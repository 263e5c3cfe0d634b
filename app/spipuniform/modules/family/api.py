from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.spipuniform.db import db_session
from app.spipuniform.modules.family.service import (
    FamilyMemberPayload,
    create_family_member,
    delete_family_member,
    family_member_to_dict,
    get_family_member,
    list_family_members,
    update_family_member,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.utils import arg_bool
from app.spipuniform.validation import parse_json

bp = Blueprint("family", __name__)


@bp.get("/profiles/family-members")
@require_permission("viewUserFamilyManagement")
def family_members_list():
    s = db_session()
    include_inactive = arg_bool("include_inactive") is not False
    rows = list_family_members(s, g.current_user, include_inactive=include_inactive)
    return jsonify({"success": True, "data": [family_member_to_dict(m) for m in rows]})


@bp.post("/profiles/family-members")
@require_permission("viewUserFamilyManagement")
def family_members_create():
    s = db_session()
    m = create_family_member(s, parse_json(FamilyMemberPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": family_member_to_dict(m)}), 201


@bp.get("/profiles/family-members/<int:member_id>")
@require_permission("viewUserFamilyManagement")
def family_members_detail(member_id: int):
    s = db_session()
    return jsonify({"success": True, "data": family_member_to_dict(get_family_member(s, member_id, g.current_user))})


@bp.put("/profiles/family-members/<int:member_id>")
@require_permission("viewUserFamilyManagement")
def family_members_update(member_id: int):
    s = db_session()
    m = get_family_member(s, member_id, g.current_user)
    update_family_member(s, m, parse_json(FamilyMemberPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": family_member_to_dict(m)})


@bp.delete("/profiles/family-members/<int:member_id>")
@require_permission("viewUserFamilyManagement")
def family_members_delete(member_id: int):
    s = db_session()
    m = get_family_member(s, member_id, g.current_user)
    delete_family_member(s, m, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Family member deleted successfully"})
