from __future__ import annotations

from flask import Blueprint, g, jsonify, request
from sqlalchemy import func, or_

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import PENDING_APPROVAL, Role, User
from app.spipuniform.modules.user_management.service import (
    ApprovalPayload,
    AuthSettingsPayload,
    BanPayload,
    RolePayload,
    UserActionPayload,
    UserCreatePayload,
    UserUpdatePayload,
    approve_user,
    auth_settings_to_dict,
    ban_user,
    create_role,
    create_user,
    delete_role,
    delete_user,
    get_auth_settings,
    pending_approval_count,
    reject_user,
    resend_verification,
    role_to_dict,
    role_user_counts,
    set_require_admin_approval,
    unban_user,
    update_role,
    update_user,
    user_to_dict,
)
from app.spipuniform.rbac import PERMISSIONS, permissions_for, require_login, require_permission
from app.spipuniform.utils import page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("user_management", __name__)

_ROLE_SORTS = {"name": Role.name, "created_at": Role.created_at, "updated_at": Role.updated_at}
_USER_SORTS = {"name": User.name, "email": User.email, "created_at": User.created_at, "updated_at": User.updated_at}


def _role_or_404(role_id: int) -> Role:
    role = db_session().get(Role, role_id)
    if not role:
        raise NotFound("Role not found")
    return role


def _user_or_404(user_id: int) -> User:
    u = db_session().get(User, user_id)
    if not u:
        raise NotFound("User not found")
    return u


# ---------- Permissions ----------
@bp.get("/permissions")
@require_permission("viewRoles")
def permissions_catalogue():
    data = [{"key": k, "group": group, "label": label} for k, (group, label) in PERMISSIONS.items()]
    return jsonify({"success": True, "data": data})


@bp.get("/my-permissions")
@require_login
def my_permissions():
    perms = permissions_for(g.current_user)
    perms["viewDashboard"] = True
    return jsonify({"success": True, "data": {"role": g.current_user.role, "permissions": perms}})


# ---------- Roles ----------
@bp.get("/roles")
@require_permission("viewRoles")
def roles_list():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=tuple(_ROLE_SORTS))
    q = s.query(Role)
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Role.name.ilike(like), Role.description.ilike(like)))
    col = _ROLE_SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), Role.id.asc())
    roles, pagination = paginate(q, params)
    counts = role_user_counts(s)
    return jsonify({
        "success": True,
        "data": [role_to_dict(r, counts.get(r.name, 0)) for r in roles],
        "pagination": pagination,
    })


@bp.post("/roles")
@require_permission("manageRoles")
def roles_create():
    s = db_session()
    role = create_role(s, parse_json(RolePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": role_to_dict(role, 0)}), 201


@bp.get("/roles/<int:role_id>")
@require_permission("viewRoles")
def roles_detail(role_id: int):
    s = db_session()
    role = _role_or_404(role_id)
    count = s.query(func.count(User.id)).filter(User.role == role.name).scalar() or 0
    return jsonify({"success": True, "data": role_to_dict(role, count)})


@bp.put("/roles/<int:role_id>")
@require_permission("manageRoles")
def roles_update(role_id: int):
    s = db_session()
    role = _role_or_404(role_id)
    update_role(s, role, parse_json(RolePayload), g.current_user)
    s.commit()
    count = s.query(func.count(User.id)).filter(User.role == role.name).scalar() or 0
    return jsonify({"success": True, "data": role_to_dict(role, count)})


@bp.delete("/roles/<int:role_id>")
@require_permission("manageRoles")
def roles_delete(role_id: int):
    s = db_session()
    role = _role_or_404(role_id)
    delete_role(s, role, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Role deleted"})


# ---------- Users ----------
@bp.get("/users")
@require_permission("viewUsers")
def users_list():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=tuple(_USER_SORTS))
    q = s.query(User)

    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))

    role_filter = (request.args.get("role") or "").strip()
    if role_filter:
        q = q.filter(User.role == role_filter)

    moderation = (request.args.get("moderation") or "").strip()
    if moderation == "pending":
        q = q.filter(User.banned.is_(True), User.ban_reason == PENDING_APPROVAL)
    elif moderation == "banned":
        q = q.filter(User.banned.is_(True), or_(User.ban_reason.is_(None), User.ban_reason != PENDING_APPROVAL))
    elif moderation == "active":
        q = q.filter(User.banned.is_(False))
    elif moderation:
        raise ValidationFailed("Invalid moderation filter. Must be one of: pending, banned, active")

    col = _USER_SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), User.id.asc())
    users, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [user_to_dict(u) for u in users], "pagination": pagination})


@bp.post("/users")
@require_permission("manageUsers")
def users_create():
    s = db_session()
    u = create_user(s, parse_json(UserCreatePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(u)}), 201


@bp.get("/users/<int:user_id>")
@require_permission("viewUsers")
def users_detail(user_id: int):
    return jsonify({"success": True, "data": user_to_dict(_user_or_404(user_id))})


@bp.put("/users/<int:user_id>")
@require_permission("manageUsers")
def users_update(user_id: int):
    s = db_session()
    u = _user_or_404(user_id)
    update_user(s, u, parse_json(UserUpdatePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(u)})


@bp.delete("/users/<int:user_id>")
@require_permission("deleteUsers")
def users_delete(user_id: int):
    s = db_session()
    u = _user_or_404(user_id)
    delete_user(s, u, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "User deleted"})


@bp.post("/users/<int:user_id>/ban")
@require_permission("banUsers")
def users_ban(user_id: int):
    s = db_session()
    u = _user_or_404(user_id)
    ban_user(s, u, parse_json(BanPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(u)})


@bp.post("/users/<int:user_id>/unban")
@require_permission("banUsers")
def users_unban(user_id: int):
    s = db_session()
    u = _user_or_404(user_id)
    unban_user(s, u, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(u)})


@bp.post("/users-actions")
@require_permission("manageUsers")
def users_actions():
    s = db_session()
    payload = parse_json(UserActionPayload)
    u = resend_verification(s, payload.user_id, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": f"Verification email sent to {u.email}"})


# ---------- Approval ----------
@bp.get("/users-approval")
@require_permission("manageUsers")
def approval_count():
    return jsonify({"success": True, "data": {"pending": pending_approval_count(db_session())}})


@bp.post("/users-approval")
@require_permission("manageUsers")
def approval_action():
    s = db_session()
    payload = parse_json(ApprovalPayload)
    if payload.action == "approve":
        u = approve_user(s, payload.user_id, g.current_user)
    else:
        u = reject_user(s, payload.user_id, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(u)})


# ---------- Auth settings ----------
@bp.get("/auth-settings/flag")
def auth_settings_flag():
    """Public: the signup form shows a notice when approval is required."""
    row = get_auth_settings(db_session())
    return jsonify({"success": True, "data": {"require_admin_approval": bool(row and row.require_admin_approval)}})


@bp.get("/auth-settings")
@require_permission("viewDashboardSettings")
def auth_settings_get():
    return jsonify({"success": True, "data": auth_settings_to_dict(get_auth_settings(db_session()))})


@bp.post("/auth-settings")
@require_permission("viewDashboardSettings")
def auth_settings_set():
    s = db_session()
    payload = parse_json(AuthSettingsPayload)
    row = set_require_admin_approval(s, payload.require_admin_approval, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": auth_settings_to_dict(row)})
