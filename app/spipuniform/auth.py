from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from pydantic import EmailStr, Field, model_validator
from werkzeug.security import check_password_hash, generate_password_hash

from app.spipuniform.audit import record_event
from app.spipuniform.db import db_session
from app.spipuniform.errors import ApiError, Forbidden, Unauthorized, ValidationFailed
from app.spipuniform.models import PENDING_APPROVAL, REJECTED, User
from app.spipuniform.modules.user_management.service import (
    EMAIL_VERIFICATION,
    PASSWORD_RESET,
    UserCreatePayload,
    admin_exists,
    consume_token,
    get_user_by_email,
    register_user,
    send_password_reset_email,
    upgrade_first_admin,
    user_to_dict,
)
from app.spipuniform.rbac import is_admin, permissions_for, require_login
from app.spipuniform.security import ensure_csrf_token
from app.spipuniform.validation import Payload, parse_json

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


class SignInPayload(Payload):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordPayload(Payload):
    email: EmailStr


class ResetPasswordPayload(Payload):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordPayload(Payload):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or user.ban_is_active():
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _session_payload(user: User | None) -> dict:
    if not user:
        return {"user": None, "permissions": {}, "csrf_token": ensure_csrf_token()}
    return {
        "user": user_to_dict(user),
        "permissions": permissions_for(user),
        "csrf_token": ensure_csrf_token(),
    }


@bp.post("/sign-up")
def sign_up():
    s = db_session()
    payload = parse_json(UserCreatePayload)
    user, status = register_user(s, payload)
    s.commit()
    current_app.logger.info("Sign-up %s (user_id=%s status=%s)", user.email, user.id, status)
    body = {"success": True, "data": {"user": user_to_dict(user), "status": status}}
    if status == "pending_approval":
        body["message"] = "Your account is awaiting administrator approval."
    elif status == "active":
        body["message"] = "Check your inbox to verify your email address."
    return jsonify(body), 201


@bp.post("/sign-in")
def sign_in():
    ip = request.remote_addr or "unknown"
    if _check_rate_limit(ip):
        raise ApiError("Too many login attempts. Please wait 5 minutes.", status_code=429)
    _record_attempt(ip)

    s = db_session()
    payload = parse_json(SignInPayload)
    email = str(payload.email).lower()
    user = get_user_by_email(s, email)
    if not user or not check_password_hash(user.password_hash, payload.password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        raise Unauthorized("Invalid email or password")

    if user.banned and not user.ban_is_active():
        # Temporary ban has run out.
        user.banned = False
        user.ban_reason = None
        user.ban_expires = None
        record_event(s, actor=user, action="user.ban_expired", entity_type="User", entity_id=user.id)

    if user.banned:
        s.commit()
        if user.ban_reason == PENDING_APPROVAL:
            raise Forbidden("Your account is awaiting administrator approval.", code=PENDING_APPROVAL)
        if user.ban_reason == REJECTED:
            raise Forbidden("Your account application was not approved.", code=REJECTED)
        raise Forbidden(f"Your account has been banned: {user.ban_reason or 'no reason given'}", code="BANNED")

    if current_app.config.get("REQUIRE_EMAIL_VERIFICATION", True) and not user.email_verified and not is_admin(user):
        s.commit()
        raise Forbidden("Please verify your email address before signing in.", code="EMAIL_NOT_VERIFIED")

    session["user_id"] = user.id
    session.permanent = True
    _login_attempts[ip].clear()
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": True, "data": _session_payload(user)})


@bp.post("/sign-out")
def sign_out():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.get("/session")
def get_session():
    return jsonify({"success": True, "data": _session_payload(getattr(g, "current_user", None))})


@bp.get("/verify-email")
def verify_email():
    s = db_session()
    token = (request.args.get("token") or "").strip()
    if not token:
        raise ValidationFailed("Missing token")
    user = consume_token(s, token, EMAIL_VERIFICATION)
    user.email_verified = True
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.email_verified", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": True, "message": "Email verified"})


@bp.post("/forgot-password")
def forgot_password():
    s = db_session()
    payload = parse_json(ForgotPasswordPayload)
    user = get_user_by_email(s, str(payload.email))
    if user:
        send_password_reset_email(s, user)
        record_event(s, actor=None, action="auth.password_reset_requested", entity_type="User", entity_id=user.id)
        s.commit()
    # Same answer either way; no account enumeration.
    return jsonify({"success": True, "message": "If that email is registered, a reset link is on its way."})


@bp.post("/reset-password")
def reset_password():
    s = db_session()
    payload = parse_json(ResetPasswordPayload)
    user = consume_token(s, payload.token, PASSWORD_RESET)
    user.password_hash = generate_password_hash(payload.password)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": True, "message": "Password updated"})


@bp.post("/change-password")
@require_login
def change_password():
    s = db_session()
    user: User = g.current_user
    payload = parse_json(ChangePasswordPayload)
    if not check_password_hash(user.password_hash, payload.current_password):
        raise ValidationFailed("Current password is incorrect", details={"current_password": "Incorrect password"})
    user.password_hash = generate_password_hash(payload.new_password)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": True, "message": "Password changed"})


@bp.get("/admin-exists")
def get_admin_exists():
    return jsonify({"success": True, "data": {"admin_exists": admin_exists(db_session())}})


@bp.post("/upgrade-first-admin")
@require_login
def post_upgrade_first_admin():
    s = db_session()
    user = upgrade_first_admin(s, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": user_to_dict(user)})
