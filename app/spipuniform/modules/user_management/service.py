from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from flask import current_app, has_app_context
from pydantic import EmailStr, Field, field_validator
from sqlalchemy import func
from werkzeug.security import generate_password_hash

from app.spipuniform.audit import record_event
from app.spipuniform.errors import ApiError, Conflict, Forbidden, NotFound, ValidationFailed
from app.spipuniform.models import PENDING_APPROVAL, REJECTED, Role, User, VerificationToken
from app.spipuniform.modules.user_management.models import AuthSettings
from app.spipuniform.rbac import ADMIN_ROLE, PERMISSIONS, normalize_permissions
from app.spipuniform.security import hash_token, new_token
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"
DEFAULT_ROLE = "user"
EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"
TOKEN_TTL = {
    EMAIL_VERIFICATION: timedelta(hours=24),
    PASSWORD_RESET: timedelta(hours=1),
}

# name -> (description, color, is_system, permission keys)
DEFAULT_ROLES: dict[str, tuple[str, str, bool, tuple[str, ...]]] = {
    "admin": ("Full access to everything", "#EF4444", True, tuple(PERMISSIONS)),
    "moderator": ("Moderates users and content", "#F59E0B", True, ("viewDashboard", "viewUserManagement", "viewRequests", "viewDashboardReports")),
    "user": ("Default member role", "#6B7280", True, ("viewDashboard",)),
    "family": ("Parents buying and selling uniforms", "#3B82F6", False, ("viewDashboard", "viewUserFamilyManagement", "viewUserListings", "viewUserRequests")),
    "shop": ("Uniform shops", "#10B981", False, ("viewDashboard", "viewUserShopManagement", "viewUserListings")),
    "school_rep": ("School representatives managing stock", "#6366F1", False, ("viewDashboard", "viewUserSchoolStockManagement", "viewUserListings")),
}


# ---------- Payloads ----------
class RolePayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=50)
    description: str | None = Field(None, max_length=500)
    color: str | None = Field(None, pattern=HEX_COLOR)
    permissions: dict[str, bool] | None = None

    @field_validator("permissions")
    @classmethod
    def _known_permissions(cls, v: dict[str, bool] | None):
        if v is None:
            return v
        unknown = sorted(k for k in v if k not in PERMISSIONS)
        if unknown:
            raise ValueError(f"Unknown permission keys: {', '.join(unknown)}")
        return v


class UserCreatePayload(Payload):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    role: str | None = Field(None, max_length=50)
    email_verified: bool = False


class UserUpdatePayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    role: str | None = Field(None, max_length=50)
    banned: bool | None = None
    ban_reason: str | None = Field(None, max_length=500)
    ban_expires: datetime | None = None
    email_verified: bool | None = None


class BanPayload(Payload):
    reason: str | None = Field(None, max_length=500)
    expires_at: datetime | None = None


class ApprovalPayload(Payload):
    user_id: int
    action: Literal["approve", "reject"]


class UserActionPayload(Payload):
    action: Literal["resend-verification"]
    user_id: int


class AuthSettingsPayload(Payload):
    require_admin_approval: bool


# ---------- Serialization ----------
def role_to_dict(role: Role, user_count: int | None = None) -> dict[str, Any]:
    d = {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "color": role.color,
        "permissions": normalize_permissions(role.permissions),
        "is_system": role.is_system,
        "created_at": iso(role.created_at),
        "updated_at": iso(role.updated_at),
    }
    if user_count is not None:
        d["user_count"] = user_count
    return d


def user_to_dict(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "email_verified": u.email_verified,
        "image": u.image,
        "role": u.role,
        "banned": u.banned,
        "ban_reason": u.ban_reason,
        "ban_expires": iso(u.ban_expires),
        "pending_approval": u.is_pending_approval,
        "last_login_at": iso(u.last_login_at),
        "created_at": iso(u.created_at),
        "updated_at": iso(u.updated_at),
    }


# ---------- Roles ----------
def role_user_counts(s: "Session") -> dict[str, int]:
    rows = s.query(User.role, func.count(User.id)).filter(User.role.isnot(None)).group_by(User.role).all()
    return {name: cnt for name, cnt in rows}


def get_role_by_name(s: "Session", name: str) -> Role | None:
    return s.query(Role).filter(func.lower(Role.name) == name.strip().lower()).one_or_none()


def _require_role_exists(s: "Session", name: str) -> str:
    role = get_role_by_name(s, name)
    if not role:
        raise ValidationFailed(f'Role "{name}" does not exist', details={"role": "Unknown role"})
    return role.name


def create_role(s: "Session", payload: RolePayload, user: User | None) -> Role:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    if get_role_by_name(s, payload.name):
        raise Conflict("Role name already exists")
    now = datetime.utcnow()
    role = Role(
        name=payload.name,
        description=payload.description,
        color=payload.color or "#6B7280",
        permissions=normalize_permissions(payload.permissions),
        is_system=False,
        created_at=now,
        updated_at=now,
    )
    s.add(role)
    s.flush()
    record_event(s, actor=user, action="role.create", entity_type="Role", entity_id=role.id, metadata={"name": role.name})
    return role


def update_role(s: "Session", role: Role, payload: RolePayload, user: User) -> Role:
    data = payload.model_dump(exclude_unset=True)
    changes: dict[str, Any] = {}

    new_name = data.get("name")
    if new_name and new_name != role.name:
        existing = get_role_by_name(s, new_name)
        if existing and existing.id != role.id:
            raise Conflict("Role name already exists")
        if role.is_system:
            raise Forbidden("System roles cannot be renamed")
        old_name = role.name
        role.name = new_name
        # Users reference the role by name.
        s.query(User).filter(User.role == old_name).update({User.role: new_name}, synchronize_session="fetch")
        changes["name"] = {"old": old_name, "new": new_name}

    if "description" in data and data["description"] != role.description:
        changes["description"] = True
        role.description = data["description"]
    if data.get("color") and data["color"] != role.color:
        changes["color"] = {"old": role.color, "new": data["color"]}
        role.color = data["color"]
    if data.get("permissions") is not None:
        merged = normalize_permissions({**normalize_permissions(role.permissions), **data["permissions"]})
        if merged != normalize_permissions(role.permissions):
            changes["permissions"] = sorted(k for k, v in merged.items() if v)
        role.permissions = merged

    role.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="role.edit", entity_type="Role", entity_id=role.id, metadata={"name": role.name, "changes": changes})
    return role


def delete_role(s: "Session", role: Role, user: User) -> None:
    if role.is_system:
        raise Forbidden("System roles cannot be deleted")
    assigned = s.query(func.count(User.id)).filter(User.role == role.name).scalar() or 0
    if assigned:
        raise Conflict(
            f'Cannot delete role "{role.name}" - it is assigned to {assigned} user(s). Please reassign users first.',
            details={"user_count": assigned},
        )
    record_event(s, actor=user, action="role.delete", entity_type="Role", entity_id=role.id, metadata={"name": role.name})
    s.delete(role)


def seed_default_roles(s: "Session") -> list[Role]:
    """Idempotent; never overwrites permissions of an existing role."""
    created = []
    for name, (description, color, is_system, keys) in DEFAULT_ROLES.items():
        if get_role_by_name(s, name):
            continue
        role = Role(
            name=name,
            description=description,
            color=color,
            is_system=is_system,
            permissions={k: (k in keys) for k in PERMISSIONS},
        )
        s.add(role)
        created.append(role)
    s.flush()
    return created


# ---------- Users ----------
def get_user_by_email(s: "Session", email: str) -> User | None:
    return s.query(User).filter(func.lower(User.email) == email.strip().lower()).one_or_none()


def admin_exists(s: "Session") -> bool:
    return s.query(User.id).filter(func.lower(User.role) == ADMIN_ROLE).first() is not None


def create_user(s: "Session", payload: UserCreatePayload, actor: User | None, *, role: str | None = None) -> User:
    email = str(payload.email).strip().lower()
    if get_user_by_email(s, email):
        raise Conflict("A user with this email already exists", details={"email": "Email already registered"})
    role_name = _require_role_exists(s, role or payload.role or DEFAULT_ROLE)
    now = datetime.utcnow()
    u = User(
        name=payload.name,
        email=email,
        password_hash=generate_password_hash(payload.password),
        role=role_name,
        email_verified=payload.email_verified,
        banned=False,
        created_at=now,
        updated_at=now,
    )
    s.add(u)
    s.flush()
    record_event(s, actor=actor or u, action="user.create", entity_type="User", entity_id=u.id, metadata={"email": u.email, "role": u.role})
    return u


def update_user(s: "Session", u: User, payload: UserUpdatePayload, actor: User) -> User:
    data = payload.model_dump(exclude_unset=True)
    changes: dict[str, Any] = {}

    if data.get("name") and data["name"] != u.name:
        changes["name"] = {"old": u.name, "new": data["name"]}
        u.name = data["name"]
    if data.get("email"):
        new_email = str(data["email"]).strip().lower()
        if new_email != u.email:
            other = get_user_by_email(s, new_email)
            if other and other.id != u.id:
                raise Conflict("A user with this email already exists", details={"email": "Email already registered"})
            changes["email"] = {"old": u.email, "new": new_email}
            u.email = new_email
            u.email_verified = False
    if data.get("role") and data["role"] != u.role:
        if u.id == actor.id:
            raise Forbidden("You cannot change your own role")
        new_role = _require_role_exists(s, data["role"])
        changes["role"] = {"old": u.role, "new": new_role}
        u.role = new_role
    if data.get("email_verified") is not None:
        u.email_verified = data["email_verified"]
    if data.get("banned") is not None and data["banned"] != u.banned:
        if u.id == actor.id and data["banned"]:
            raise Forbidden("You cannot ban yourself")
        changes["banned"] = {"old": u.banned, "new": data["banned"]}
        u.banned = data["banned"]
        if not u.banned:
            u.ban_reason = None
            u.ban_expires = None
    if u.banned:
        if "ban_reason" in data:
            u.ban_reason = data["ban_reason"]
        if "ban_expires" in data:
            u.ban_expires = data["ban_expires"]

    u.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.edit", entity_type="User", entity_id=u.id, metadata={"email": u.email, "changes": changes})
    return u


def ban_user(s: "Session", u: User, payload: BanPayload, actor: User) -> User:
    if u.id == actor.id:
        raise Forbidden("You cannot ban yourself")
    u.banned = True
    u.ban_reason = payload.reason or "Banned by administrator"
    u.ban_expires = payload.expires_at
    u.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.ban", entity_type="User", entity_id=u.id, reason=u.ban_reason, metadata={"expires_at": iso(u.ban_expires)})
    return u


def unban_user(s: "Session", u: User, actor: User) -> User:
    u.banned = False
    u.ban_reason = None
    u.ban_expires = None
    u.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.unban", entity_type="User", entity_id=u.id)
    return u


def delete_user(s: "Session", u: User, actor: User) -> None:
    if u.id == actor.id:
        raise Forbidden("You cannot delete your own account")
    record_event(s, actor=actor, action="user.delete", entity_type="User", entity_id=u.id, metadata={"email": u.email})
    s.delete(u)


# ---------- Auth settings ----------
def get_auth_settings(s: "Session") -> AuthSettings | None:
    return s.query(AuthSettings).order_by(AuthSettings.updated_at.desc(), AuthSettings.id.desc()).first()


def require_admin_approval(s: "Session") -> bool:
    row = get_auth_settings(s)
    return bool(row and row.require_admin_approval)


def set_require_admin_approval(s: "Session", value: bool, actor: User | None) -> AuthSettings:
    row = get_auth_settings(s)
    now = datetime.utcnow()
    if row is None:
        row = AuthSettings(require_admin_approval=value, created_at=now)
        s.add(row)
    row.require_admin_approval = value
    row.updated_at = now
    row.updated_by_user_id = actor.id if actor else None
    s.flush()
    record_event(s, actor=actor, action="auth_settings.edit", entity_type="AuthSettings", entity_id=row.id, metadata={"require_admin_approval": value})
    return row


def auth_settings_to_dict(row: AuthSettings | None) -> dict[str, Any]:
    return {
        "require_admin_approval": bool(row and row.require_admin_approval),
        "updated_at": iso(row.updated_at) if row else None,
    }


# ---------- Tokens ----------
def issue_token(s: "Session", u: User, purpose: str) -> str:
    # Older unused tokens for the same purpose stop working.
    now = datetime.utcnow()
    for old in s.query(VerificationToken).filter(
        VerificationToken.user_id == u.id,
        VerificationToken.purpose == purpose,
        VerificationToken.used_at.is_(None),
    ).all():
        old.used_at = now
    raw, digest = new_token()
    s.add(VerificationToken(user_id=u.id, purpose=purpose, token_hash=digest, expires_at=now + TOKEN_TTL[purpose], created_at=now))
    s.flush()
    return raw


def consume_token(s: "Session", raw: str, purpose: str) -> User:
    tok = (
        s.query(VerificationToken)
        .filter(VerificationToken.token_hash == hash_token(raw or ""), VerificationToken.purpose == purpose)
        .one_or_none()
    )
    if not tok or tok.used_at is not None or tok.expires_at < datetime.utcnow():
        raise ValidationFailed("Invalid or expired token")
    u = s.get(User, tok.user_id)
    if not u:
        raise ValidationFailed("Invalid or expired token")
    tok.used_at = datetime.utcnow()
    return u


# ---------- Outbound mail ----------
def _base_url() -> str:
    if has_app_context():
        return (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return ""


def _send_quietly(
    s: "Session",
    *,
    to: str | list[str],
    template: str,
    subject: str,
    variables: dict[str, Any],
    fallback_html: str,
    fallback_text: str,
) -> None:
    """Named template if present, else the fallback body. Never raises."""
    from app.spipuniform.modules.email.service import get_template_by_name, send_email

    try:
        if get_template_by_name(s, template):
            send_email(s, to=to, template=template, subject=subject, variables=variables)
        else:
            send_email(s, to=to, subject=subject, html=fallback_html, text=fallback_text, variables=variables)
    except ApiError as e:
        logger.warning("Email '%s' not sent to %s: %s", template, to, e.message)


def send_verification_email(s: "Session", u: User) -> None:
    raw = issue_token(s, u, EMAIL_VERIFICATION)
    link = f"{_base_url()}/api/auth/verify-email?token={raw}"
    _send_quietly(
        s,
        to=u.email,
        template="Email Verification",
        subject="Verify your email address",
        variables={"user_name": u.name, "verification_url": link},
        fallback_html='<p>Hi {{ user_name }},</p><p>Please verify your email address: <a href="{{ verification_url }}">{{ verification_url }}</a></p>',
        fallback_text="Hi {{ user_name }},\nPlease verify your email address: {{ verification_url }}",
    )


def send_password_reset_email(s: "Session", u: User) -> None:
    raw = issue_token(s, u, PASSWORD_RESET)
    link = f"{_base_url()}/reset-password?token={raw}"
    _send_quietly(
        s,
        to=u.email,
        template="Password Reset",
        subject="Reset your password",
        variables={"user_name": u.name, "reset_url": link},
        fallback_html='<p>Hi {{ user_name }},</p><p>Reset your password here: <a href="{{ reset_url }}">{{ reset_url }}</a>. The link expires in one hour.</p>',
        fallback_text="Hi {{ user_name }},\nReset your password here: {{ reset_url }}\nThe link expires in one hour.",
    )


def resend_verification(s: "Session", user_id: int, actor: User) -> User:
    u = s.get(User, user_id)
    if not u:
        raise NotFound("User not found")
    if u.email_verified:
        raise ValidationFailed("Email is already verified")
    send_verification_email(s, u)
    record_event(s, actor=actor, action="user.resend_verification", entity_type="User", entity_id=u.id)
    return u


# ---------- Approval gating ----------
def pending_approval_count(s: "Session") -> int:
    return (
        s.query(func.count(User.id))
        .filter(User.banned.is_(True), User.ban_reason == PENDING_APPROVAL)
        .scalar()
        or 0
    )


def admin_emails(s: "Session") -> list[str]:
    rows = s.query(User.email).filter(func.lower(User.role) == ADMIN_ROLE).all()
    return [r[0] for r in rows]


def mark_pending(s: "Session", u: User) -> None:
    u.banned = True
    u.ban_reason = PENDING_APPROVAL
    u.ban_expires = None
    u.updated_at = datetime.utcnow()
    record_event(s, actor=None, action="user.pending_approval", entity_type="User", entity_id=u.id, metadata={"email": u.email})


def notify_admins_of_pending(s: "Session", u: User) -> None:
    recipients = admin_emails(s)
    if not recipients:
        logger.warning("No admins to notify about pending user %s", u.email)
        return
    _send_quietly(
        s,
        to=recipients,
        template="Approval Pending",
        subject="New user awaiting approval",
        variables={"user_name": u.name, "user_email": u.email},
        fallback_html=(
            "<h2>New user pending approval</h2><p>Name: {{ user_name }}</p><p>Email: {{ user_email }}</p>"
            "<p>Please visit the admin dashboard to approve or reject.</p>"
        ),
        fallback_text=(
            "New user pending approval\nName: {{ user_name }}\nEmail: {{ user_email }}\n"
            "Please visit the admin dashboard to approve or reject."
        ),
    )


def _transition_pending(s: "Session", user_id: int, values: dict) -> User:
    """Single conditional UPDATE: only fires while the user is still pending."""
    updated = (
        s.query(User)
        .filter(User.id == user_id, User.banned.is_(True), User.ban_reason == PENDING_APPROVAL)
        .update(values, synchronize_session="fetch")
    )
    u = s.get(User, user_id)
    if not u:
        raise NotFound("User not found")
    if not updated:
        raise Conflict("User is not pending approval")
    return u


def approve_user(s: "Session", user_id: int, actor: User) -> User:
    u = _transition_pending(
        s, user_id, {User.banned: False, User.ban_reason: None, User.ban_expires: None, User.updated_at: datetime.utcnow()}
    )
    record_event(s, actor=actor, action="user.approve", entity_type="User", entity_id=u.id, metadata={"email": u.email})
    _send_quietly(
        s,
        to=u.email,
        template="Welcome & Registration Email",
        subject="Welcome! Your account is approved",
        variables={"user_name": u.name},
        fallback_html="<p>Hi {{ user_name }},</p><p>Your account has been approved. You can now sign in.</p>",
        fallback_text="Hi {{ user_name }},\nYour account has been approved. You can now sign in.",
    )
    return u


def reject_user(s: "Session", user_id: int, actor: User) -> User:
    from app.spipuniform.modules.branding.service import active_branding_dict

    u = _transition_pending(s, user_id, {User.ban_reason: REJECTED, User.updated_at: datetime.utcnow()})
    record_event(s, actor=actor, action="user.reject", entity_type="User", entity_id=u.id, metadata={"email": u.email})
    support_email = active_branding_dict(s).get("support_email") or "support@example.com"
    _send_quietly(
        s,
        to=u.email,
        template="Approval Rejected",
        subject="Your account application was not approved",
        variables={"user_name": u.name, "support_email": support_email},
        fallback_html=(
            "<p>Hi {{ user_name }},</p><p>We're sorry, your account could not be approved at this time. "
            "If you believe this is a mistake, please contact our support team: {{ support_email }}</p>"
        ),
        fallback_text=(
            "Hi {{ user_name }},\nWe're sorry, your account could not be approved at this time. "
            "Contact support: {{ support_email }}"
        ),
    )
    return u


def register_user(s: "Session", payload: UserCreatePayload) -> tuple[User, str]:
    """
    Self-service signup. The very first account becomes the admin; otherwise
    the approval flag decides whether the new user starts out pending.
    Returns (user, status) where status is "active", "pending_approval" or "first_admin".
    """
    if not admin_exists(s):
        # Fresh install: the role table may not be seeded yet.
        seed_default_roles(s)
        u = create_user(s, payload.model_copy(update={"email_verified": True}), None, role=ADMIN_ROLE)
        return u, "first_admin"

    u = create_user(s, payload.model_copy(update={"email_verified": False, "role": None}), None)
    send_verification_email(s, u)
    if require_admin_approval(s):
        mark_pending(s, u)
        notify_admins_of_pending(s, u)
        return u, "pending_approval"
    return u, "active"


def upgrade_first_admin(s: "Session", u: User) -> User:
    if admin_exists(s):
        raise Forbidden("An admin already exists")
    _require_role_exists(s, ADMIN_ROLE)
    u.role = ADMIN_ROLE
    u.email_verified = True
    u.banned = False
    u.ban_reason = None
    u.updated_at = datetime.utcnow()
    record_event(s, actor=u, action="user.upgrade_first_admin", entity_type="User", entity_id=u.id)
    return u
