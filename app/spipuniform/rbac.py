from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, has_app_context

from app.spipuniform.errors import Forbidden, Unauthorized
from app.spipuniform.models import Role, User

ADMIN_ROLE = "admin"

# key -> (group, label)
PERMISSIONS: dict[str, tuple[str, str]] = {
    "manageUsers": ("Users", "Manage users"),
    "manageRoles": ("Roles", "Manage roles"),
    "viewUsers": ("Users", "View users"),
    "viewRoles": ("Roles", "View roles"),
    "banUsers": ("Users", "Ban users"),
    "deleteUsers": ("Users", "Delete users"),
    "assignRoles": ("Roles", "Assign roles"),
    "viewDashboard": ("Dashboard", "View dashboard"),
    "viewDashboardSettings": ("Settings", "View settings"),
    "viewBranding": ("Settings", "Manage branding"),
    "viewEmail": ("Settings", "Manage email"),
    "viewStorageSettings": ("Settings", "Manage storage settings"),
    "viewFileManager": ("Files", "Use file manager"),
    "viewUserManagement": ("User management", "Open user management"),
    "viewUserManagementUsers": ("User management", "Users page"),
    "viewUserManagementRoles": ("User management", "Roles page"),
    "viewUserManagementPermissions": ("User management", "Permissions page"),
    "viewDashboardAnalytics": ("Dashboard", "View analytics"),
    "viewDashboardReports": ("Dashboard", "View reports"),
    "viewProductCategories": ("Catalog", "Manage product categories"),
    "viewProductTypes": ("Catalog", "Manage product types"),
    "viewProductAttributes": ("Catalog", "Manage product attributes"),
    "viewProductConditions": ("Catalog", "Manage conditions"),
    "viewSchools": ("Schools", "Manage schools"),
    "viewRequests": ("Marketplace", "View requests"),
    "viewLocalities": ("Geography", "Manage localities"),
    "viewUserFamilyManagement": ("Members", "Family management"),
    "viewUserShopManagement": ("Members", "Shop management"),
    "viewUserSchoolStockManagement": ("Members", "School stock management"),
    "viewUserListings": ("Members", "Own listings"),
    "viewUserRequests": ("Members", "Own requests"),
}


def all_permissions(value: bool = True) -> dict[str, bool]:
    return {k: value for k in PERMISSIONS}


def normalize_permissions(raw: dict[str, Any] | None) -> dict[str, bool]:
    """Known keys only; anything not explicitly true is false."""
    raw = raw or {}
    return {k: raw.get(k) is True for k in PERMISSIONS}


def _sentinel_email() -> str:
    if has_app_context():
        return (current_app.config.get("ADMIN_SENTINEL_EMAIL") or "admin@admin.com").lower()
    return "admin@admin.com"


def is_admin(user: User | None) -> bool:
    if not user:
        return False
    if (user.role or "").strip().lower() == ADMIN_ROLE:
        return True
    return (user.email or "").strip().lower() == _sentinel_email()


def effective_permissions(user: User | None, role: Role | None) -> dict[str, bool]:
    """
    Admin sentinel (role name or email) gets everything; otherwise the role's bag.
    A user without a role (or whose role row is missing) gets nothing.
    """
    if is_admin(user):
        return all_permissions(True)
    if role is None:
        return all_permissions(False)
    return normalize_permissions(role.permissions)


def permissions_for(user: User | None) -> dict[str, bool]:
    if not user:
        return all_permissions(False)
    role = None
    if user.role:
        from app.spipuniform.db import db_session

        role = db_session().query(Role).filter(Role.name == user.role).one_or_none()
    return effective_permissions(user, role)


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or user.ban_is_active():
        return False
    return permissions_for(user).get(permission_key, False)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not getattr(g, "current_user", None):
            raise Unauthorized("Authentication required")
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user:
                raise Unauthorized("Authentication required")
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                raise Forbidden("Insufficient permissions")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user:
            raise Unauthorized("Authentication required")
        if not is_admin(user):
            g.missing_permission = ADMIN_ROLE
            raise Forbidden("Admin access required")
        return fn(*args, **kwargs)

    return wrapped
