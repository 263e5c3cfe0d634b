from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import EmailStr, Field

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound
from app.spipuniform.modules.branding.models import Branding
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.spipuniform.models import User


HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"

DEFAULT_BRANDING: dict[str, Any] = {
    "id": None,
    "site_name": "SpipUniform",
    "site_description": "Second-hand school uniforms, locally.",
    "site_url": None,
    "logo_url": None,
    "logo_alt": None,
    "favicon_url": None,
    "primary_color": "#3B82F6",
    "secondary_color": "#64748B",
    "accent_color": "#10B981",
    "background_color": "#FFFFFF",
    "text_color": "#1F2937",
    "primary_font": None,
    "heading_font": None,
    "support_email": None,
    "contact_phone": None,
    "social_links": {},
    "custom_css": None,
    "is_active": True,
}

_EDITABLE = [k for k in DEFAULT_BRANDING if k not in ("id", "is_active")]
_REQUIRED = ("site_name", "primary_color", "secondary_color", "accent_color", "background_color", "text_color")


class BrandingPayload(Payload):
    site_name: str | None = Field(None, min_length=1, max_length=100)
    site_description: str | None = None
    site_url: str | None = Field(None, max_length=500)
    logo_url: str | None = Field(None, max_length=500)
    logo_alt: str | None = Field(None, max_length=255)
    favicon_url: str | None = Field(None, max_length=500)
    primary_color: str | None = Field(None, pattern=HEX_COLOR)
    secondary_color: str | None = Field(None, pattern=HEX_COLOR)
    accent_color: str | None = Field(None, pattern=HEX_COLOR)
    background_color: str | None = Field(None, pattern=HEX_COLOR)
    text_color: str | None = Field(None, pattern=HEX_COLOR)
    primary_font: str | None = Field(None, max_length=100)
    heading_font: str | None = Field(None, max_length=100)
    support_email: EmailStr | None = None
    contact_phone: str | None = Field(None, max_length=50)
    social_links: dict[str, str] | None = None
    custom_css: str | None = None
    is_active: bool | None = None


def branding_to_dict(b: Branding) -> dict[str, Any]:
    return {
        "id": b.id,
        "site_name": b.site_name,
        "site_description": b.site_description,
        "site_url": b.site_url,
        "logo_url": b.logo_url,
        "logo_alt": b.logo_alt,
        "favicon_url": b.favicon_url,
        "primary_color": b.primary_color,
        "secondary_color": b.secondary_color,
        "accent_color": b.accent_color,
        "background_color": b.background_color,
        "text_color": b.text_color,
        "primary_font": b.primary_font,
        "heading_font": b.heading_font,
        "support_email": b.support_email,
        "contact_phone": b.contact_phone,
        "social_links": b.social_links or {},
        "custom_css": b.custom_css,
        "is_active": b.is_active,
        "created_at": iso(b.created_at),
        "updated_at": iso(b.updated_at),
    }


def get_active_branding(s: "Session") -> Branding | None:
    return (
        s.query(Branding)
        .filter(Branding.is_active.is_(True))
        .order_by(Branding.updated_at.desc(), Branding.id.desc())
        .first()
    )


def active_branding_dict(s: "Session") -> dict[str, Any]:
    b = get_active_branding(s)
    return branding_to_dict(b) if b else dict(DEFAULT_BRANDING)


def branding_variables(s: "Session") -> dict[str, Any]:
    """Variables injected into templates that opt in to branding."""
    b = active_branding_dict(s)
    return {
        "site_name": b["site_name"],
        "site_description": b["site_description"] or "",
        "site_url": b["site_url"] or "",
        "logo_url": b["logo_url"] or "",
        "support_email": b["support_email"] or "support@example.com",
        "primary_color": b["primary_color"],
        "secondary_color": b["secondary_color"],
        "accent_color": b["accent_color"],
        "text_color": b["text_color"],
        "background_color": b["background_color"],
        "current_year": datetime.utcnow().year,
    }


def _deactivate_others(s: "Session", keep_id: int | None) -> None:
    q = s.query(Branding).filter(Branding.is_active.is_(True))
    if keep_id is not None:
        q = q.filter(Branding.id != keep_id)
    for other in q.all():
        other.is_active = False
        other.updated_at = datetime.utcnow()


def create_branding(s: "Session", payload: BrandingPayload, user: "User") -> Branding:
    data = payload.model_dump(exclude_none=True)
    b = Branding(site_name=data.get("site_name") or DEFAULT_BRANDING["site_name"])
    for key in _EDITABLE:
        if key in data and key != "site_name":
            setattr(b, key, data[key])
    b.is_active = bool(data.get("is_active", False))
    if b.is_active:
        _deactivate_others(s, None)
    s.add(b)
    s.flush()
    record_event(s, actor=user, action="branding.create", entity_type="Branding", entity_id=b.id, metadata={"site_name": b.site_name})
    return b


def update_branding(s: "Session", b: Branding, payload: BrandingPayload, user: "User") -> Branding:
    data = payload.model_dump(exclude_unset=True)
    changes = {}
    for key in _EDITABLE:
        if key in _REQUIRED and data.get(key) is None:
            continue
        if key in data and data[key] != getattr(b, key):
            changes[key] = True
            setattr(b, key, data[key])
    if data.get("is_active") is True and not b.is_active:
        _deactivate_others(s, b.id)
        b.is_active = True
    elif data.get("is_active") is False:
        b.is_active = False
    b.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="branding.edit", entity_type="Branding", entity_id=b.id, metadata={"fields": sorted(changes)})
    return b


def activate_branding(s: "Session", branding_id: int, user: "User") -> Branding:
    b = s.get(Branding, branding_id)
    if not b:
        raise NotFound("Branding not found")
    _deactivate_others(s, b.id)
    b.is_active = True
    b.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="branding.activate", entity_type="Branding", entity_id=b.id)
    return b
