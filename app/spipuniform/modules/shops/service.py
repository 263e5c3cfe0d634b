from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import EmailStr, Field

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.geography.service import require_locality
from app.spipuniform.modules.shops.models import Shop
from app.spipuniform.rbac import is_admin
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload


class ShopPayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=2000)
    website: str | None = Field(None, max_length=500)
    contact_email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    address: str | None = None
    locality_id: int | None = None
    # Only admins may set membership directly; owners get it via verification.
    membership_status: Literal["active", "pending", "cancelled", "expired"] | None = None


_OWNER_FIELDS = ("name", "description", "website", "contact_email", "phone", "address", "locality_id")


def shop_to_dict(shop: Shop) -> dict[str, Any]:
    return {
        "id": shop.id,
        "user_id": shop.user_id,
        "owner_name": shop.owner.name if shop.owner else None,
        "name": shop.name,
        "description": shop.description,
        "website": shop.website,
        "contact_email": shop.contact_email,
        "phone": shop.phone,
        "address": shop.address,
        "locality_id": shop.locality_id,
        "locality_name": shop.locality.name if shop.locality else None,
        "membership_status": shop.membership_status,
        "is_verified": shop.is_verified,
        "verified_at": iso(shop.verified_at),
        "created_at": iso(shop.created_at),
        "updated_at": iso(shop.updated_at),
    }


def get_shop_for_user(s, shop_id: int, user: User) -> Shop:
    """Owner or admin; anyone else gets a 404 so shop ids don't leak."""
    shop = s.get(Shop, shop_id)
    if not shop or (shop.user_id != user.id and not is_admin(user)):
        raise NotFound("Shop not found")
    return shop


def create_shop(s, payload: ShopPayload, user: User) -> Shop:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    require_locality(s, payload.locality_id)
    now = datetime.utcnow()
    shop = Shop(
        user_id=user.id,
        name=payload.name,
        description=payload.description,
        website=payload.website,
        contact_email=str(payload.contact_email) if payload.contact_email else None,
        phone=payload.phone,
        address=payload.address,
        locality_id=payload.locality_id,
        membership_status=(payload.membership_status if is_admin(user) and payload.membership_status else "pending"),
        is_verified=False,
        created_at=now,
        updated_at=now,
    )
    s.add(shop)
    s.flush()
    record_event(s, actor=user, action="shop.create", entity_type="Shop", entity_id=shop.id, metadata={"name": shop.name})
    return shop


def update_shop(s, shop: Shop, payload: ShopPayload, user: User) -> Shop:
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and not data["name"]:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    if "locality_id" in data:
        require_locality(s, data["locality_id"])
    changed: list[str] = []
    for k in _OWNER_FIELDS:
        if k in data:
            v = str(data[k]) if k == "contact_email" and data[k] is not None else data[k]
            if getattr(shop, k) != v:
                setattr(shop, k, v)
                changed.append(k)
    if data.get("membership_status") and data["membership_status"] != shop.membership_status:
        if not is_admin(user):
            raise ValidationFailed("Only administrators can change membership status", details={"membership_status": "Not allowed"})
        shop.membership_status = data["membership_status"]
        changed.append("membership_status")
    if changed:
        shop.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="shop.update", entity_type="Shop", entity_id=shop.id, metadata={"fields": changed})
    return shop


def delete_shop(s, shop: Shop, user: User) -> None:
    record_event(s, actor=user, action="shop.delete", entity_type="Shop", entity_id=shop.id, metadata={"name": shop.name})
    s.delete(shop)


def verify_shop(s, shop: Shop, user: User) -> Shop:
    now = datetime.utcnow()
    shop.is_verified = True
    shop.verified_at = now
    shop.membership_status = "active"
    shop.updated_at = now
    record_event(s, actor=user, action="shop.verify", entity_type="Shop", entity_id=shop.id)
    return shop
