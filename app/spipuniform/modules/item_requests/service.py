from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import Field
from sqlalchemy import or_

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.catalog.models import ProductType
from app.spipuniform.modules.geography.models import Locality
from app.spipuniform.modules.geography.service import require_locality
from app.spipuniform.modules.item_requests.models import ItemRequest
from app.spipuniform.modules.listings.models import Listing
from app.spipuniform.modules.listings.service import get_profile, listing_to_dict, marketplace_query
from app.spipuniform.modules.schools.models import School
from app.spipuniform.rbac import is_admin
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Request not found or access denied"
MAX_PRICE_CAP = Decimal("10000")

SORTS = {
    "newest": (ItemRequest.created_at.desc(),),
    "oldest": (ItemRequest.created_at.asc(),),
    "price_low": (ItemRequest.max_price.asc(),),
    "price_high": (ItemRequest.max_price.desc(),),
}


class RequestPayload(Payload):
    product_type_id: int | None = None
    school_id: int | None = None
    locality_id: int | None = None
    size: str | None = Field(None, max_length=50)
    condition_preference: str | None = Field(None, max_length=50)
    description: str | None = Field(None, max_length=1000)
    max_price: Decimal | None = Field(None, ge=0, le=MAX_PRICE_CAP, max_digits=10, decimal_places=2)
    status: Literal["open", "fulfilled", "closed"] | None = None


def request_to_dict(r: ItemRequest, *, viewer: User | None = None, match_count: int | None = None) -> dict[str, Any]:
    """The requester's identity is only shown to the requester (and admins)."""
    owner = viewer is not None and (viewer.id == r.user_id or is_admin(viewer))
    pt = r.product_type
    county = r.locality.county if r.locality else None
    d: dict[str, Any] = {
        "id": r.id,
        "user_id": r.user_id if owner else None,
        "product_type_id": r.product_type_id,
        "product_type_name": pt.name if pt else None,
        "category_id": pt.category_id if pt else None,
        "category_name": pt.category.name if pt and pt.category else None,
        "school_id": r.school_id,
        "school_name": r.school.name if r.school else None,
        "locality_id": r.locality_id,
        "locality_name": r.locality.name if r.locality else None,
        "county_id": county.id if county else None,
        "county_name": county.name if county else None,
        "size": r.size,
        "condition_preference": r.condition_preference,
        "description": r.description,
        "max_price": str(r.max_price) if r.max_price is not None else None,
        "status": r.status,
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }
    if match_count is not None:
        d["match_count"] = match_count
    return d


# ---------- Matching ----------
def matching_listings_query(s, r: ItemRequest):
    """Live listings of the wanted product type (same school when one is set), within budget."""
    q = marketplace_query(
        s,
        product_type_id=r.product_type_id,
        school_id=r.school_id,
        max_price=r.max_price,
    )
    return q.filter(Listing.user_id != r.user_id)


def potential_matches(s, r: ItemRequest, limit: int = 20) -> list[dict[str, Any]]:
    rows = matching_listings_query(s, r).order_by(Listing.published_at.desc(), Listing.id.desc()).limit(limit).all()
    return [listing_to_dict(l) for l in rows]


def match_count(s, r: ItemRequest) -> int:
    return matching_listings_query(s, r).order_by(None).count()


# ---------- Queries ----------
def search_requests_query(s, *, viewer: User | None = None, q: str = "", status: str | None = None,
                          product_type_id=None, category_id=None, school_id=None, locality_id=None,
                          county_id=None, min_price=None, max_price=None, include_own: bool = False,
                          sort: str = "newest"):
    query = s.query(ItemRequest).join(ProductType, ProductType.id == ItemRequest.product_type_id)
    query = query.filter(ItemRequest.status == (status or "open"))
    if viewer is not None and not include_own:
        query = query.filter(ItemRequest.user_id != viewer.id)
    if q:
        like = f"%{q}%"
        query = query.outerjoin(School, School.id == ItemRequest.school_id).filter(
            or_(ItemRequest.description.ilike(like), School.name.ilike(like), ProductType.name.ilike(like))
        )
    if product_type_id:
        query = query.filter(ItemRequest.product_type_id == product_type_id)
    if category_id:
        query = query.filter(ProductType.category_id == category_id)
    if school_id:
        query = query.filter(ItemRequest.school_id == school_id)
    if locality_id:
        query = query.filter(ItemRequest.locality_id == locality_id)
    if county_id:
        query = query.join(Locality, Locality.id == ItemRequest.locality_id).filter(Locality.county_id == county_id)
    if min_price is not None:
        query = query.filter(ItemRequest.max_price >= min_price)
    if max_price is not None:
        query = query.filter(ItemRequest.max_price <= max_price)
    return query.order_by(*SORTS[sort], ItemRequest.id.desc())


def own_requests_query(s, user: User, *, status: str | None = None):
    q = s.query(ItemRequest).filter(ItemRequest.user_id == user.id)
    if status:
        q = q.filter(ItemRequest.status == status)
    return q.order_by(ItemRequest.created_at.desc(), ItemRequest.id.desc())


def get_visible_request(s, request_id: int, viewer: User | None) -> ItemRequest:
    """Open requests are public; fulfilled/closed ones only to their owner."""
    r = s.get(ItemRequest, request_id)
    if not r:
        raise NotFound("Request not found")
    owner = viewer is not None and (viewer.id == r.user_id or is_admin(viewer))
    if not owner and r.status != "open":
        raise NotFound("Request not found")
    return r


def get_request_for_owner(s, request_id: int, user: User) -> ItemRequest:
    r = s.get(ItemRequest, request_id)
    if not r or r.user_id != user.id:
        raise NotFound(ACCESS_DENIED)
    return r


# ---------- Writes ----------
def _check_refs(s, data: dict[str, Any]) -> None:
    if "product_type_id" in data:
        if data["product_type_id"] is None:
            raise ValidationFailed("Validation failed", details={"product_type_id": "Field required"})
        if not s.get(ProductType, data["product_type_id"]):
            raise ValidationFailed("Product type not found", details={"product_type_id": "Unknown product type"})
    if data.get("school_id") is not None and not s.get(School, data["school_id"]):
        raise ValidationFailed("School not found", details={"school_id": "Unknown school"})
    if data.get("locality_id") is not None:
        require_locality(s, data["locality_id"])


def create_request(s, payload: RequestPayload, user: User) -> ItemRequest:
    data = payload.model_dump(exclude_unset=True)
    data.setdefault("product_type_id", None)
    _check_refs(s, data)
    locality_id = data.get("locality_id")
    if locality_id is None:
        profile = get_profile(s, user)
        locality_id = profile.locality_id if profile else None
    if locality_id is None:
        raise ValidationFailed(
            "Please complete your profile with location information before creating requests",
            details={"locality_id": "Field required"},
        )
    now = datetime.utcnow()
    r = ItemRequest(
        user_id=user.id,
        product_type_id=data["product_type_id"],
        school_id=data.get("school_id"),
        locality_id=locality_id,
        size=data.get("size"),
        condition_preference=data.get("condition_preference"),
        description=data.get("description"),
        max_price=data.get("max_price"),
        status="open",
        created_at=now,
        updated_at=now,
    )
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=user,
        action="request.create",
        entity_type="ItemRequest",
        entity_id=r.id,
        metadata={"product_type_id": r.product_type_id, "school_id": r.school_id},
    )
    return r


def update_request(s, r: ItemRequest, payload: RequestPayload, user: User) -> ItemRequest:
    data = payload.model_dump(exclude_unset=True)
    if "status" in data and data["status"] is None:
        raise ValidationFailed("Validation failed", details={"status": "Field required"})
    if "locality_id" in data and data["locality_id"] is None:
        raise ValidationFailed("Validation failed", details={"locality_id": "Field required"})
    _check_refs(s, data)
    changed = [k for k, v in data.items() if getattr(r, k) != v]
    for k in changed:
        setattr(r, k, data[k])
    if changed:
        r.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="request.update",
            entity_type="ItemRequest",
            entity_id=r.id,
            metadata={"fields": sorted(changed), "status": r.status},
        )
    return r


def delete_request(s, r: ItemRequest, user: User) -> None:
    record_event(s, actor=user, action="request.delete", entity_type="ItemRequest", entity_id=r.id)
    s.delete(r)
    logger.info("Request %s deleted by user %s", r.id, user.id)
