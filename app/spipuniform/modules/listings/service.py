from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.catalog.models import Attribute, Condition, ProductCategory, ProductType
from app.spipuniform.modules.files.models import StoredFile
from app.spipuniform.modules.geography.service import require_locality
from app.spipuniform.modules.listings.models import (
    LISTING_TTL_DAYS,
    Listing,
    ListingAttributeValue,
    ListingImage,
    UserProfile,
)
from app.spipuniform.modules.schools.models import School
from app.spipuniform.rbac import is_admin
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload


class ImagePayload(BaseModel):
    file_id: int
    alt_text: str | None = Field(None, max_length=255)
    order: int | None = None


class ListingPayload(Payload):
    category_id: int | None = None
    product_type_id: int | None = None
    condition_id: int | None = None
    school_id: int | None = None
    locality_id: int | None = None
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=5000)
    size: str | None = Field(None, max_length=50)
    price: Decimal | None = Field(None, gt=0, max_digits=10, decimal_places=2)
    is_free: bool | None = None
    status: Literal["draft", "pending", "active", "sold"] | None = None
    # attribute slug -> chosen value (matched against the attribute's values, else kept as custom)
    attributes: dict[str, str | None] | None = None
    images: list[ImagePayload] | None = None

    @field_validator("attributes")
    @classmethod
    def _strip_attribute_values(cls, v: dict[str, str | None] | None):
        if v is None:
            return v
        return {k.strip(): (val.strip() if isinstance(val, str) else val) for k, val in v.items() if k and k.strip()}


class ProfilePayload(Payload):
    phone: str | None = Field(None, max_length=50)
    primary_school_id: int | None = None
    locality_id: int | None = None


# ---------- Serialization ----------
def listing_to_dict(l: Listing) -> dict[str, Any]:
    return {
        "id": l.id,
        "user_id": l.user_id,
        "seller_name": l.seller.name if l.seller else None,
        "category_id": l.category_id,
        "category_name": l.category.name if l.category else None,
        "product_type_id": l.product_type_id,
        "product_type_name": l.product_type.name if l.product_type else None,
        "condition_id": l.condition_id,
        "condition_name": l.condition.name if l.condition else None,
        "school_id": l.school_id,
        "school_name": l.school.name if l.school else None,
        "locality_id": l.locality_id,
        "locality_name": l.locality.name if l.locality else None,
        "title": l.title,
        "description": l.description,
        "size": l.size,
        "price": str(l.price) if l.price is not None else None,
        "is_free": l.is_free,
        "status": l.status,
        "view_count": l.view_count,
        "attributes": [
            {
                "attribute_id": av.attribute_id,
                "slug": av.attribute.slug if av.attribute else None,
                "name": av.attribute.name if av.attribute else None,
                "attribute_value_id": av.attribute_value_id,
                "value": av.attribute_value.value if av.attribute_value else av.custom_value,
                "display_name": av.attribute_value.display_name if av.attribute_value else av.custom_value,
                "custom": av.attribute_value_id is None,
            }
            for av in sorted(l.attribute_values, key=lambda x: (x.attribute.order if x.attribute else 0, x.attribute_id))
        ],
        "images": [
            {
                "id": img.id,
                "file_id": img.file_id,
                "alt_text": img.alt_text,
                "order": img.order,
                "url": f"/api/files/{img.file_id}/download",
            }
            for img in l.images
        ],
        "published_at": iso(l.published_at),
        "expires_at": iso(l.expires_at),
        "created_at": iso(l.created_at),
        "updated_at": iso(l.updated_at),
    }


def profile_to_dict(p: UserProfile | None, user: User) -> dict[str, Any]:
    return {
        "user_id": user.id,
        "phone": p.phone if p else None,
        "primary_school_id": p.primary_school_id if p else None,
        "primary_school_name": p.primary_school.name if p and p.primary_school else None,
        "locality_id": p.locality_id if p else None,
        "locality_name": p.locality.name if p and p.locality else None,
    }


# ---------- Profile ----------
def get_profile(s, user: User) -> UserProfile | None:
    return s.query(UserProfile).filter(UserProfile.user_id == user.id).one_or_none()


def upsert_profile(s, user: User, payload: ProfilePayload) -> UserProfile:
    data = payload.model_dump(exclude_unset=True)
    if data.get("primary_school_id") is not None and not s.get(School, data["primary_school_id"]):
        raise ValidationFailed("School not found", details={"primary_school_id": "Unknown school"})
    if "locality_id" in data:
        require_locality(s, data["locality_id"])
    now = datetime.utcnow()
    p = get_profile(s, user)
    if p is None:
        p = UserProfile(user_id=user.id, created_at=now)
        s.add(p)
    for k in ("phone", "primary_school_id", "locality_id"):
        if k in data:
            setattr(p, k, data[k])
    p.updated_at = now
    s.flush()
    record_event(s, actor=user, action="profile.update", entity_type="UserProfile", entity_id=p.id, metadata={"fields": sorted(data)})
    return p


# ---------- Listings ----------
def get_listing_for_owner(s, listing_id: int, user: User) -> Listing:
    l = s.get(Listing, listing_id)
    if not l or (l.user_id != user.id and not is_admin(user)):
        raise NotFound("Listing not found")
    return l


def _lookup(s, model, obj_id: int | None, field: str, label: str, *, required: bool = True):
    if obj_id is None:
        if required:
            raise ValidationFailed("Validation failed", details={field: "Field required"})
        return None
    obj = s.get(model, obj_id)
    if not obj:
        raise ValidationFailed(f"{label} not found", details={field: f"Unknown {label.lower()}"})
    return obj


def _validate_taxonomy(s, category_id: int | None, product_type_id: int | None, condition_id: int | None) -> ProductType:
    _lookup(s, ProductCategory, category_id, "category_id", "Category")
    pt: ProductType = _lookup(s, ProductType, product_type_id, "product_type_id", "Product type")
    _lookup(s, Condition, condition_id, "condition_id", "Condition")
    if pt.category_id != category_id:
        raise ValidationFailed(
            "Product type does not belong to the selected category",
            details={"product_type_id": "Category mismatch"},
        )
    return pt


def _resolve_locality_id(s, user: User, locality_id: int | None) -> int:
    if locality_id is not None:
        require_locality(s, locality_id)
        return locality_id
    profile = get_profile(s, user)
    if profile and profile.locality_id:
        return profile.locality_id
    raise ValidationFailed(
        "A locality is required. Set one on the listing or in your profile.",
        details={"locality_id": "Field required"},
    )


def _check_price(is_free: bool, price: Decimal | None, status: str) -> Decimal | None:
    if is_free:
        return None
    if price is None and status != "draft":
        raise ValidationFailed("Price is required unless the item is free", details={"price": "Field required"})
    return price


def _apply_attributes(s, l: Listing, pt: ProductType, values: dict[str, str | None] | None, status: str) -> None:
    attrs = {a.slug: a for a in pt.attributes}
    if values is not None:
        unknown = sorted(k for k in values if k not in attrs)
        if unknown:
            raise ValidationFailed(
                "Unknown attributes for this product type",
                details={f"attributes.{k}": "Unknown attribute" for k in unknown},
            )
        l.attribute_values.clear()
        s.flush()
        for slug, raw in values.items():
            if raw is None or raw == "":
                continue
            a: Attribute = attrs[slug]
            match = next(
                (v for v in a.values if v.is_active and (v.value.lower() == raw.lower() or v.display_name.lower() == raw.lower())),
                None,
            )
            l.attribute_values.append(
                ListingAttributeValue(
                    attribute_id=a.id,
                    attribute_value_id=match.id if match else None,
                    custom_value=None if match else raw[:255],
                )
            )

    if status != "draft":
        present = {av.attribute_id for av in l.attribute_values}
        missing = [a for a in pt.attributes if a.required and a.id not in present]
        if missing:
            raise ValidationFailed(
                "Required attributes are missing",
                details={f"attributes.{a.slug}": f"{a.name} is required" for a in missing},
            )


def _apply_images(s, l: Listing, images: list[ImagePayload] | None, user: User) -> None:
    if images is None:
        return
    file_ids = [img.file_id for img in images]
    files = {f.id: f for f in s.query(StoredFile).filter(StoredFile.id.in_(file_ids)).all()} if file_ids else {}
    for img in images:
        f = files.get(img.file_id)
        if not f or f.is_deleted or f.type != "file":
            raise ValidationFailed("Image file not found", details={"images": f"Unknown file {img.file_id}"})
        if f.owner_id != user.id and not f.is_public and not is_admin(user):
            raise ValidationFailed("Image file not found", details={"images": f"Unknown file {img.file_id}"})
    l.images.clear()
    s.flush()
    for idx, img in enumerate(images):
        l.images.append(ListingImage(file_id=img.file_id, alt_text=img.alt_text, order=img.order if img.order is not None else idx))


def _publish(l: Listing, now: datetime) -> None:
    if l.status == "active" and l.published_at is None:
        l.published_at = now
        l.expires_at = now + timedelta(days=LISTING_TTL_DAYS)


def create_listing(s, payload: ListingPayload, user: User) -> Listing:
    if not payload.title:
        raise ValidationFailed("Validation failed", details={"title": "Field required"})
    pt = _validate_taxonomy(s, payload.category_id, payload.product_type_id, payload.condition_id)
    _lookup(s, School, payload.school_id, "school_id", "School", required=False)
    status = payload.status or "active"
    is_free = bool(payload.is_free)
    now = datetime.utcnow()
    l = Listing(
        user_id=user.id,
        category_id=payload.category_id,
        product_type_id=pt.id,
        condition_id=payload.condition_id,
        school_id=payload.school_id,
        locality_id=_resolve_locality_id(s, user, payload.locality_id),
        title=payload.title,
        description=payload.description,
        size=payload.size,
        price=_check_price(is_free, payload.price, status),
        is_free=is_free,
        status=status,
        view_count=0,
        created_at=now,
        updated_at=now,
    )
    s.add(l)
    s.flush()
    _apply_attributes(s, l, pt, payload.attributes or {}, status)
    _apply_images(s, l, payload.images, user)
    _publish(l, now)
    s.flush()
    record_event(s, actor=user, action="listing.create", entity_type="Listing", entity_id=l.id, metadata={"title": l.title, "status": l.status})
    return l


def update_listing(s, l: Listing, payload: ListingPayload, user: User) -> Listing:
    data = payload.model_dump(exclude_unset=True)
    if "title" in data and not data["title"]:
        raise ValidationFailed("Validation failed", details={"title": "Field required"})
    if l.status == "removed":
        raise ValidationFailed("Removed listings cannot be edited")

    category_id = data.get("category_id") or l.category_id
    product_type_id = data.get("product_type_id") or l.product_type_id
    condition_id = data.get("condition_id") or l.condition_id
    pt = _validate_taxonomy(s, category_id, product_type_id, condition_id)
    if "school_id" in data:
        _lookup(s, School, data["school_id"], "school_id", "School", required=False)
        l.school_id = data["school_id"]
    if data.get("locality_id") is not None:
        l.locality_id = _resolve_locality_id(s, user, data["locality_id"])

    status = data.get("status") or l.status
    is_free = data["is_free"] if data.get("is_free") is not None else l.is_free
    price = payload.price if "price" in data else l.price
    l.price = _check_price(is_free, price, status)
    l.is_free = is_free

    type_changed = product_type_id != l.product_type_id
    l.category_id = category_id
    l.product_type_id = product_type_id
    l.condition_id = condition_id
    for k in ("title", "description", "size"):
        if k in data:
            setattr(l, k, data[k])
    l.status = status
    s.flush()
    s.expire(l, ["category", "product_type", "condition", "school", "locality"])

    if "attributes" in data:
        attrs = payload.attributes or {}
    elif type_changed:
        # Values from the old type's attributes no longer apply.
        attrs = {}
    else:
        attrs = None
    _apply_attributes(s, l, pt, attrs, status)
    _apply_images(s, l, payload.images if "images" in data else None, user)
    now = datetime.utcnow()
    _publish(l, now)
    l.updated_at = now
    record_event(s, actor=user, action="listing.update", entity_type="Listing", entity_id=l.id, metadata={"fields": sorted(data)})
    return l


def remove_listing(s, l: Listing, user: User) -> Listing:
    l.status = "removed"
    l.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="listing.remove", entity_type="Listing", entity_id=l.id)
    return l


def is_publicly_visible(l: Listing, now: datetime | None = None) -> bool:
    now = now or datetime.utcnow()
    return l.status == "active" and (l.expires_at is None or l.expires_at > now)


def record_view(s, l: Listing) -> None:
    # Single UPDATE so concurrent views don't lose increments.
    s.query(Listing).filter(Listing.id == l.id).update(
        {Listing.view_count: Listing.view_count + 1}, synchronize_session=False
    )
    s.flush()
    s.refresh(l, attribute_names=["view_count"])


def marketplace_query(s, *, q: str = "", school_id=None, category_id=None, product_type_id=None, condition_id=None,
                      locality_id=None, county_id=None, min_price=None, max_price=None, free=None):
    now = datetime.utcnow()
    query = s.query(Listing).filter(
        Listing.status == "active",
        (Listing.expires_at.is_(None)) | (Listing.expires_at > now),
    )
    if q:
        like = f"%{q}%"
        query = query.filter(Listing.title.ilike(like) | Listing.description.ilike(like))
    if school_id:
        query = query.filter(Listing.school_id == school_id)
    if category_id:
        query = query.filter(Listing.category_id == category_id)
    if product_type_id:
        query = query.filter(Listing.product_type_id == product_type_id)
    if condition_id:
        query = query.filter(Listing.condition_id == condition_id)
    if locality_id:
        query = query.filter(Listing.locality_id == locality_id)
    if county_id:
        from app.spipuniform.modules.geography.models import Locality

        query = query.join(Locality, Locality.id == Listing.locality_id).filter(Locality.county_id == county_id)
    if free is True:
        query = query.filter(Listing.is_free.is_(True))
    elif free is False:
        query = query.filter(Listing.is_free.is_(False))
    if min_price is not None:
        query = query.filter(func.coalesce(Listing.price, 0) >= min_price)
    if max_price is not None:
        query = query.filter(func.coalesce(Listing.price, 0) <= max_price)
    return query
