from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator
from sqlalchemy import func

from app.spipuniform.audit import record_event
from app.spipuniform.errors import Conflict, NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.catalog.models import (
    INPUT_TYPES,
    Attribute,
    AttributeValue,
    Condition,
    ProductCategory,
    ProductType,
)
from app.spipuniform.modules.listings.models import Listing, ListingAttributeValue
from app.spipuniform.utils import iso, slugify
from app.spipuniform.validation import Payload

InputType = Literal[INPUT_TYPES]  # type: ignore[valid-type]


# ---------- Payloads ----------
class CategoryPayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=120)
    description: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class ProductTypePayload(Payload):
    category_id: int | None = None
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=120)
    description: str | None = None
    is_active: bool | None = None


class AttributePayload(Payload):
    product_type_id: int | None = None
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=120)
    input_type: InputType | None = None
    required: bool | None = None
    order: int | None = None
    placeholder: str | None = Field(None, max_length=255)
    help_text: str | None = None


class AttributeValuePayload(Payload):
    attribute_id: int | None = None
    value: str | None = Field(None, min_length=1, max_length=100)
    display_name: str | None = Field(None, max_length=100)
    sort_order: int | None = None
    is_active: bool | None = None


class ConditionPayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=50)
    description: str | None = None
    order: int | None = None
    is_active: bool | None = None


class ConditionReorderPayload(Payload):
    ids: list[int] = Field(..., min_length=1)

    @field_validator("ids")
    @classmethod
    def _unique(cls, v: list[int]):
        if len(set(v)) != len(v):
            raise ValueError("Duplicate ids")
        return v


# ---------- Serialization ----------
def value_to_dict(v: AttributeValue) -> dict[str, Any]:
    return {
        "id": v.id,
        "attribute_id": v.attribute_id,
        "value": v.value,
        "display_name": v.display_name,
        "sort_order": v.sort_order,
        "is_active": v.is_active,
    }


def attribute_to_dict(a: Attribute, *, active_values_only: bool = False) -> dict[str, Any]:
    values = [v for v in a.values if v.is_active] if active_values_only else list(a.values)
    return {
        "id": a.id,
        "product_type_id": a.product_type_id,
        "name": a.name,
        "slug": a.slug,
        "input_type": a.input_type,
        "required": a.required,
        "order": a.order,
        "placeholder": a.placeholder,
        "help_text": a.help_text,
        "values": [value_to_dict(v) for v in values],
    }


def product_type_to_dict(pt: ProductType, *, with_attributes: bool = False) -> dict[str, Any]:
    d = {
        "id": pt.id,
        "category_id": pt.category_id,
        "name": pt.name,
        "slug": pt.slug,
        "description": pt.description,
        "is_active": pt.is_active,
        "attribute_count": len(pt.attributes),
        "created_at": iso(pt.created_at),
        "updated_at": iso(pt.updated_at),
    }
    if with_attributes:
        d["attributes"] = [attribute_to_dict(a, active_values_only=True) for a in pt.attributes]
    return d


def category_to_dict(c: ProductCategory, *, with_types: bool = False, active_only: bool = False) -> dict[str, Any]:
    types = [t for t in c.product_types if t.is_active] if active_only else list(c.product_types)
    d = {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "description": c.description,
        "sort_order": c.sort_order,
        "is_active": c.is_active,
        "product_type_count": len(types),
        "attribute_count": sum(len(t.attributes) for t in types),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if with_types:
        d["product_types"] = [product_type_to_dict(t) for t in types]
    return d


def condition_to_dict(c: Condition) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "order": c.order,
        "is_active": c.is_active,
    }


# ---------- Lookups ----------
def get_or_404(s, model, obj_id: int | None, label: str):
    obj = s.get(model, obj_id) if obj_id is not None else None
    if not obj:
        raise NotFound(f"{label} not found")
    return obj


def public_tree(s) -> list[dict[str, Any]]:
    rows = (
        s.query(ProductCategory)
        .filter(ProductCategory.is_active.is_(True))
        .order_by(ProductCategory.sort_order.asc(), ProductCategory.name.asc())
        .all()
    )
    return [category_to_dict(c, with_types=True, active_only=True) for c in rows]


def _resolve_slug(name: str, slug: str | None) -> str:
    return slugify(slug or name)


def _slug_taken(s, model, slug: str, exclude_id: int | None, **scope: Any) -> bool:
    q = s.query(model.id).filter(model.slug == slug)
    for k, v in scope.items():
        q = q.filter(getattr(model, k) == v)
    if exclude_id:
        q = q.filter(model.id != exclude_id)
    return q.first() is not None


def _ensure_unused(s, column, obj_id: int, label: str, listing_col=Listing.id) -> None:
    used = s.query(func.count(func.distinct(listing_col))).filter(column == obj_id).scalar() or 0
    if used:
        raise Conflict(f"Cannot delete this {label} - it is used by {used} listing(s). Deactivate it instead.")


def _apply(obj: Any, data: dict[str, Any], fields: tuple[str, ...]) -> list[str]:
    changed = []
    for k in fields:
        if k in data and data[k] is not None and getattr(obj, k) != data[k]:
            setattr(obj, k, data[k])
            changed.append(k)
    return changed


# ---------- Categories ----------
def create_category(s, payload: CategoryPayload, user: User) -> ProductCategory:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    slug = _resolve_slug(payload.name, payload.slug)
    if _slug_taken(s, ProductCategory, slug, None):
        raise Conflict("A category with this slug already exists", details={"slug": "Duplicate"})
    now = datetime.utcnow()
    c = ProductCategory(
        name=payload.name,
        slug=slug,
        description=payload.description,
        sort_order=payload.sort_order if payload.sort_order is not None else 0,
        is_active=True if payload.is_active is None else payload.is_active,
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="catalog.category.create", entity_type="ProductCategory", entity_id=c.id, metadata={"slug": slug})
    return c


def update_category(s, c: ProductCategory, payload: CategoryPayload, user: User) -> ProductCategory:
    data = payload.model_dump(exclude_unset=True)
    if data.get("slug"):
        data["slug"] = slugify(data["slug"])
        if _slug_taken(s, ProductCategory, data["slug"], c.id):
            raise Conflict("A category with this slug already exists", details={"slug": "Duplicate"})
    changed = _apply(c, data, ("name", "slug", "description", "sort_order", "is_active"))
    if changed:
        c.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="catalog.category.update", entity_type="ProductCategory", entity_id=c.id, metadata={"fields": changed})
    return c


def delete_category(s, c: ProductCategory, user: User) -> None:
    _ensure_unused(s, Listing.category_id, c.id, "category")
    record_event(s, actor=user, action="catalog.category.delete", entity_type="ProductCategory", entity_id=c.id, metadata={"slug": c.slug})
    s.delete(c)


# ---------- Product types ----------
def create_product_type(s, payload: ProductTypePayload, user: User) -> ProductType:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    category = s.get(ProductCategory, payload.category_id) if payload.category_id else None
    if not category:
        raise ValidationFailed("Category not found", details={"category_id": "Unknown category"})
    slug = _resolve_slug(payload.name, payload.slug)
    if _slug_taken(s, ProductType, slug, None):
        raise Conflict("A product type with this slug already exists", details={"slug": "Duplicate"})
    now = datetime.utcnow()
    pt = ProductType(
        category_id=category.id,
        name=payload.name,
        slug=slug,
        description=payload.description,
        is_active=True if payload.is_active is None else payload.is_active,
        created_at=now,
        updated_at=now,
    )
    s.add(pt)
    s.flush()
    record_event(s, actor=user, action="catalog.product_type.create", entity_type="ProductType", entity_id=pt.id, metadata={"slug": slug})
    return pt


def update_product_type(s, pt: ProductType, payload: ProductTypePayload, user: User) -> ProductType:
    data = payload.model_dump(exclude_unset=True)
    if data.get("category_id") and not s.get(ProductCategory, data["category_id"]):
        raise ValidationFailed("Category not found", details={"category_id": "Unknown category"})
    if data.get("slug"):
        data["slug"] = slugify(data["slug"])
        if _slug_taken(s, ProductType, data["slug"], pt.id):
            raise Conflict("A product type with this slug already exists", details={"slug": "Duplicate"})
    changed = _apply(pt, data, ("category_id", "name", "slug", "description", "is_active"))
    if changed:
        pt.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="catalog.product_type.update", entity_type="ProductType", entity_id=pt.id, metadata={"fields": changed})
    return pt


def delete_product_type(s, pt: ProductType, user: User) -> None:
    _ensure_unused(s, Listing.product_type_id, pt.id, "product type")
    record_event(s, actor=user, action="catalog.product_type.delete", entity_type="ProductType", entity_id=pt.id, metadata={"slug": pt.slug})
    s.delete(pt)


# ---------- Attributes ----------
def create_attribute(s, payload: AttributePayload, user: User) -> Attribute:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    pt = s.get(ProductType, payload.product_type_id) if payload.product_type_id else None
    if not pt:
        raise ValidationFailed("Product type not found", details={"product_type_id": "Unknown product type"})
    slug = _resolve_slug(payload.name, payload.slug)
    if _slug_taken(s, Attribute, slug, None, product_type_id=pt.id):
        raise Conflict("This product type already has an attribute with that slug", details={"slug": "Duplicate"})
    if payload.order is None:
        order = (s.query(func.max(Attribute.order)).filter(Attribute.product_type_id == pt.id).scalar() or 0) + 1
    else:
        order = payload.order
    now = datetime.utcnow()
    a = Attribute(
        product_type_id=pt.id,
        name=payload.name,
        slug=slug,
        input_type=payload.input_type or "text_input",
        required=bool(payload.required),
        order=order,
        placeholder=payload.placeholder,
        help_text=payload.help_text,
        created_at=now,
        updated_at=now,
    )
    s.add(a)
    s.flush()
    record_event(s, actor=user, action="catalog.attribute.create", entity_type="Attribute", entity_id=a.id, metadata={"slug": slug})
    return a


def update_attribute(s, a: Attribute, payload: AttributePayload, user: User) -> Attribute:
    data = payload.model_dump(exclude_unset=True)
    data.pop("product_type_id", None)
    if data.get("slug"):
        data["slug"] = slugify(data["slug"])
        if _slug_taken(s, Attribute, data["slug"], a.id, product_type_id=a.product_type_id):
            raise Conflict("This product type already has an attribute with that slug", details={"slug": "Duplicate"})
    changed = _apply(a, data, ("name", "slug", "input_type", "required", "order", "placeholder", "help_text"))
    if changed:
        a.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="catalog.attribute.update", entity_type="Attribute", entity_id=a.id, metadata={"fields": changed})
    return a


def delete_attribute(s, a: Attribute, user: User) -> None:
    _ensure_unused(s, ListingAttributeValue.attribute_id, a.id, "attribute", ListingAttributeValue.listing_id)
    record_event(s, actor=user, action="catalog.attribute.delete", entity_type="Attribute", entity_id=a.id, metadata={"slug": a.slug})
    s.delete(a)


# ---------- Attribute values ----------
def _value_taken(s, attribute_id: int, value: str, exclude_id: int | None = None) -> bool:
    q = s.query(AttributeValue.id).filter(AttributeValue.attribute_id == attribute_id, AttributeValue.value == value)
    if exclude_id:
        q = q.filter(AttributeValue.id != exclude_id)
    return q.first() is not None


def create_attribute_value(s, payload: AttributeValuePayload, user: User) -> AttributeValue:
    if not payload.value:
        raise ValidationFailed("Validation failed", details={"value": "Field required"})
    a = s.get(Attribute, payload.attribute_id) if payload.attribute_id else None
    if not a:
        raise ValidationFailed("Attribute not found", details={"attribute_id": "Unknown attribute"})
    if _value_taken(s, a.id, payload.value):
        raise Conflict("This attribute already has that value", details={"value": "Duplicate"})
    if payload.sort_order is None:
        sort_order = (s.query(func.max(AttributeValue.sort_order)).filter(AttributeValue.attribute_id == a.id).scalar() or 0) + 1
    else:
        sort_order = payload.sort_order
    v = AttributeValue(
        attribute_id=a.id,
        value=payload.value,
        display_name=payload.display_name or payload.value,
        sort_order=sort_order,
        is_active=True if payload.is_active is None else payload.is_active,
    )
    s.add(v)
    s.flush()
    record_event(s, actor=user, action="catalog.attribute_value.create", entity_type="AttributeValue", entity_id=v.id, metadata={"value": v.value})
    return v


def update_attribute_value(s, v: AttributeValue, payload: AttributeValuePayload, user: User) -> AttributeValue:
    data = payload.model_dump(exclude_unset=True)
    data.pop("attribute_id", None)
    if data.get("value") and _value_taken(s, v.attribute_id, data["value"], v.id):
        raise Conflict("This attribute already has that value", details={"value": "Duplicate"})
    changed = _apply(v, data, ("value", "display_name", "sort_order", "is_active"))
    if changed:
        record_event(s, actor=user, action="catalog.attribute_value.update", entity_type="AttributeValue", entity_id=v.id, metadata={"fields": changed})
    return v


def delete_attribute_value(s, v: AttributeValue, user: User) -> None:
    _ensure_unused(s, ListingAttributeValue.attribute_value_id, v.id, "attribute value", ListingAttributeValue.listing_id)
    record_event(s, actor=user, action="catalog.attribute_value.delete", entity_type="AttributeValue", entity_id=v.id, metadata={"value": v.value})
    s.delete(v)


# ---------- Conditions ----------
def _condition_name_taken(s, name: str, exclude_id: int | None = None) -> bool:
    q = s.query(Condition.id).filter(func.lower(Condition.name) == name.lower())
    if exclude_id:
        q = q.filter(Condition.id != exclude_id)
    return q.first() is not None


def create_condition(s, payload: ConditionPayload, user: User) -> Condition:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    if _condition_name_taken(s, payload.name):
        raise Conflict("A condition with this name already exists", details={"name": "Duplicate"})
    order = payload.order if payload.order is not None else (s.query(func.max(Condition.order)).scalar() or 0) + 1
    now = datetime.utcnow()
    c = Condition(
        name=payload.name,
        description=payload.description,
        order=order,
        is_active=True if payload.is_active is None else payload.is_active,
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="catalog.condition.create", entity_type="Condition", entity_id=c.id, metadata={"name": c.name})
    return c


def update_condition(s, c: Condition, payload: ConditionPayload, user: User) -> Condition:
    data = payload.model_dump(exclude_unset=True)
    if data.get("name") and _condition_name_taken(s, data["name"], c.id):
        raise Conflict("A condition with this name already exists", details={"name": "Duplicate"})
    changed = _apply(c, data, ("name", "description", "order", "is_active"))
    if changed:
        c.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="catalog.condition.update", entity_type="Condition", entity_id=c.id, metadata={"fields": changed})
    return c


def delete_condition(s, c: Condition, user: User) -> None:
    _ensure_unused(s, Listing.condition_id, c.id, "condition")
    record_event(s, actor=user, action="catalog.condition.delete", entity_type="Condition", entity_id=c.id, metadata={"name": c.name})
    s.delete(c)


def reorder_conditions(s, ids: list[int], user: User) -> list[Condition]:
    rows = {c.id: c for c in s.query(Condition).filter(Condition.id.in_(ids)).all()}
    missing = [i for i in ids if i not in rows]
    if missing:
        raise ValidationFailed("Unknown condition ids", details={"ids": ", ".join(str(i) for i in missing)})
    now = datetime.utcnow()
    for position, cid in enumerate(ids, start=1):
        rows[cid].order = position
        rows[cid].updated_at = now
    record_event(s, actor=user, action="catalog.condition.reorder", entity_type="Condition", metadata={"ids": ids})
    return [rows[i] for i in ids]
