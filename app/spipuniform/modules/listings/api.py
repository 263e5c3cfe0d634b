from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import Blueprint, g, jsonify, request

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.modules.listings.models import LISTING_STATUSES, Listing
from app.spipuniform.modules.listings.service import (
    ListingPayload,
    ProfilePayload,
    create_listing,
    get_listing_for_owner,
    get_profile,
    is_publicly_visible,
    listing_to_dict,
    marketplace_query,
    profile_to_dict,
    record_view,
    remove_listing,
    update_listing,
    upsert_profile,
)
from app.spipuniform.rbac import is_admin, require_login
from app.spipuniform.utils import arg_bool, arg_int, page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("listings", __name__)

_SORTS = {
    "created_at": Listing.created_at,
    "updated_at": Listing.updated_at,
    "published_at": Listing.published_at,
    "price": Listing.price,
    "title": Listing.title,
}


def _arg_decimal(name: str) -> Decimal | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation as e:
        raise ValidationFailed(f"Query parameter '{name}' must be a number.") from e
    if not value.is_finite():
        raise ValidationFailed(f"Query parameter '{name}' must be a number.")
    return value


# ---------- Own listings ----------
@bp.get("/listings")
@require_login
def listings_list():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=tuple(_SORTS))
    q = s.query(Listing).filter(Listing.user_id == g.current_user.id)
    status = (request.args.get("status") or "").strip()
    if status:
        if status not in LISTING_STATUSES:
            raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(LISTING_STATUSES)}")
        q = q.filter(Listing.status == status)
    elif not arg_bool("include_inactive"):
        q = q.filter(Listing.status.notin_(("sold", "removed")))
    col = _SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), Listing.id.desc())
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [listing_to_dict(l) for l in rows], "pagination": pagination})


@bp.post("/listings")
@require_login
def listings_create():
    s = db_session()
    l = create_listing(s, parse_json(ListingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": listing_to_dict(l)}), 201


@bp.get("/listings/<int:listing_id>")
def listings_detail(listing_id: int):
    """Owners/admins see any status; everyone else only live listings, which counts a view."""
    s = db_session()
    l = s.get(Listing, listing_id)
    user = getattr(g, "current_user", None)
    if not l:
        raise NotFound("Listing not found")
    is_owner = user is not None and (l.user_id == user.id or is_admin(user))
    if not is_owner:
        if not is_publicly_visible(l):
            raise NotFound("Listing not found")
        record_view(s, l)
        s.commit()
    return jsonify({"success": True, "data": listing_to_dict(l)})


@bp.put("/listings/<int:listing_id>")
@require_login
def listings_update(listing_id: int):
    s = db_session()
    l = get_listing_for_owner(s, listing_id, g.current_user)
    update_listing(s, l, parse_json(ListingPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": listing_to_dict(l)})


@bp.delete("/listings/<int:listing_id>")
@require_login
def listings_delete(listing_id: int):
    s = db_session()
    l = get_listing_for_owner(s, listing_id, g.current_user)
    remove_listing(s, l, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Listing removed"})


# ---------- Marketplace ----------
@bp.get("/marketplace/search")
def marketplace_search():
    s = db_session()
    params = page_params(default_sort="published_at", allowed_sorts=tuple(_SORTS), default_limit=20)
    min_price = _arg_decimal("min_price")
    max_price = _arg_decimal("max_price")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationFailed("min_price cannot be greater than max_price")
    q = marketplace_query(
        s,
        q=(request.args.get("q") or "").strip(),
        school_id=arg_int("school_id"),
        category_id=arg_int("category_id"),
        product_type_id=arg_int("product_type_id"),
        condition_id=arg_int("condition_id"),
        locality_id=arg_int("locality_id"),
        county_id=arg_int("county_id"),
        min_price=min_price,
        max_price=max_price,
        free=arg_bool("free"),
    )
    col = _SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), Listing.id.desc())
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [listing_to_dict(l) for l in rows], "pagination": pagination})


# ---------- Profile ----------
@bp.get("/me/profile")
@require_login
def profile_get():
    s = db_session()
    return jsonify({"success": True, "data": profile_to_dict(get_profile(s, g.current_user), g.current_user)})


@bp.put("/me/profile")
@require_login
def profile_put():
    s = db_session()
    p = upsert_profile(s, g.current_user, parse_json(ProfilePayload))
    s.commit()
    return jsonify({"success": True, "data": profile_to_dict(p, g.current_user)})
