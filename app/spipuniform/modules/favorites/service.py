from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.spipuniform.audit import record_event
from app.spipuniform.errors import Conflict, NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.favorites.models import Favorite
from app.spipuniform.modules.listings.models import Listing
from app.spipuniform.modules.listings.service import is_publicly_visible, listing_to_dict
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

logger = logging.getLogger(__name__)


class FavoritePayload(Payload):
    listing_id: int


def favorite_to_dict(f: Favorite) -> dict[str, Any]:
    return {
        "id": f.id,
        "listing_id": f.listing_id,
        "created_at": iso(f.created_at),
        "listing": listing_to_dict(f.listing) if f.listing else None,
    }


def favorites_query(s, user: User):
    # Listings that are no longer live drop out of the list but keep their row.
    now = datetime.utcnow()
    return (
        s.query(Favorite)
        .join(Listing, Listing.id == Favorite.listing_id)
        .filter(
            Favorite.user_id == user.id,
            Listing.status == "active",
            (Listing.expires_at.is_(None)) | (Listing.expires_at > now),
        )
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
    )


def add_favorite(s, payload: FavoritePayload, user: User) -> Favorite:
    l = s.get(Listing, payload.listing_id)
    if not l or not is_publicly_visible(l):
        raise NotFound("Listing not found or not available")
    if l.user_id == user.id:
        raise ValidationFailed("You cannot favorite your own listing")
    existing = (
        s.query(Favorite)
        .filter(Favorite.user_id == user.id, Favorite.listing_id == l.id)
        .one_or_none()
    )
    if existing:
        raise Conflict("Listing is already in your favorites", status_code=409)
    f = Favorite(user_id=user.id, listing_id=l.id, created_at=datetime.utcnow())
    s.add(f)
    s.flush()
    record_event(s, actor=user, action="favorite.add", entity_type="Listing", entity_id=l.id)
    return f


def remove_favorite(s, user: User, *, listing_id: int | None = None, favorite_id: int | None = None) -> None:
    if listing_id is None and favorite_id is None:
        raise ValidationFailed("Either listing_id or favorite_id is required")
    q = s.query(Favorite).filter(Favorite.user_id == user.id)
    if favorite_id is not None:
        q = q.filter(Favorite.id == favorite_id)
    else:
        q = q.filter(Favorite.listing_id == listing_id)
    f = q.one_or_none()
    if not f:
        raise NotFound("Favorite not found")
    s.delete(f)
    record_event(s, actor=user, action="favorite.remove", entity_type="Listing", entity_id=f.listing_id)
    logger.debug("User %s removed favorite %s", user.id, f.id)
