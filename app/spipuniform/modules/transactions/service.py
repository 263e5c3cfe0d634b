from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import Field, field_validator
from sqlalchemy import or_

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.listings.models import Listing
from app.spipuniform.modules.transactions.models import Transaction, TransactionMessage
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Transaction not found or access denied"

_REQUIRED = ("type", "status", "item_description", "price", "currency")

BUYER_FIELDS = ("buyer_rating", "buyer_feedback")
SELLER_FIELDS = (
    "type",
    "status",
    "buyer_user_id",
    "item_description",
    "condition_at_sale",
    "price",
    "currency",
    "exchange_method",
    "meeting_location",
    "scheduled_date",
    "actual_date",
    "notes",
    "seller_rating",
    "seller_feedback",
)


class TransactionPayload(Payload):
    type: Literal["purchase", "sale", "exchange"] | None = None
    status: Literal["pending", "completed", "cancelled"] | None = None
    buyer_user_id: int | None = None
    listing_id: int | None = None
    item_description: str | None = Field(None, min_length=1)
    condition_at_sale: str | None = Field(None, max_length=50)
    price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    exchange_method: Literal["pickup", "delivery", "postal"] | None = None
    meeting_location: str | None = None
    scheduled_date: datetime | None = None
    actual_date: datetime | None = None
    notes: str | None = None
    buyer_rating: int | None = Field(None, ge=1, le=5)
    seller_rating: int | None = Field(None, ge=1, le=5)
    buyer_feedback: str | None = None
    seller_feedback: str | None = None

    @field_validator("scheduled_date", "actual_date")
    @classmethod
    def _naive(cls, v: datetime | None) -> datetime | None:
        return v.replace(tzinfo=None) if v is not None else v

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str | None) -> str | None:
        return v.upper() if v else v


class MessagePayload(Payload):
    message: str = Field(..., min_length=1, max_length=5000)
    message_type: Literal["general", "location", "schedule", "feedback"] = "general"


def _user_summary(u: User | None) -> dict[str, Any] | None:
    if u is None:
        return None
    return {"id": u.id, "name": u.name}


def transaction_to_dict(t: Transaction, *, viewer: User | None = None) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": t.id,
        "type": t.type,
        "status": t.status,
        "buyer_user_id": t.buyer_user_id,
        "seller_user_id": t.seller_user_id,
        "buyer": _user_summary(t.buyer),
        "seller": _user_summary(t.seller),
        "listing_id": t.listing_id,
        "listing_title": t.listing.title if t.listing else None,
        "item_description": t.item_description,
        "condition_at_sale": t.condition_at_sale,
        "price": str(t.price) if t.price is not None else None,
        "currency": t.currency,
        "exchange_method": t.exchange_method,
        "meeting_location": t.meeting_location,
        "scheduled_date": iso(t.scheduled_date),
        "actual_date": iso(t.actual_date),
        "notes": t.notes,
        "buyer_rating": t.buyer_rating,
        "seller_rating": t.seller_rating,
        "buyer_feedback": t.buyer_feedback,
        "seller_feedback": t.seller_feedback,
        "completed_at": iso(t.completed_at),
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }
    if viewer is not None:
        d["role"] = "seller" if t.seller_user_id == viewer.id else "buyer"
    return d


def message_to_dict(m: TransactionMessage) -> dict[str, Any]:
    return {
        "id": m.id,
        "transaction_id": m.transaction_id,
        "sender_user_id": m.sender_user_id,
        "sender_name": m.sender.name if m.sender else None,
        "message": m.message,
        "message_type": m.message_type,
        "is_system_message": m.is_system_message,
        "read_at": iso(m.read_at),
        "created_at": iso(m.created_at),
    }


def user_transactions_query(s, user: User, *, side: str | None = None, status: str | None = None):
    q = s.query(Transaction)
    if side == "buyer":
        q = q.filter(Transaction.buyer_user_id == user.id)
    elif side == "seller":
        q = q.filter(Transaction.seller_user_id == user.id)
    else:
        q = q.filter(or_(Transaction.buyer_user_id == user.id, Transaction.seller_user_id == user.id))
    if status:
        q = q.filter(Transaction.status == status)
    return q.order_by(Transaction.created_at.desc(), Transaction.id.desc())


def get_transaction_for_participant(s, transaction_id: int, user: User) -> Transaction:
    t = s.get(Transaction, transaction_id)
    if not t or user.id not in (t.buyer_user_id, t.seller_user_id):
        raise NotFound(ACCESS_DENIED)
    return t


def _check_buyer(s, buyer_user_id: int | None, seller: User) -> None:
    if buyer_user_id is None:
        return
    if buyer_user_id == seller.id:
        raise ValidationFailed("Buyer and seller must be different users", details={"buyer_user_id": "Cannot be yourself"})
    if not s.get(User, buyer_user_id):
        raise ValidationFailed("Buyer not found", details={"buyer_user_id": "Unknown user"})


def _mark_listing_sold(l: Listing | None, now: datetime) -> None:
    if l is not None and l.status != "sold":
        l.status = "sold"
        l.updated_at = now


def create_transaction(s, payload: TransactionPayload, user: User) -> Transaction:
    listing: Listing | None = None
    if payload.listing_id is not None:
        listing = s.get(Listing, payload.listing_id)
        if not listing or listing.user_id != user.id:
            raise ValidationFailed("Listing not found", details={"listing_id": "Must be one of your listings"})
    _check_buyer(s, payload.buyer_user_id, user)

    item_description = payload.item_description or (listing.title if listing else None)
    if not item_description:
        raise ValidationFailed("Validation failed", details={"item_description": "Item description is required"})
    price = payload.price
    if price is None and listing is not None:
        price = Decimal("0.00") if listing.is_free else listing.price
    if price is None:
        raise ValidationFailed("Validation failed", details={"price": "Field required"})

    now = datetime.utcnow()
    status = payload.status or "pending"
    t = Transaction(
        type=payload.type or "sale",
        status=status,
        buyer_user_id=payload.buyer_user_id,
        seller_user_id=user.id,
        listing_id=listing.id if listing else None,
        item_description=item_description,
        condition_at_sale=payload.condition_at_sale or (listing.condition.name if listing and listing.condition else None),
        price=price,
        currency=payload.currency or "EUR",
        exchange_method=payload.exchange_method,
        meeting_location=payload.meeting_location,
        scheduled_date=payload.scheduled_date,
        actual_date=payload.actual_date,
        notes=payload.notes,
        seller_rating=payload.seller_rating,
        seller_feedback=payload.seller_feedback,
        completed_at=now if status == "completed" else None,
        created_at=now,
        updated_at=now,
    )
    s.add(t)
    if status == "completed":
        _mark_listing_sold(listing, now)
    s.flush()
    record_event(
        s,
        actor=user,
        action="transaction.create",
        entity_type="Transaction",
        entity_id=t.id,
        metadata={"listing_id": t.listing_id, "buyer_user_id": t.buyer_user_id, "status": t.status},
    )
    return t


def update_transaction(s, t: Transaction, payload: TransactionPayload, user: User) -> Transaction:
    """Each party edits only its own side; the seller owns the deal terms."""
    data = payload.model_dump(exclude_unset=True)
    allowed = SELLER_FIELDS if user.id == t.seller_user_id else BUYER_FIELDS
    denied = sorted(k for k in data if k not in allowed)
    if denied:
        raise ValidationFailed(
            "You cannot change these fields",
            details={k: "Not allowed for your side of the transaction" for k in denied},
        )
    missing = [k for k in _REQUIRED if k in data and data[k] is None]
    if missing:
        raise ValidationFailed("Validation failed", details={k: "Field required" for k in missing})
    if "buyer_user_id" in data:
        _check_buyer(s, data["buyer_user_id"], user)

    now = datetime.utcnow()
    changed: list[str] = []
    for k in allowed:
        if k in data and getattr(t, k) != data[k]:
            setattr(t, k, data[k])
            changed.append(k)
    if "status" in changed and t.status == "completed":
        t.completed_at = now
        _mark_listing_sold(t.listing, now)
    if changed:
        t.updated_at = now
        record_event(
            s,
            actor=user,
            action="transaction.update",
            entity_type="Transaction",
            entity_id=t.id,
            metadata={"fields": changed, "status": t.status},
        )
    return t


def list_messages(s, t: Transaction, user: User) -> list[TransactionMessage]:
    """Messages oldest first; the other party's unread ones are marked read."""
    now = datetime.utcnow()
    marked = (
        s.query(TransactionMessage)
        .filter(
            TransactionMessage.transaction_id == t.id,
            TransactionMessage.read_at.is_(None),
            or_(TransactionMessage.sender_user_id.is_(None), TransactionMessage.sender_user_id != user.id),
        )
        .update({TransactionMessage.read_at: now}, synchronize_session="fetch")
    )
    if marked:
        s.expire(t, ["messages"])
        logger.debug("Marked %s message(s) read on transaction %s", marked, t.id)
    return (
        s.query(TransactionMessage)
        .filter(TransactionMessage.transaction_id == t.id)
        .order_by(TransactionMessage.created_at.asc(), TransactionMessage.id.asc())
        .all()
    )


def post_message(s, t: Transaction, payload: MessagePayload, user: User) -> TransactionMessage:
    now = datetime.utcnow()
    m = TransactionMessage(
        transaction_id=t.id,
        sender_user_id=user.id,
        message=payload.message,
        message_type=payload.message_type,
        is_system_message=False,
        created_at=now,
    )
    s.add(m)
    t.updated_at = now
    s.flush()
    return m
