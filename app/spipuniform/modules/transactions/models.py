from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base

if TYPE_CHECKING:
    from app.spipuniform.models import User
    from app.spipuniform.modules.listings.models import Listing


TRANSACTION_TYPES = ("purchase", "sale", "exchange")
TRANSACTION_STATUSES = ("pending", "completed", "cancelled")
EXCHANGE_METHODS = ("pickup", "delivery", "postal")
MESSAGE_TYPES = ("general", "location", "schedule", "feedback")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_buyer_id", "buyer_user_id"),
        Index("idx_transactions_seller_id", "seller_user_id"),
        Index("idx_transactions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="sale")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    buyer_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    seller_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    listing_id: Mapped[int | None] = mapped_column(ForeignKey("listings.id", ondelete="SET NULL"), nullable=True)

    item_description: Mapped[str] = mapped_column(Text, nullable=False)
    condition_at_sale: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    exchange_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    meeting_location: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    actual_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    buyer_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # buyer rates the seller
    seller_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seller rates the buyer
    buyer_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    seller_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    buyer: Mapped["User | None"] = relationship("User", foreign_keys=[buyer_user_id], lazy="selectin")
    seller: Mapped["User"] = relationship("User", foreign_keys=[seller_user_id], lazy="selectin")
    listing: Mapped["Listing | None"] = relationship("Listing", lazy="selectin")
    messages: Mapped[list["TransactionMessage"]] = relationship(
        "TransactionMessage",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionMessage.created_at",
    )


class TransactionMessage(Base):
    __tablename__ = "transaction_messages"
    __table_args__ = (
        Index("idx_transaction_messages_transaction_id", "transaction_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    sender_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="general")
    is_system_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="messages")
    sender: Mapped["User | None"] = relationship("User", lazy="selectin")
