from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base

if TYPE_CHECKING:
    from app.spipuniform.models import User
    from app.spipuniform.modules.item_requests.models import ItemRequest
    from app.spipuniform.modules.listings.models import Listing


REPORT_REASONS = ("spam", "inappropriate", "scam", "harassment", "fake", "other")
REPORT_STATUSES = ("open", "reviewing", "resolved", "dismissed")


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (Index("idx_reports_status", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reporter_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    listing_id: Mapped[int | None] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=True)
    request_id: Mapped[int | None] = mapped_column(ForeignKey("requests.id", ondelete="CASCADE"), nullable=True)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    handled_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    handled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    handler_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    reporter: Mapped["User | None"] = relationship("User", foreign_keys=[reporter_user_id], lazy="selectin")
    handler: Mapped["User | None"] = relationship("User", foreign_keys=[handled_by], lazy="selectin")
    listing: Mapped["Listing | None"] = relationship("Listing", lazy="selectin")
    item_request: Mapped["ItemRequest | None"] = relationship("ItemRequest", lazy="selectin")
