from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base

if TYPE_CHECKING:
    from app.spipuniform.models import User
    from app.spipuniform.modules.catalog.models import ProductType
    from app.spipuniform.modules.geography.models import Locality
    from app.spipuniform.modules.schools.models import School


REQUEST_STATUSES = ("open", "fulfilled", "closed")


class ItemRequest(Base):
    """A "wanted" post: a parent looking for a uniform item they don't have yet."""

    __tablename__ = "requests"
    __table_args__ = (
        Index("idx_requests_user_id", "user_id"),
        Index("idx_requests_status", "status"),
        Index("idx_requests_product_type_id", "product_type_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    product_type_id: Mapped[int] = mapped_column(ForeignKey("product_types.id", ondelete="RESTRICT"), nullable=False)
    school_id: Mapped[int | None] = mapped_column(ForeignKey("schools.id", ondelete="SET NULL"), nullable=True)
    locality_id: Mapped[int] = mapped_column(ForeignKey("localities.id", ondelete="RESTRICT"), nullable=False)
    size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    condition_preference: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    requester: Mapped["User"] = relationship("User", lazy="selectin")
    product_type: Mapped["ProductType"] = relationship("ProductType", lazy="selectin")
    school: Mapped["School | None"] = relationship("School", lazy="selectin")
    locality: Mapped["Locality"] = relationship("Locality", lazy="selectin")
