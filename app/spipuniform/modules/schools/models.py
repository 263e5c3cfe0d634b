from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base, JSONType

if TYPE_CHECKING:
    from app.spipuniform.modules.geography.models import County, Locality


SCHOOL_LEVELS = ("primary", "secondary", "mixed")


class School(Base):
    __tablename__ = "schools"
    __table_args__ = (
        Index("idx_schools_name", "name"),
        Index("idx_schools_county_id", "county_id"),
        Index("idx_schools_locality_id", "locality_id"),
        Index("idx_schools_level", "level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    county_id: Mapped[int | None] = mapped_column(ForeignKey("counties.id", ondelete="SET NULL"), nullable=True)
    locality_id: Mapped[int | None] = mapped_column(ForeignKey("localities.id", ondelete="SET NULL"), nullable=True)
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="primary")  # primary, secondary, mixed

    # Department roll number (or any upstream id) used to match CSV re-imports.
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    csv_source_row: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    county: Mapped["County | None"] = relationship("County", lazy="selectin")
    locality: Mapped["Locality | None"] = relationship("Locality", lazy="selectin")
