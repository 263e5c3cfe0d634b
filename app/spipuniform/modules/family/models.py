from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base, JSONType

if TYPE_CHECKING:
    from app.spipuniform.modules.schools.models import School


class FamilyMember(Base):
    """A child on a parent's profile, with the uniform sizes they currently wear."""

    __tablename__ = "family_members"
    __table_args__ = (Index("idx_family_members_user_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    school_id: Mapped[int | None] = mapped_column(ForeignKey("schools.id", ondelete="SET NULL"), nullable=True)
    school_year: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_sizes: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # {"shirt": "Age 7-8"}
    growth_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    show_in_profile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    school: Mapped["School | None"] = relationship("School", lazy="selectin")
