from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base, JSONType


class County(Base):
    __tablename__ = "counties"
    __table_args__ = (
        Index("idx_counties_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    osm_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bounding_box: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # {min_lat, max_lat, min_lon, max_lon}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    localities: Mapped[list["Locality"]] = relationship(
        "Locality",
        back_populates="county",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="Locality.name",
    )


class Locality(Base):
    __tablename__ = "localities"
    __table_args__ = (
        UniqueConstraint("county_id", "name", name="uq_localities_county_name"),
        Index("idx_localities_county_id", "county_id"),
        Index("idx_localities_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    county_id: Mapped[int] = mapped_column(ForeignKey("counties.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    osm_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    place_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # town, village, beach, ...
    centre_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    centre_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    county: Mapped[County] = relationship("County", back_populates="localities", lazy="selectin")
