from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.spipuniform.models import Base

if TYPE_CHECKING:
    from app.spipuniform.models import User
    from app.spipuniform.modules.catalog.models import Attribute, AttributeValue, Condition, ProductCategory, ProductType
    from app.spipuniform.modules.files.models import StoredFile
    from app.spipuniform.modules.geography.models import Locality
    from app.spipuniform.modules.schools.models import School


LISTING_STATUSES = ("draft", "pending", "active", "sold", "removed")
LISTING_TTL_DAYS = 60


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    primary_school_id: Mapped[int | None] = mapped_column(ForeignKey("schools.id", ondelete="SET NULL"), nullable=True)
    locality_id: Mapped[int | None] = mapped_column(ForeignKey("localities.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    primary_school: Mapped["School | None"] = relationship("School", lazy="selectin")
    locality: Mapped["Locality | None"] = relationship("Locality", lazy="selectin")


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        Index("idx_listings_user_id", "user_id"),
        Index("idx_listings_status", "status"),
        Index("idx_listings_school_id", "school_id"),
        Index("idx_listings_product_type_id", "product_type_id"),
        Index("idx_listings_locality_id", "locality_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("product_categories.id", ondelete="RESTRICT"), nullable=False)
    product_type_id: Mapped[int] = mapped_column(ForeignKey("product_types.id", ondelete="RESTRICT"), nullable=False)
    condition_id: Mapped[int] = mapped_column(ForeignKey("conditions.id", ondelete="RESTRICT"), nullable=False)
    school_id: Mapped[int | None] = mapped_column(ForeignKey("schools.id", ondelete="SET NULL"), nullable=True)
    locality_id: Mapped[int] = mapped_column(ForeignKey("localities.id", ondelete="RESTRICT"), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)  # null when free
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    seller: Mapped["User"] = relationship("User", lazy="selectin")
    category: Mapped["ProductCategory"] = relationship("ProductCategory", lazy="selectin")
    product_type: Mapped["ProductType"] = relationship("ProductType", lazy="selectin")
    condition: Mapped["Condition"] = relationship("Condition", lazy="selectin")
    school: Mapped["School | None"] = relationship("School", lazy="selectin")
    locality: Mapped["Locality"] = relationship("Locality", lazy="selectin")
    attribute_values: Mapped[list["ListingAttributeValue"]] = relationship(
        "ListingAttributeValue",
        back_populates="listing",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    images: Mapped[list["ListingImage"]] = relationship(
        "ListingImage",
        back_populates="listing",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ListingImage.order",
    )


class ListingAttributeValue(Base):
    __tablename__ = "listing_attribute_values"
    __table_args__ = (
        UniqueConstraint("listing_id", "attribute_id", name="uq_listing_attribute_values_listing_attribute"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    attribute_id: Mapped[int] = mapped_column(ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False)
    attribute_value_id: Mapped[int | None] = mapped_column(ForeignKey("attribute_values.id", ondelete="SET NULL"), nullable=True)
    custom_value: Mapped[str | None] = mapped_column(String(255), nullable=True)  # free text, or a value not in the list

    listing: Mapped[Listing] = relationship("Listing", back_populates="attribute_values")
    attribute: Mapped["Attribute"] = relationship("Attribute", lazy="selectin")
    attribute_value: Mapped["AttributeValue | None"] = relationship("AttributeValue", lazy="selectin")


class ListingImage(Base):
    __tablename__ = "listing_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(ForeignKey("listings.id", ondelete="CASCADE"), nullable=False)
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    alt_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    listing: Mapped[Listing] = relationship("Listing", back_populates="images")
    file: Mapped["StoredFile"] = relationship("StoredFile", lazy="selectin")
