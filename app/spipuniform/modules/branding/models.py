from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.spipuniform.models import Base, JSONType


class Branding(Base):
    __tablename__ = "branding"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_name: Mapped[str] = mapped_column(String(100), nullable=False)
    site_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    site_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    logo_alt: Mapped[str | None] = mapped_column(String(255), nullable=True)
    favicon_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    primary_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#3B82F6")
    secondary_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#64748B")
    accent_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#10B981")
    background_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#FFFFFF")
    text_color: Mapped[str] = mapped_column(String(7), nullable=False, default="#1F2937")
    primary_font: Mapped[str | None] = mapped_column(String(100), nullable=True)
    heading_font: Mapped[str | None] = mapped_column(String(100), nullable=True)
    support_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    social_links: Mapped[dict | None] = mapped_column(JSONType, nullable=True)  # {facebook: url, ...}
    custom_css: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
