from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")

PENDING_APPROVAL = "PENDING_APPROVAL"
REJECTED = "REJECTED"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_banned", "banned"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Role is referenced by name; renames are propagated by the role service.
    role: Mapped[str | None] = mapped_column(String(50), nullable=True, default="user")

    banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ban_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def is_pending_approval(self) -> bool:
        return bool(self.banned and self.ban_reason == PENDING_APPROVAL)

    def ban_is_active(self, now: datetime | None = None) -> bool:
        if not self.banned:
            return False
        if self.ban_expires is None:
            return True
        return self.ban_expires > (now or datetime.utcnow())


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)  # e.g. "admin"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6B7280")
    permissions: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class VerificationToken(Base):
    """
    Single-use token for email verification and password reset.
    Only the sha256 of the token is stored.
    """

    __tablename__ = "verification_tokens"
    __table_args__ = (
        Index("idx_verification_tokens_user_purpose", "user_id", "purpose"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)  # email_verification | password_reset
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table generic; module tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        Index("idx_audit_events_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "role.delete"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.spipuniform.modules.user_management.models import AuthSettings  # noqa: E402,F401
from app.spipuniform.modules.geography.models import County, Locality  # noqa: E402,F401
from app.spipuniform.modules.schools.models import School  # noqa: E402,F401
from app.spipuniform.modules.shops.models import Shop  # noqa: E402,F401
from app.spipuniform.modules.catalog.models import (  # noqa: E402,F401
    Attribute,
    AttributeValue,
    Condition,
    ProductCategory,
    ProductType,
)
from app.spipuniform.modules.files.models import StorageSetting, StoredFile  # noqa: E402,F401
from app.spipuniform.modules.listings.models import (  # noqa: E402,F401
    Listing,
    ListingAttributeValue,
    ListingImage,
    UserProfile,
)
from app.spipuniform.modules.transactions.models import Transaction, TransactionMessage  # noqa: E402,F401
from app.spipuniform.modules.email.models import EmailFragment, EmailLog, EmailSetting, EmailTemplate  # noqa: E402,F401
from app.spipuniform.modules.branding.models import Branding  # noqa: E402,F401
