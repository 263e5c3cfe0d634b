"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    ]


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    def _create(name: str, *cols, indexes: tuple[tuple[str, list[str]], ...] = ()) -> None:
        if name in existing_tables:
            return
        op.create_table(name, *cols)
        for idx_name, idx_cols in indexes:
            op.create_index(idx_name, name, idx_cols)
        existing_tables.add(name)

    # ---------- Identity ----------
    _create(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(50), nullable=True, server_default="user"),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ban_reason", sa.String(500), nullable=True),
        sa.Column("ban_expires", sa.DateTime(timezone=False), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
        indexes=(("idx_users_role", ["role"]), ("idx_users_banned", ["banned"])),
    )
    _create(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(7), nullable=False, server_default="#6B7280"),
        sa.Column("permissions", JSONType, nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )
    _create(
        "verification_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("token_hash", name="uq_verification_tokens_token_hash"),
        indexes=(("idx_verification_tokens_user_purpose", ["user_id", "purpose"]),),
    )
    _create(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at(),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        indexes=(("idx_audit_events_action", ["action"]),),
    )
    _create(
        "auth_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("require_admin_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )

    # ---------- Geography / schools / shops ----------
    _create(
        "counties",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("osm_id", sa.String(64), nullable=True),
        sa.Column("bounding_box", JSONType, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_counties_name"),
        indexes=(("idx_counties_name", ["name"]),),
    )
    _create(
        "localities",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("county_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("osm_id", sa.String(64), nullable=True),
        sa.Column("place_type", sa.String(32), nullable=True),
        sa.Column("centre_lat", sa.Float(), nullable=True),
        sa.Column("centre_lng", sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["county_id"], ["counties.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("county_id", "name", name="uq_localities_county_name"),
        indexes=(("idx_localities_county_id", ["county_id"]), ("idx_localities_name", ["name"])),
    )
    _create(
        "schools",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("county_id", sa.Integer(), nullable=True),
        sa.Column("locality_id", sa.Integer(), nullable=True),
        sa.Column("level", sa.String(16), nullable=False, server_default="primary"),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("csv_source_row", JSONType, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["county_id"], ["counties.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["locality_id"], ["localities.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("external_id", name="uq_schools_external_id"),
        indexes=(
            ("idx_schools_name", ["name"]),
            ("idx_schools_county_id", ["county_id"]),
            ("idx_schools_locality_id", ["locality_id"]),
            ("idx_schools_level", ["level"]),
        ),
    )
    _create(
        "shops",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("contact_email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("locality_id", sa.Integer(), nullable=True),
        sa.Column("membership_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["locality_id"], ["localities.id"], ondelete="SET NULL"),
        indexes=(("idx_shops_user_id", ["user_id"]), ("idx_shops_membership_status", ["membership_status"])),
    )

    # ---------- Catalog ----------
    _create(
        "product_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_product_categories_slug"),
        indexes=(("idx_product_categories_sort_order", ["sort_order"]),),
    )
    _create(
        "product_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["category_id"], ["product_categories.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("slug", name="uq_product_types_slug"),
        indexes=(("idx_product_types_category_id", ["category_id"]),),
    )
    _create(
        "attributes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("product_type_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("input_type", sa.String(32), nullable=False, server_default="text_input"),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("placeholder", sa.String(255), nullable=True),
        sa.Column("help_text", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["product_type_id"], ["product_types.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("product_type_id", "slug", name="uq_attributes_type_slug"),
        indexes=(("idx_attributes_product_type_id", ["product_type_id"]),),
    )
    _create(
        "attribute_values",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("attribute_id", sa.Integer(), nullable=False),
        sa.Column("value", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.ForeignKeyConstraint(["attribute_id"], ["attributes.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("attribute_id", "value", name="uq_attribute_values_attribute_value"),
        indexes=(("idx_attribute_values_attribute_id", ["attribute_id"]),),
    )
    _create(
        "conditions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_conditions_name"),
    )

    # ---------- Files ----------
    _create(
        "storage_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("config", JSONType, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        indexes=(("idx_storage_settings_is_active", ["is_active"]),),
    )
    _create(
        "files",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("type", sa.String(8), nullable=False, server_default="file"),
        sa.Column("provider", sa.String(16), nullable=False, server_default="local"),
        sa.Column("storage_key", sa.Text(), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("sha256", sa.String(64), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["parent_id"], ["files.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        indexes=(
            ("idx_files_parent_id", ["parent_id"]),
            ("idx_files_owner_id", ["owner_id"]),
            ("idx_files_is_deleted", ["is_deleted"]),
        ),
    )

    # ---------- Listings ----------
    _create(
        "user_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("primary_school_id", sa.Integer(), nullable=True),
        sa.Column("locality_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["primary_school_id"], ["schools.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["locality_id"], ["localities.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", name="uq_user_profiles_user_id"),
    )
    _create(
        "listings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("product_type_id", sa.Integer(), nullable=False),
        sa.Column("condition_id", sa.Integer(), nullable=False),
        sa.Column("school_id", sa.Integer(), nullable=True),
        sa.Column("locality_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("size", sa.String(50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("published_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["product_categories.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["product_type_id"], ["product_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["condition_id"], ["conditions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["school_id"], ["schools.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["locality_id"], ["localities.id"], ondelete="RESTRICT"),
        indexes=(
            ("idx_listings_user_id", ["user_id"]),
            ("idx_listings_status", ["status"]),
            ("idx_listings_school_id", ["school_id"]),
            ("idx_listings_product_type_id", ["product_type_id"]),
            ("idx_listings_locality_id", ["locality_id"]),
        ),
    )
    _create(
        "listing_attribute_values",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=False),
        sa.Column("attribute_id", sa.Integer(), nullable=False),
        sa.Column("attribute_value_id", sa.Integer(), nullable=True),
        sa.Column("custom_value", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attribute_id"], ["attributes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attribute_value_id"], ["attribute_values.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("listing_id", "attribute_id", name="uq_listing_attribute_values_listing_attribute"),
    )
    _create(
        "listing_images",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("alt_text", sa.String(255), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
    )

    # ---------- Transactions ----------
    _create(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="sale"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("buyer_user_id", sa.Integer(), nullable=True),
        sa.Column("seller_user_id", sa.Integer(), nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=True),
        sa.Column("item_description", sa.Text(), nullable=False),
        sa.Column("condition_at_sale", sa.String(50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("exchange_method", sa.String(16), nullable=True),
        sa.Column("meeting_location", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("actual_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("buyer_rating", sa.Integer(), nullable=True),
        sa.Column("seller_rating", sa.Integer(), nullable=True),
        sa.Column("buyer_feedback", sa.Text(), nullable=True),
        sa.Column("seller_feedback", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["buyer_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["seller_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="SET NULL"),
        indexes=(
            ("idx_transactions_buyer_id", ["buyer_user_id"]),
            ("idx_transactions_seller_id", ["seller_user_id"]),
            ("idx_transactions_status", ["status"]),
        ),
    )
    _create(
        "transaction_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("sender_user_id", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(16), nullable=False, server_default="general"),
        sa.Column("is_system_message", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_user_id"], ["users.id"], ondelete="SET NULL"),
        indexes=(("idx_transaction_messages_transaction_id", ["transaction_id"]),),
    )

    # ---------- Email / branding ----------
    _create(
        "email_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("config_name", sa.String(100), nullable=False),
        sa.Column("provider", sa.String(16), nullable=False, server_default="smtp"),
        sa.Column("smtp_host", sa.String(255), nullable=True),
        sa.Column("smtp_port", sa.Integer(), nullable=True),
        sa.Column("smtp_user", sa.String(255), nullable=True),
        sa.Column("smtp_password", sa.String(255), nullable=True),
        sa.Column("smtp_secure", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("from_name", sa.String(255), nullable=True),
        sa.Column("from_email", sa.String(320), nullable=False),
        sa.Column("reply_to", sa.String(320), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    _create(
        "email_fragments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="partial"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_email_fragments_name"),
    )
    _create(
        "email_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="custom"),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=True),
        sa.Column("variables", JSONType, nullable=True),
        sa.Column("use_branding", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_header", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("include_footer", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("base_fragment_id", sa.Integer(), nullable=True),
        sa.Column("header_fragment_id", sa.Integer(), nullable=True),
        sa.Column("footer_fragment_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["base_fragment_id"], ["email_fragments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["header_fragment_id"], ["email_fragments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["footer_fragment_id"], ["email_fragments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("name", name="uq_email_templates_name"),
        indexes=(("idx_email_templates_type", ["type"]),),
    )
    _create(
        "email_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("to_email", sa.Text(), nullable=False),
        sa.Column("from_email", sa.String(320), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("provider", sa.String(16), nullable=True),
        sa.Column("message_id", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["template_id"], ["email_templates.id"], ondelete="SET NULL"),
        indexes=(("idx_email_logs_status", ["status"]), ("idx_email_logs_created_at", ["created_at"])),
    )
    _create(
        "branding",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("site_name", sa.String(100), nullable=False),
        sa.Column("site_description", sa.Text(), nullable=True),
        sa.Column("site_url", sa.String(500), nullable=True),
        sa.Column("logo_url", sa.String(500), nullable=True),
        sa.Column("logo_alt", sa.String(255), nullable=True),
        sa.Column("favicon_url", sa.String(500), nullable=True),
        sa.Column("primary_color", sa.String(7), nullable=False, server_default="#3B82F6"),
        sa.Column("secondary_color", sa.String(7), nullable=False, server_default="#64748B"),
        sa.Column("accent_color", sa.String(7), nullable=False, server_default="#10B981"),
        sa.Column("background_color", sa.String(7), nullable=False, server_default="#FFFFFF"),
        sa.Column("text_color", sa.String(7), nullable=False, server_default="#1F2937"),
        sa.Column("primary_font", sa.String(100), nullable=True),
        sa.Column("heading_font", sa.String(100), nullable=True),
        sa.Column("support_email", sa.String(320), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("social_links", JSONType, nullable=True),
        sa.Column("custom_css", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )


def downgrade() -> None:
    for name in (
        "branding",
        "email_logs",
        "email_templates",
        "email_fragments",
        "email_settings",
        "transaction_messages",
        "transactions",
        "listing_images",
        "listing_attribute_values",
        "listings",
        "user_profiles",
        "files",
        "storage_settings",
        "conditions",
        "attribute_values",
        "attributes",
        "product_types",
        "product_categories",
        "shops",
        "schools",
        "localities",
        "counties",
        "auth_settings",
        "audit_events",
        "verification_tokens",
        "roles",
        "users",
    ):
        op.drop_table(name)
