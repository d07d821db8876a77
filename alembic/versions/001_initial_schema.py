"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Create listings, media_assets and listing_id_counters.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the listing, media and id counter tables."""
    op.create_table(
        "listings",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("listing_key", sa.String(length=128), nullable=False),
        sa.Column("street_number", sa.String(length=20), nullable=True),
        sa.Column("street_name", sa.String(length=200), nullable=True),
        sa.Column("unit_number", sa.String(length=30), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state_or_province", sa.String(length=50), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("property_type", sa.String(length=50), nullable=True),
        sa.Column("list_price", sa.Integer(), nullable=True),
        sa.Column("bedrooms_total", sa.Integer(), nullable=True),
        sa.Column("bathrooms_total", sa.Float(), nullable=True),
        sa.Column("standard_status", sa.String(length=30), nullable=False),
        sa.Column("photo_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("main_photo_url", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("listing_key"),
    )

    op.create_table(
        "media_assets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("listing_id", sa.Integer(), nullable=False),
        sa.Column("listing_key", sa.String(length=128), nullable=False),
        sa.Column("media_key", sa.String(length=64), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=False),
        sa.Column(
            "category",
            sa.Enum("PHOTO", "VIDEO", "FLOOR_PLAN", "DOCUMENT", "OTHER", name="mediacategory"),
            nullable=False,
        ),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=50), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=True),
        sa.Column("alt_text", sa.String(length=300), nullable=True),
        sa.Column("caption", sa.String(length=300), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("media_key"),
    )
    op.create_index(
        op.f("ix_media_assets_listing_id"), "media_assets", ["listing_id"], unique=False
    )
    op.create_index(op.f("ix_media_assets_url"), "media_assets", ["url"], unique=False)
    op.create_index(
        "ix_media_assets_listing_order", "media_assets", ["listing_id", "order_index"], unique=False
    )

    op.create_table(
        "listing_id_counters",
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("listing_id_counters")
    op.drop_index("ix_media_assets_listing_order", table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_url"), table_name="media_assets")
    op.drop_index(op.f("ix_media_assets_listing_id"), table_name="media_assets")
    op.drop_table("media_assets")
    op.drop_table("listings")
