"""SQLAlchemy ORM models."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from exclusive_listings.models.pydantic_models import MediaCategory


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Listing(Base):
    """Exclusive listing record with its denormalized photo summary."""

    __tablename__ = "listings"

    # Self-issued ids come from ListingIdCounter, never from autoincrement
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    listing_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    # Address
    street_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    street_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    unit_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state_or_province: Mapped[str | None] = mapped_column(String(50), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Headline facts
    property_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    list_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bedrooms_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bathrooms_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    standard_status: Mapped[str] = mapped_column(String(30), default="Active", nullable=False)

    # Summary (recomputed from media_assets, never written directly)
    photo_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    main_photo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    media: Mapped[list["MediaAsset"]] = relationship(
        "MediaAsset", back_populates="listing", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, city='{self.city}', photos={self.photo_count})>"


class MediaAsset(Base):
    """One stored media file belonging to a listing."""

    __tablename__ = "media_assets"
    __table_args__ = (Index("ix_media_assets_listing_order", "listing_id", "order_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    listing_key: Mapped[str] = mapped_column(String(128), nullable=False)
    media_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    category: Mapped[MediaCategory] = mapped_column(
        Enum(MediaCategory), default=MediaCategory.PHOTO, nullable=False
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # File facts
    mime_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Descriptive text
    title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    alt_text: Mapped[str | None] = mapped_column(String(300), nullable=True)
    caption: Mapped[str | None] = mapped_column(String(300), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    listing: Mapped["Listing"] = relationship("Listing", back_populates="media")

    def __repr__(self) -> str:
        return (
            f"<MediaAsset(id={self.id}, listing_id={self.listing_id}, "
            f"order={self.order_index}, url='{self.url}')>"
        )


class ListingIdCounter(Base):
    """Durable counter row backing listing id allocation."""

    __tablename__ = "listing_id_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ListingIdCounter(name='{self.name}', last_value={self.last_value})>"
