"""Pydantic models for data validation."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MediaCategory(str, Enum):
    """Category of a media asset attached to a listing."""

    PHOTO = "Photo"
    VIDEO = "Video"
    FLOOR_PLAN = "FloorPlan"
    DOCUMENT = "Document"
    OTHER = "Other"


class BlobStatus(str, Enum):
    """Outcome of checking the blob store for an asset URL."""

    PRESENT = "present"
    MISSING = "missing"
    UNKNOWN = "unknown"


class ListingCreate(BaseModel):
    """Data required to create an exclusive listing record."""

    street_number: str | None = Field(None, max_length=20)
    street_name: str | None = Field(None, max_length=200)
    unit_number: str | None = Field(None, max_length=30)
    city: str | None = Field(None, max_length=100)
    state_or_province: str | None = Field(None, max_length=50)
    postal_code: str | None = Field(None, max_length=20)
    property_type: str | None = Field(None, max_length=50)
    list_price: int | None = Field(None, ge=0, description="List price in USD")
    bedrooms_total: int | None = Field(None, ge=0)
    bathrooms_total: float | None = Field(None, ge=0)
    standard_status: str = Field("Active", max_length=30)


class ListingRead(ListingCreate):
    """Listing data as read from the database."""

    id: int
    listing_key: str
    photo_count: int = 0
    main_photo_url: str | None = None
    created_at: datetime
    modified_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ListingAddress(BaseModel):
    """Address and headline facts used to describe a listing's photos."""

    listing_id: int
    full_address: str
    street_address: str = ""
    city: str = ""
    state: str = ""
    property_type: str = "Property"
    price: str = ""
    beds: str = ""
    baths: str = ""

    model_config = ConfigDict(frozen=True)


class ListingSummary(BaseModel):
    """Derived photo summary stored on the listing row."""

    listing_id: int
    photo_count: int = Field(0, ge=0)
    primary_photo_url: str | None = None


class UploadRequest(BaseModel):
    """A single uploaded photo file."""

    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., description="Declared content type of the upload")
    size_bytes: int = Field(..., ge=0)
    data: bytes = Field(..., repr=False)
    explicit_order: int | None = Field(
        None, ge=1, description="1-based position to insert at (None = append)"
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _size_matches_data(self) -> "UploadRequest":
        if self.size_bytes != len(self.data):
            raise ValueError(
                f"size_bytes ({self.size_bytes}) does not match payload length ({len(self.data)})"
            )
        return self

    @classmethod
    def from_bytes(
        cls,
        filename: str,
        data: bytes,
        mime_type: str,
        explicit_order: int | None = None,
    ) -> "UploadRequest":
        """Build a request from raw bytes, filling in the size."""
        return cls(
            filename=filename,
            mime_type=mime_type,
            size_bytes=len(data),
            data=data,
            explicit_order=explicit_order,
        )


class AssetRecord(BaseModel):
    """Media asset data as read from the database."""

    id: int
    listing_id: int
    listing_key: str
    url: str
    category: MediaCategory = MediaCategory.PHOTO
    order_index: int = Field(..., ge=1)
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None
    title: str | None = None
    alt_text: str | None = None
    caption: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_primary(self) -> bool:
        """Whether this asset is the listing's primary photo."""
        return self.order_index == 1


class PerFileResult(BaseModel):
    """Outcome of one file within a batch upload."""

    filename: str
    success: bool
    asset: AssetRecord | None = None
    error: str | None = None
    error_code: str | None = None


class ReconcileResult(BaseModel):
    """Aggregated outcome of a reconciliation pass."""

    checked: int = 0
    orphaned: int = 0
    cleaned: int = 0
    errors: list[str] = Field(default_factory=list)
    affected_listings: list[int] = Field(default_factory=list)


class PhotoStats(BaseModel):
    """Format statistics for exclusive listing photos."""

    total_photos: int = 0
    webp_photos: int = 0
    non_webp_photos: int = 0
    percent_optimized: int = Field(0, ge=0, le=100)


class OptimizeResult(BaseModel):
    """Outcome of one batch of re-optimizing stored photos."""

    processed: int = 0
    optimized: int = 0
    skipped: int = 0
    errors: int = 0
    bytes_saved: int = 0
    remaining: int = 0
    next_offset: int = 0
    messages: list[str] = Field(default_factory=list)
