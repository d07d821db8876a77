"""API request and response schemas."""

from pydantic import BaseModel, Field

from exclusive_listings.models.pydantic_models import AssetRecord, PerFileResult


class DeleteResponse(BaseModel):
    """Response for delete operations."""

    success: bool
    message: str


class NextIdResponse(BaseModel):
    """Preview of the next listing id."""

    next_id: int = Field(description="Id the next created listing would get (advisory)")


class PhotoRead(BaseModel):
    """A listing photo as shown to API clients."""

    id: int
    url: str
    sort_order: int = Field(description="1-based display position")
    is_primary: bool
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None
    title: str | None = None
    alt_text: str | None = None
    caption: str | None = None

    @classmethod
    def from_asset(cls, asset: AssetRecord) -> "PhotoRead":
        return cls(
            id=asset.id,
            url=asset.url,
            sort_order=asset.order_index,
            is_primary=asset.is_primary,
            mime_type=asset.mime_type,
            width=asset.width,
            height=asset.height,
            title=asset.title,
            alt_text=asset.alt_text,
            caption=asset.caption,
        )


class PhotoListResponse(BaseModel):
    """Photos of a listing in display order."""

    listing_id: int
    photos: list[PhotoRead]
    count: int


class UploadResultItem(BaseModel):
    """Outcome of one file of a batch upload."""

    filename: str
    success: bool
    data: PhotoRead | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def from_result(cls, result: PerFileResult) -> "UploadResultItem":
        return cls(
            filename=result.filename,
            success=result.success,
            data=PhotoRead.from_asset(result.asset) if result.asset else None,
            error=result.error,
            error_code=result.error_code,
        )


class BatchUploadResponse(BaseModel):
    """Response for a multi-file photo upload."""

    results: list[UploadResultItem]
    uploaded: int = Field(description="Files stored successfully")
    failed: int = Field(description="Files rejected or not stored")


class ReorderRequest(BaseModel):
    """New photo order, first photo first."""

    order: list[int] = Field(description="Every photo id of the listing exactly once")


class BlobDeletedRequest(BaseModel):
    """Notification that a stored file was removed outside the application."""

    url: str = Field(..., min_length=1)


class BlobDeletedResponse(BaseModel):
    """Whether the notification concerned a file managed here."""

    url: str
    handled: bool


class RefreshSummariesResponse(BaseModel):
    """Result of recomputing every listing's photo summary."""

    listings_fixed: int
