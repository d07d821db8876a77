"""Data models for exclusive listings."""

from exclusive_listings.models.pydantic_models import (
    AssetRecord,
    BlobStatus,
    ListingCreate,
    ListingRead,
    ListingSummary,
    MediaCategory,
    OptimizeResult,
    PerFileResult,
    ReconcileResult,
    UploadRequest,
)

__all__ = [
    "AssetRecord",
    "BlobStatus",
    "ListingCreate",
    "ListingRead",
    "ListingSummary",
    "MediaCategory",
    "OptimizeResult",
    "PerFileResult",
    "ReconcileResult",
    "UploadRequest",
]
