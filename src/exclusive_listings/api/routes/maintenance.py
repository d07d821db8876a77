"""Maintenance API endpoints: reconciliation and summary repair."""

from fastapi import APIRouter, Query

from exclusive_listings.api.dependencies import (
    BlobStoreDep,
    MediaServiceDep,
    ReconcilerDep,
    SummaryServiceDep,
)
from exclusive_listings.api.errors import to_http_exception
from exclusive_listings.api.schemas import (
    BlobDeletedRequest,
    BlobDeletedResponse,
    RefreshSummariesResponse,
)
from exclusive_listings.models.pydantic_models import OptimizeResult, PhotoStats, ReconcileResult
from exclusive_listings.services.errors import ExclusiveListingsError

router = APIRouter()


@router.post("/reconcile", response_model=ReconcileResult)
def reconcile(
    reconciler: ReconcilerDep,
    listing_id: int | None = Query(None, description="Only check this listing"),
) -> ReconcileResult:
    """Remove photos whose files no longer exist.

    Files that cannot be checked are reported in ``errors`` and left alone.
    """
    try:
        return reconciler.reconcile(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e


@router.post("/blob-deleted", response_model=BlobDeletedResponse)
def blob_deleted(
    body: BlobDeletedRequest,
    blob_store: BlobStoreDep,
) -> BlobDeletedResponse:
    """Report a file deleted outside the application.

    Listings referencing the file are reconciled immediately.
    """
    handled = blob_store.notify_deleted(body.url)
    return BlobDeletedResponse(url=body.url, handled=handled)


@router.get("/photo-stats", response_model=PhotoStats)
def photo_stats(service: MediaServiceDep) -> PhotoStats:
    """Get how many exclusive listing photos are stored as WebP."""
    return service.optimization_stats()


@router.post("/refresh-summaries", response_model=RefreshSummariesResponse)
def refresh_summaries(service: SummaryServiceDep) -> RefreshSummariesResponse:
    """Recompute the photo summary of every exclusive listing."""
    return RefreshSummariesResponse(listings_fixed=service.refresh_all())


@router.post("/optimize-photos", response_model=OptimizeResult)
def optimize_photos(
    service: MediaServiceDep,
    batch_size: int | None = Query(None, ge=1, le=500, description="Photos to process"),
    offset: int = Query(0, ge=0, description="Non-WebP photos to pass over first"),
) -> OptimizeResult:
    """Convert one batch of stored non-WebP photos to WebP.

    Call again with ``next_offset`` until ``remaining`` is 0.
    """
    return service.optimize_existing(batch_size=batch_size, offset=offset)
