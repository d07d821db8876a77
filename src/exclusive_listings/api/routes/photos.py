"""API routes for listing photo operations."""

from fastapi import APIRouter, HTTPException, Query, UploadFile
from pydantic import ValidationError as RequestValidationError

from exclusive_listings.api.dependencies import MediaServiceDep
from exclusive_listings.api.errors import to_http_exception
from exclusive_listings.api.schemas import (
    BatchUploadResponse,
    DeleteResponse,
    PhotoListResponse,
    PhotoRead,
    ReorderRequest,
    UploadResultItem,
)
from exclusive_listings.models.pydantic_models import PerFileResult, UploadRequest
from exclusive_listings.services.errors import ExclusiveListingsError, ValidationError

router = APIRouter()


@router.get(
    "/{listing_id}/photos",
    response_model=PhotoListResponse,
    responses={404: {"description": "Listing not found"}},
)
def list_photos(
    listing_id: int,
    service: MediaServiceDep,
) -> PhotoListResponse:
    """Get a listing's photos in display order."""
    try:
        photos = service.get_photos(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e
    return PhotoListResponse(
        listing_id=listing_id,
        photos=[PhotoRead.from_asset(p) for p in photos],
        count=len(photos),
    )


@router.post(
    "/{listing_id}/photos",
    response_model=BatchUploadResponse,
    summary="Upload one or more photos",
    responses={
        404: {"description": "Listing not found"},
        400: {"description": "No files provided"},
    },
)
def upload_photos(
    listing_id: int,
    photos: list[UploadFile],
    service: MediaServiceDep,
    position: int | None = Query(
        None, ge=1, description="Insert the first file at this position, the rest after it"
    ),
) -> BatchUploadResponse:
    """Upload photos for a listing.

    Each file is processed independently: a rejected file does not stop
    the others. Files are converted to WebP and given address-based names.
    """
    if not photos:
        raise HTTPException(status_code=400, detail="No files provided")

    # Reject uploads for unknown listings before reading any file
    try:
        service.get_photos(listing_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e

    # Files whose request fails validation keep their slot in the response
    entries: list[UploadRequest | PerFileResult] = []
    for offset, photo in enumerate(photos):
        filename = photo.filename or f"photo-{offset + 1}"
        try:
            entries.append(
                UploadRequest.from_bytes(
                    filename=filename,
                    data=photo.file.read(),
                    mime_type=photo.content_type or "application/octet-stream",
                    explicit_order=position + offset if position is not None else None,
                )
            )
        except RequestValidationError as e:
            entries.append(
                PerFileResult(
                    filename=filename,
                    success=False,
                    error=f"Invalid upload: {e.errors()[0]['msg']}",
                    error_code=ValidationError.code,
                )
            )

    requests = [e for e in entries if isinstance(e, UploadRequest)]
    uploaded_results = iter(service.upload_batch(listing_id, requests))
    results = [next(uploaded_results) if isinstance(e, UploadRequest) else e for e in entries]
    uploaded = sum(1 for r in results if r.success)
    return BatchUploadResponse(
        results=[UploadResultItem.from_result(r) for r in results],
        uploaded=uploaded,
        failed=len(results) - uploaded,
    )


@router.delete(
    "/{listing_id}/photos/{asset_id}",
    response_model=DeleteResponse,
    responses={404: {"description": "Listing or photo not found"}},
)
def delete_photo(
    listing_id: int,
    asset_id: int,
    service: MediaServiceDep,
) -> DeleteResponse:
    """Delete a photo and its file; later photos move up one position."""
    try:
        service.delete(listing_id, asset_id)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e
    return DeleteResponse(success=True, message=f"Photo {asset_id} deleted")


@router.put(
    "/{listing_id}/photos/order",
    response_model=PhotoListResponse,
    responses={
        400: {"description": "Order is not a permutation of the listing's photos"},
        404: {"description": "Listing not found"},
    },
)
def reorder_photos(
    listing_id: int,
    body: ReorderRequest,
    service: MediaServiceDep,
) -> PhotoListResponse:
    """Set the display order of all photos. The first becomes the primary photo."""
    try:
        photos = service.reorder(listing_id, body.order)
    except ExclusiveListingsError as e:
        raise to_http_exception(e) from e
    return PhotoListResponse(
        listing_id=listing_id,
        photos=[PhotoRead.from_asset(p) for p in photos],
        count=len(photos),
    )
