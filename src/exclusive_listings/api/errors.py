"""Translation of service exceptions into HTTP errors."""

from fastapi import HTTPException

from exclusive_listings.services.errors import (
    AllocationFailure,
    AssetNotFoundError,
    CapacityError,
    ExclusiveListingsError,
    ListingNotFoundError,
    TransientStorageError,
    ValidationError,
)

STATUS_CODES: dict[type[ExclusiveListingsError], int] = {
    ValidationError: 400,
    ListingNotFoundError: 404,
    AssetNotFoundError: 404,
    CapacityError: 409,
    TransientStorageError: 503,
    AllocationFailure: 503,
}


def to_http_exception(error: ExclusiveListingsError) -> HTTPException:
    """Build the HTTPException for a service error (500 if unmapped)."""
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
