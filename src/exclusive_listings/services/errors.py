"""Exceptions raised by the service layer."""


class ExclusiveListingsError(Exception):
    """Base exception for exclusive listing service errors."""

    code = "exclusive_listings_error"


class ValidationError(ExclusiveListingsError):
    """Raised when input fails validation. Never worth retrying."""

    code = "validation_failed"


class CapacityError(ExclusiveListingsError):
    """Raised when a listing already holds the maximum number of photos."""

    code = "photo_limit_exceeded"


class TransientStorageError(ExclusiveListingsError):
    """Raised when blob storage or the index write fails. Safe to retry."""

    code = "storage_unavailable"


class ConsistencyDrift(ExclusiveListingsError):
    """Raised when the index references a blob that is not reachable."""

    code = "consistency_drift"


class AllocationFailure(ExclusiveListingsError):
    """Raised when no listing id can be issued."""

    code = "allocation_failed"


class ListingNotFoundError(ExclusiveListingsError):
    """Raised when listing doesn't exist."""

    code = "listing_not_found"


class AssetNotFoundError(ExclusiveListingsError):
    """Raised when a photo doesn't exist or belongs to another listing."""

    code = "photo_not_found"
