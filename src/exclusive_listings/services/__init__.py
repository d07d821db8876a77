"""Service layer for exclusive listing business logic."""

from exclusive_listings.services.id_allocator import IdAllocator, generate_listing_key
from exclusive_listings.services.listing_service import ListingService
from exclusive_listings.services.media_service import MediaService, register_deletion_handler
from exclusive_listings.services.reconciler import Reconciler
from exclusive_listings.services.summary_service import SummaryService

__all__ = [
    "IdAllocator",
    "ListingService",
    "MediaService",
    "Reconciler",
    "SummaryService",
    "generate_listing_key",
    "register_deletion_handler",
]
