"""Service layer for exclusive listing records."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exclusive_listings.config import Settings
from exclusive_listings.database.repository import ListingRepository
from exclusive_listings.models.db_models import Listing
from exclusive_listings.models.pydantic_models import ListingCreate, ListingRead
from exclusive_listings.services.errors import AllocationFailure, ListingNotFoundError
from exclusive_listings.services.id_allocator import IdAllocator, generate_listing_key
from exclusive_listings.services.media_service import MediaService
from exclusive_listings.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


def _to_listing_read(listing: Listing) -> ListingRead:
    """Convert ORM Listing to Pydantic ListingRead."""
    return ListingRead.model_validate(listing)


class ListingService:
    """Service for creating, reading and removing exclusive listings.

    Returns Pydantic models instead of ORM objects.
    """

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        settings: Settings | None = None,
    ) -> None:
        """Initialize with database session.

        Args:
            session: SQLAlchemy session instance.
            blob_store: Store holding the listings' photo files.
            settings: Application settings. Defaults to Settings().
        """
        self._session = session
        self._settings = settings or Settings()
        self._repo = ListingRepository(session)
        self._allocator = IdAllocator(session, self._settings.allocator)
        self._media = MediaService(session, blob_store, self._settings)

    def create_listing(self, data: ListingCreate) -> ListingRead:
        """Allocate an id and create the listing record.

        Raises:
            AllocationFailure: If no id could be issued or the issued id is
                already taken by an existing row.
        """
        listing_id = self._allocator.allocate()
        try:
            listing = self._repo.create_listing(listing_id, generate_listing_key(listing_id), data)
        except IntegrityError as e:
            self._session.rollback()
            raise AllocationFailure(
                f"Allocated id {listing_id} is already in use; the id counter needs reseeding"
            ) from e
        logger.info("Created exclusive listing %d", listing_id)
        return _to_listing_read(listing)

    def get_listing(self, listing_id: int) -> ListingRead:
        """Get a listing by ID.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
        """
        listing = self._repo.get_listing_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return _to_listing_read(listing)

    def delete_listing(self, listing_id: int) -> int:
        """Delete a listing together with its photos.

        Returns:
            Number of photos removed.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
        """
        removed = self._media.delete_all(listing_id)
        if not self._repo.delete_listing(listing_id):
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        logger.info("Deleted exclusive listing %d", listing_id)
        return removed

    def peek_next_id(self) -> int:
        """Preview the next listing id without consuming it."""
        return self._allocator.peek_next()

    def is_self_issued(self, listing_id: int) -> bool:
        return self._allocator.is_self_issued(listing_id)
