"""Denormalized photo summary stored on listing rows."""

import logging

from sqlalchemy.orm import Session

from exclusive_listings.config import AllocatorSettings
from exclusive_listings.database.repository import ListingRepository, MediaRepository, with_db_retry
from exclusive_listings.models.pydantic_models import ListingSummary
from exclusive_listings.services.errors import ListingNotFoundError

logger = logging.getLogger(__name__)


class SummaryService:
    """Keeps listings.photo_count and listings.main_photo_url in step with photos."""

    def __init__(self, session: Session, settings: AllocatorSettings | None = None) -> None:
        """Initialize with database session.

        Args:
            session: SQLAlchemy session instance.
            settings: Partition settings, used by refresh_all().
        """
        self._session = session
        self._settings = settings or AllocatorSettings()
        self._listing_repo = ListingRepository(session)
        self._media_repo = MediaRepository(session)

    def recompute(self, listing_id: int) -> ListingSummary:
        """Derive the summary from photo rows and write it to the listing.

        Runs inside the caller's transaction and does not commit.

        Args:
            listing_id: Listing ID.

        Returns:
            The freshly computed summary.
        """
        summary = ListingSummary(
            listing_id=listing_id,
            photo_count=self._media_repo.count_photos(listing_id),
            primary_photo_url=self._media_repo.get_primary_photo_url(listing_id),
        )
        self._listing_repo.set_photo_summary(
            listing_id, summary.photo_count, summary.primary_photo_url
        )
        return summary

    def get_summary(self, listing_id: int) -> ListingSummary:
        """Read the stored summary.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
        """
        listing = self._listing_repo.get_listing_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return ListingSummary(
            listing_id=listing.id,
            photo_count=listing.photo_count,
            primary_photo_url=listing.main_photo_url,
        )

    @with_db_retry
    def refresh(self, listing_id: int) -> ListingSummary:
        """Recompute and commit the summary of one listing.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
        """
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")
            summary = self.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return summary

    def refresh_all(self) -> int:
        """Recompute the summary of every self-issued listing.

        Returns:
            Number of listings whose stored summary was wrong.
        """
        fixed = 0
        for listing_id in self._listing_repo.get_listing_ids_below(self._settings.partition_threshold):
            before = self.get_summary(listing_id)
            after = self.refresh(listing_id)
            if before != after:
                logger.info(
                    "Fixed photo summary of listing %d: %d -> %d photos",
                    listing_id,
                    before.photo_count,
                    after.photo_count,
                )
                fixed += 1
        return fixed
