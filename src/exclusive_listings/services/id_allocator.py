"""Listing id allocation from the self-issued partition."""

import hashlib
import logging

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from exclusive_listings.config import AllocatorSettings
from exclusive_listings.database.repository import CounterRepository, with_db_retry
from exclusive_listings.services.errors import AllocationFailure

logger = logging.getLogger(__name__)


def generate_listing_key(listing_id: int) -> str:
    """Stable external key for a self-issued listing."""
    return hashlib.md5(f"exclusive_{listing_id}".encode()).hexdigest()


class IdAllocator:
    """Issues listing ids strictly below the partition threshold.

    Ids come from a single counter row bumped with one
    ``UPDATE ... RETURNING`` statement, so concurrent callers never see the
    same value. Ids at or above the threshold belong to the MLS feed and are
    never issued.
    """

    def __init__(self, session: Session, settings: AllocatorSettings | None = None) -> None:
        """Initialize with database session.

        Args:
            session: SQLAlchemy session instance. Allocation commits on it.
            settings: Partition settings. Defaults to AllocatorSettings().
        """
        self._session = session
        self._settings = settings or AllocatorSettings()
        self._counter_repo = CounterRepository(session)

    @property
    def threshold(self) -> int:
        return self._settings.partition_threshold

    def allocate(self) -> int:
        """Issue the next listing id.

        Returns:
            A never-before-issued id below the partition threshold.

        Raises:
            AllocationFailure: If the counter cannot be updated or the
                partition is exhausted.
        """
        try:
            listing_id = self._increment()
        except AllocationFailure:
            raise
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.exception("Listing id counter unavailable")
            raise AllocationFailure(f"Listing id counter unavailable: {e}") from e

        logger.info("Allocated listing id %d", listing_id)
        return listing_id

    @with_db_retry
    def _increment(self) -> int:
        name = self._settings.counter_name
        try:
            value = self._counter_repo.increment(name)
            if value is None:
                self._session.rollback()
                if self._counter_repo.create_counter(name, self._settings.start_value - 1):
                    logger.info("Created listing id counter %r", name)
                value = self._counter_repo.increment(name)
            if value is None:
                self._session.rollback()
                raise AllocationFailure(f"Listing id counter {name!r} could not be created")
            if value >= self.threshold:
                self._session.rollback()
                raise AllocationFailure(
                    f"Self-issued id partition exhausted (next id {value} >= {self.threshold})"
                )
            self._session.commit()
        except OperationalError:
            self._session.rollback()
            raise
        return value

    def peek_next(self) -> int:
        """Preview the id the next allocate() would return.

        Advisory only: another writer may take it first.
        """
        last_value = self._counter_repo.get_last_value(self._settings.counter_name)
        if last_value is None:
            return self._settings.start_value
        return last_value + 1

    def is_self_issued(self, listing_id: int) -> bool:
        """Whether an id lies in the self-issued partition."""
        return 0 < listing_id < self.threshold
