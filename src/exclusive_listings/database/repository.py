"""Repository layer for database operations."""

import functools
from collections.abc import Callable, Iterable
from typing import TypeVar

from sqlalchemy import ColumnElement, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from typing_extensions import ParamSpec

from exclusive_listings.models.db_models import Listing, ListingIdCounter, MediaAsset, utc_now
from exclusive_listings.models.pydantic_models import ListingCreate, MediaCategory

P = ParamSpec("P")
R = TypeVar("R")

# Retry configuration for database operations
DB_RETRY_MAX_ATTEMPTS = 5
DB_RETRY_WAIT_MIN = 1  # seconds
DB_RETRY_WAIT_MAX = 8  # seconds
DB_RETRY_WAIT_MULTIPLIER = 2


def with_db_retry(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator to retry database operations on SQLite lock errors.

    Retries on sqlalchemy.exc.OperationalError using exponential backoff.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        for attempt in Retrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(DB_RETRY_MAX_ATTEMPTS),
            wait=wait_exponential(
                multiplier=DB_RETRY_WAIT_MULTIPLIER,
                min=DB_RETRY_WAIT_MIN,
                max=DB_RETRY_WAIT_MAX,
            ),
            reraise=True,
        ):
            with attempt:
                return func(*args, **kwargs)
        raise RuntimeError("Retry logic failed unexpectedly")

    return wrapper


class ListingRepository:
    """Repository for Listing records and their stored photo summary."""

    def __init__(self, session: Session) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session instance.
        """
        self._session = session

    # ========== CREATE ==========

    @with_db_retry
    def create_listing(self, listing_id: int, listing_key: str, data: ListingCreate) -> Listing:
        """Create a listing under an already allocated id.

        Args:
            listing_id: Id issued by the allocator.
            listing_key: Stable external key for the listing.
            data: Listing data.

        Returns:
            Created Listing instance.
        """
        listing = Listing(id=listing_id, listing_key=listing_key, **data.model_dump())
        self._session.add(listing)
        self._session.commit()
        self._session.refresh(listing)
        return listing

    # ========== READ ==========

    def get_listing_by_id(self, listing_id: int) -> Listing | None:
        """Get a listing by ID.

        Args:
            listing_id: Listing ID.

        Returns:
            Listing if found, None otherwise.
        """
        return self._session.get(Listing, listing_id)

    def get_listing_ids_below(self, threshold: int) -> list[int]:
        """Get ids of all listings in the self-issued partition.

        Args:
            threshold: Exclusive upper bound of self-issued ids.

        Returns:
            Listing ids in ascending order.
        """
        stmt = (
            select(Listing.id)
            .where(Listing.id > 0, Listing.id < threshold)
            .order_by(Listing.id.asc())
        )
        return list(self._session.scalars(stmt))

    # ========== UPDATE ==========

    def lock_listing(self, listing_id: int) -> bool:
        """Take the write lock on a listing row for the current transaction.

        Touching modified_at takes the row lock on PostgreSQL and the
        database write lock on SQLite. Does not commit.

        Args:
            listing_id: Listing ID.

        Returns:
            True if the listing exists, False otherwise.
        """
        result = self._session.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(modified_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def set_photo_summary(
        self, listing_id: int, photo_count: int, main_photo_url: str | None
    ) -> None:
        """Write the denormalized photo summary. Does not commit.

        Args:
            listing_id: Listing ID.
            photo_count: Number of photo assets.
            main_photo_url: URL of the first photo, if any.
        """
        self._session.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(photo_count=photo_count, main_photo_url=main_photo_url)
            .execution_options(synchronize_session="fetch")
        )

    # ========== DELETE ==========

    @with_db_retry
    def delete_listing(self, listing_id: int) -> bool:
        """Delete a listing by ID.

        Args:
            listing_id: Listing ID to delete.

        Returns:
            True if deleted, False if not found.
        """
        listing = self.get_listing_by_id(listing_id)
        if listing is None:
            return False

        self._session.delete(listing)
        self._session.commit()
        return True


class MediaRepository:
    """Repository for MediaAsset rows.

    Mutating methods flush but never commit: callers own the transaction so
    ordering changes and summary updates land together.
    """

    def __init__(self, session: Session) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session instance.
        """
        self._session = session

    def add_asset(self, asset: MediaAsset) -> MediaAsset:
        """Insert an asset row and flush to obtain its id.

        Args:
            asset: Unsaved MediaAsset.

        Returns:
            The same asset with its primary key populated.
        """
        self._session.add(asset)
        self._session.flush()
        return asset

    def get_asset(self, asset_id: int) -> MediaAsset | None:
        """Get an asset by ID.

        Args:
            asset_id: Asset ID.

        Returns:
            MediaAsset if found, None otherwise.
        """
        return self._session.get(MediaAsset, asset_id)

    def get_photos(self, listing_id: int) -> list[MediaAsset]:
        """Get a listing's photos in display order.

        Args:
            listing_id: Listing ID.

        Returns:
            Photo assets ordered by order_index ascending.
        """
        stmt = (
            select(MediaAsset)
            .where(
                MediaAsset.listing_id == listing_id,
                MediaAsset.category == MediaCategory.PHOTO,
            )
            .order_by(MediaAsset.order_index.asc(), MediaAsset.id.asc())
        )
        return list(self._session.scalars(stmt))

    def count_photos(self, listing_id: int) -> int:
        """Count a listing's photo assets."""
        stmt = select(func.count(MediaAsset.id)).where(
            MediaAsset.listing_id == listing_id,
            MediaAsset.category == MediaCategory.PHOTO,
        )
        return self._session.scalar(stmt) or 0

    def get_primary_photo_url(self, listing_id: int) -> str | None:
        """Get the URL of the photo with the lowest order_index."""
        stmt = (
            select(MediaAsset.url)
            .where(
                MediaAsset.listing_id == listing_id,
                MediaAsset.category == MediaCategory.PHOTO,
            )
            .order_by(MediaAsset.order_index.asc(), MediaAsset.id.asc())
            .limit(1)
        )
        return self._session.scalar(stmt)

    def shift_photos_up(self, listing_id: int, from_index: int) -> None:
        """Move every photo at or after from_index one position later."""
        self._session.execute(
            update(MediaAsset)
            .where(
                MediaAsset.listing_id == listing_id,
                MediaAsset.category == MediaCategory.PHOTO,
                MediaAsset.order_index >= from_index,
            )
            .values(order_index=MediaAsset.order_index + 1)
            .execution_options(synchronize_session="fetch")
        )

    def close_order_gap(self, listing_id: int, removed_index: int) -> None:
        """Move every photo after removed_index one position earlier."""
        self._session.execute(
            update(MediaAsset)
            .where(
                MediaAsset.listing_id == listing_id,
                MediaAsset.category == MediaCategory.PHOTO,
                MediaAsset.order_index > removed_index,
            )
            .values(order_index=MediaAsset.order_index - 1)
            .execution_options(synchronize_session="fetch")
        )

    def delete_asset(self, asset: MediaAsset) -> None:
        """Delete an asset row and flush."""
        self._session.delete(asset)
        self._session.flush()

    def get_listing_ids_for_url(self, url: str) -> list[int]:
        """Get ids of listings that reference a stored file URL."""
        stmt = select(MediaAsset.listing_id).where(MediaAsset.url == url).distinct()
        return sorted(self._session.scalars(stmt))

    def get_assets_for_listings(self, listing_ids: Iterable[int]) -> list[tuple[int, int, str]]:
        """Get (asset_id, listing_id, url) for every asset of the given listings.

        Args:
            listing_ids: Listing IDs to scan.

        Returns:
            Tuples ordered by listing and display order.
        """
        ids = list(listing_ids)
        if not ids:
            return []
        stmt = (
            select(MediaAsset.id, MediaAsset.listing_id, MediaAsset.url)
            .where(MediaAsset.listing_id.in_(ids))
            .order_by(MediaAsset.listing_id.asc(), MediaAsset.order_index.asc())
        )
        return [(row.id, row.listing_id, row.url) for row in self._session.execute(stmt)]

    def count_photos_by_format(self, threshold: int) -> tuple[int, int]:
        """Count self-issued listing photos, total and stored as WebP.

        Args:
            threshold: Exclusive upper bound of self-issued listing ids.

        Returns:
            Tuple of (total photos, webp photos).
        """
        base = select(func.count(MediaAsset.id)).where(
            MediaAsset.category == MediaCategory.PHOTO,
            MediaAsset.listing_id > 0,
            MediaAsset.listing_id < threshold,
        )
        total = self._session.scalar(base) or 0
        webp = self._session.scalar(base.where(MediaAsset.mime_type == "image/webp")) or 0
        return total, webp

    def _not_webp(self, threshold: int) -> tuple[ColumnElement[bool], ...]:
        return (
            MediaAsset.category == MediaCategory.PHOTO,
            MediaAsset.listing_id > 0,
            MediaAsset.listing_id < threshold,
            or_(MediaAsset.mime_type.is_(None), MediaAsset.mime_type != "image/webp"),
        )

    def get_non_webp_photos(self, threshold: int, limit: int, offset: int = 0) -> list[MediaAsset]:
        """Get a page of self-issued listing photos not stored as WebP.

        Args:
            threshold: Exclusive upper bound of self-issued listing ids.
            limit: Page size.
            offset: Rows to skip.

        Returns:
            Photo assets ordered by id.
        """
        stmt = (
            select(MediaAsset)
            .where(*self._not_webp(threshold))
            .order_by(MediaAsset.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.scalars(stmt))

    def count_non_webp_photos(self, threshold: int) -> int:
        """Count self-issued listing photos not stored as WebP."""
        stmt = select(func.count(MediaAsset.id)).where(*self._not_webp(threshold))
        return self._session.scalar(stmt) or 0


class CounterRepository:
    """Repository for named listing id counters."""

    def __init__(self, session: Session) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session instance.
        """
        self._session = session

    def increment(self, name: str) -> int | None:
        """Atomically bump a counter. Does not commit.

        Args:
            name: Counter name.

        Returns:
            The new value, or None if the counter row does not exist.
        """
        stmt = (
            update(ListingIdCounter)
            .where(ListingIdCounter.name == name)
            .values(last_value=ListingIdCounter.last_value + 1, updated_at=utc_now())
            .returning(ListingIdCounter.last_value)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def create_counter(self, name: str, last_value: int) -> bool:
        """Create a counter row and commit.

        Args:
            name: Counter name.
            last_value: Value the counter starts from.

        Returns:
            True if created, False if another writer created it first.
        """
        try:
            self._session.execute(
                insert(ListingIdCounter).values(
                    name=name, last_value=last_value, updated_at=utc_now()
                )
            )
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            return False
        return True

    def get_last_value(self, name: str) -> int | None:
        """Read a counter's current value without changing it."""
        return self._session.scalar(
            select(ListingIdCounter.last_value).where(ListingIdCounter.name == name)
        )
