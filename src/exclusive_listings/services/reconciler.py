"""Repair of photo rows whose stored files have disappeared."""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exclusive_listings.config import Settings
from exclusive_listings.database.repository import ListingRepository, MediaRepository, with_db_retry
from exclusive_listings.models.pydantic_models import BlobStatus, MediaCategory, ReconcileResult
from exclusive_listings.services.errors import ConsistencyDrift, ListingNotFoundError
from exclusive_listings.services.summary_service import SummaryService
from exclusive_listings.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Finds photo rows pointing at missing files and removes them.

    Files are checked in parallel. A check that errors or exceeds the
    timeout is reported as an error and leaves its row alone. Each missing
    file is cleaned up in its own transaction, so no lock spans the pass.
    """

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        settings: Settings | None = None,
    ) -> None:
        """Initialize with database session and blob store.

        Args:
            session: SQLAlchemy session instance.
            blob_store: Store the photo URLs point into.
            settings: Application settings. Defaults to Settings().
        """
        self._session = session
        self._blob_store = blob_store
        self._settings = settings or Settings()
        self._listing_repo = ListingRepository(session)
        self._media_repo = MediaRepository(session)
        self._summary = SummaryService(session, self._settings.allocator)

    def reconcile(self, listing_id: int | None = None) -> ReconcileResult:
        """Check stored files for one listing or all self-issued listings.

        Args:
            listing_id: Listing to check. None checks every listing below the
                partition threshold.

        Returns:
            ReconcileResult with checked/orphaned/cleaned counts and errors.

        Raises:
            ListingNotFoundError: If a specific listing doesn't exist.
        """
        if listing_id is None:
            listing_ids = self._listing_repo.get_listing_ids_below(
                self._settings.allocator.partition_threshold
            )
        else:
            if self._listing_repo.get_listing_by_id(listing_id) is None:
                raise ListingNotFoundError(f"Listing {listing_id} not found")
            listing_ids = [listing_id]

        assets = self._media_repo.get_assets_for_listings(listing_ids)
        # Checking can take a while; don't hold the read transaction open
        self._session.rollback()

        result = ReconcileResult(checked=len(assets))
        if not assets:
            return result

        statuses = self._check_all([url for _, _, url in assets])
        affected: set[int] = set()

        for (asset_id, owner_id, url), status in zip(assets, statuses):
            if status is BlobStatus.PRESENT:
                continue
            if status is BlobStatus.UNKNOWN:
                result.errors.append(f"Could not verify photo {asset_id} at {url}")
                continue

            drift = ConsistencyDrift(
                f"Photo {asset_id} of listing {owner_id} points at missing file {url}"
            )
            logger.warning("%s", drift)
            result.orphaned += 1
            try:
                if self._remove_orphan(asset_id, owner_id):
                    result.cleaned += 1
                    affected.add(owner_id)
            except SQLAlchemyError as e:
                logger.exception("Could not remove orphaned photo %d", asset_id)
                result.errors.append(f"Could not remove photo {asset_id}: {e}")

        result.affected_listings = sorted(affected)
        logger.info(
            "Reconciled %d photos: %d orphaned, %d cleaned, %d errors",
            result.checked,
            result.orphaned,
            result.cleaned,
            len(result.errors),
        )
        return result

    def _check_all(self, urls: list[str]) -> list[BlobStatus]:
        """Check every URL with bounded concurrency and a per-check timeout."""
        timeout = self._settings.reconciler.check_timeout_seconds
        workers = min(self._settings.reconciler.check_concurrency, len(urls))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="blob-check")
        statuses: list[BlobStatus] = []
        try:
            futures = [executor.submit(self._blob_store.exists, url, timeout) for url in urls]
            for url, future in zip(urls, futures):
                try:
                    statuses.append(future.result(timeout=timeout))
                except FutureTimeoutError:
                    logger.warning("Existence check of %s timed out after %.1fs", url, timeout)
                    statuses.append(BlobStatus.UNKNOWN)
                except Exception:
                    logger.exception("Existence check of %s failed", url)
                    statuses.append(BlobStatus.UNKNOWN)
        finally:
            # Hung checks must not block the caller
            executor.shutdown(wait=False, cancel_futures=True)
        return statuses

    @with_db_retry
    def _remove_orphan(self, asset_id: int, listing_id: int) -> bool:
        """Delete one orphaned row, close its order gap and fix the summary.

        Returns:
            True if the row was removed, False if it was already gone.
        """
        try:
            self._listing_repo.lock_listing(listing_id)
            asset = self._media_repo.get_asset(asset_id)
            if asset is None:
                self._session.rollback()
                return False
            removed_index = asset.order_index
            is_photo = asset.category == MediaCategory.PHOTO
            self._media_repo.delete_asset(asset)
            if is_photo:
                self._media_repo.close_order_gap(listing_id, removed_index)
            self._summary.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("Removed orphaned photo %d from listing %d", asset_id, listing_id)
        return True
