"""Service layer for listing photo operations."""

import hashlib
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exclusive_listings.config import Settings
from exclusive_listings.database.repository import ListingRepository, MediaRepository, with_db_retry
from exclusive_listings.imaging.normalizer import (
    DetectedImage,
    ImageNormalizer,
    ProcessedImage,
    detect_image,
)
from exclusive_listings.imaging.seo import (
    PhotoMetadata,
    build_listing_address,
    photo_filename,
    photo_metadata,
)
from exclusive_listings.models.db_models import MediaAsset, utc_now
from exclusive_listings.models.pydantic_models import (
    AssetRecord,
    MediaCategory,
    OptimizeResult,
    PerFileResult,
    PhotoStats,
    UploadRequest,
)
from exclusive_listings.services.errors import (
    AssetNotFoundError,
    CapacityError,
    ExclusiveListingsError,
    ListingNotFoundError,
    TransientStorageError,
    ValidationError,
)
from exclusive_listings.services.reconciler import Reconciler
from exclusive_listings.services.summary_service import SummaryService
from exclusive_listings.storage.blob_store import BlobStore, DeletionListener

logger = logging.getLogger(__name__)

# Outcomes of re-optimizing one stored photo
_OPTIMIZED = "optimized"
_SKIPPED = "skipped"
_FAILED = "failed"

_transcode_executor: ThreadPoolExecutor | None = None
_transcode_executor_lock = threading.Lock()


def get_transcode_executor(max_workers: int = 2) -> ThreadPoolExecutor:
    """Get or create the shared pool that runs image normalization."""
    global _transcode_executor

    with _transcode_executor_lock:
        if _transcode_executor is None:
            _transcode_executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="transcode"
            )
        return _transcode_executor


def shutdown_transcode_executor() -> None:
    """Stop the shared transcode pool. Useful for testing and app shutdown."""
    global _transcode_executor

    with _transcode_executor_lock:
        if _transcode_executor is not None:
            _transcode_executor.shutdown(wait=True)
        _transcode_executor = None


def _to_asset_record(asset: MediaAsset) -> AssetRecord:
    """Convert ORM MediaAsset to Pydantic AssetRecord."""
    return AssetRecord.model_validate(asset)


class MediaService:
    """Service for uploading, ordering and deleting listing photos.

    Every mutation runs in one transaction that starts by locking the
    listing row, and recomputes the listing's photo summary before it
    commits.
    """

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        settings: Settings | None = None,
        executor: Executor | None = None,
        normalizer: ImageNormalizer | None = None,
    ) -> None:
        """Initialize with database session and blob store.

        Args:
            session: SQLAlchemy session instance.
            blob_store: Where photo files are written.
            settings: Application settings. Defaults to Settings().
            executor: Pool for image normalization. Defaults to the shared
                transcode pool.
            normalizer: Image normalizer. Built from settings by default.
        """
        self._session = session
        self._blob_store = blob_store
        self._settings = settings or Settings()
        self._media = self._settings.media
        self._executor = executor or get_transcode_executor(self._media.transcode_workers)
        self._normalizer = normalizer or ImageNormalizer.from_settings(self._media)
        self._listing_repo = ListingRepository(session)
        self._media_repo = MediaRepository(session)
        self._summary = SummaryService(session, self._settings.allocator)

    # ========== READ ==========

    def get_photos(self, listing_id: int) -> list[AssetRecord]:
        """Get a listing's photos in display order.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
        """
        if self._listing_repo.get_listing_by_id(listing_id) is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return [_to_asset_record(a) for a in self._media_repo.get_photos(listing_id)]

    def optimization_stats(self) -> PhotoStats:
        """Count how many self-issued listing photos are stored as WebP."""
        total, webp = self._media_repo.count_photos_by_format(
            self._settings.allocator.partition_threshold
        )
        return PhotoStats(
            total_photos=total,
            webp_photos=webp,
            non_webp_photos=total - webp,
            percent_optimized=round(webp / total * 100) if total else 0,
        )

    # ========== UPLOAD ==========

    def upload(self, listing_id: int, request: UploadRequest) -> AssetRecord:
        """Validate, normalize, store and index one photo.

        Args:
            listing_id: Listing the photo belongs to.
            request: Uploaded file.

        Returns:
            The indexed photo.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
            ValidationError: If the file is too large or not a supported image.
            CapacityError: If the listing already has the maximum number of photos.
            TransientStorageError: If the file or its row could not be saved.
        """
        listing = self._listing_repo.get_listing_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        detected = self._validate_file(request)

        count = self._media_repo.count_photos(listing_id)
        if count >= self._media.max_photos:
            raise CapacityError(f"Maximum of {self._media.max_photos} photos per listing")

        address = build_listing_address(listing)
        listing_key = listing.listing_key
        # Write transaction must start from a fresh snapshot
        self._session.rollback()

        processed = self._normalize(request.data, detected)

        if request.explicit_order is not None:
            photo_number = min(request.explicit_order, count + 1)
        else:
            photo_number = count + 1
        filename = photo_filename(address, photo_number, processed.extension)
        metadata = photo_metadata(address, photo_number, self._media.brokerage_name)

        now = utc_now()
        path = f"{self._settings.storage.path_prefix}/{now:%Y}/{now:%m}/{filename}"
        try:
            url = self._blob_store.put(path, processed.data, processed.mime_type)
        except OSError as e:
            logger.exception("Could not store photo for listing %d", listing_id)
            raise TransientStorageError(f"Could not store {request.filename}: {e}") from e

        try:
            asset = self._insert_asset(
                listing_id, listing_key, request, processed, url, metadata
            )
        except SQLAlchemyError as e:
            logger.exception("Could not index photo for listing %d", listing_id)
            self._discard_blob(url)
            raise TransientStorageError(f"Could not save {request.filename}: {e}") from e
        except Exception:
            self._discard_blob(url)
            raise

        logger.info(
            "Uploaded photo %d to listing %d at position %d",
            asset.id,
            listing_id,
            asset.order_index,
        )
        return asset

    def upload_batch(
        self, listing_id: int, requests: list[UploadRequest]
    ) -> list[PerFileResult]:
        """Upload several photos, each independently of the others.

        Returns:
            One PerFileResult per request, in request order.
        """
        results: list[PerFileResult] = []
        for request in requests:
            try:
                asset = self.upload(listing_id, request)
            except ExclusiveListingsError as e:
                results.append(
                    PerFileResult(
                        filename=request.filename, success=False, error=str(e), error_code=e.code
                    )
                )
            except Exception as e:
                logger.exception("Unexpected failure uploading %s", request.filename)
                results.append(
                    PerFileResult(
                        filename=request.filename,
                        success=False,
                        error=str(e),
                        error_code="upload_failed",
                    )
                )
            else:
                results.append(PerFileResult(filename=request.filename, success=True, asset=asset))
        return results

    def _validate_file(self, request: UploadRequest) -> DetectedImage:
        """Check size and type. Reads bytes only, writes nothing."""
        if request.size_bytes > self._media.max_file_size:
            raise ValidationError(
                f"File size exceeds maximum of {self._media.max_file_size // (1024 * 1024)} MB"
            )
        if request.mime_type.lower() not in self._media.allowed_mime_types:
            raise ValidationError("Invalid file type. Allowed types: JPEG, PNG, GIF, WebP")

        detected = detect_image(request.data)
        if detected is None or detected.mime_type not in self._media.allowed_mime_types:
            raise ValidationError(f"{request.filename} is not a readable JPEG, PNG, GIF or WebP image")
        return detected

    def _normalize(self, data: bytes, detected: DetectedImage) -> ProcessedImage:
        """Run normalization on the transcode pool, keeping the original on failure."""
        try:
            return self._executor.submit(self._normalizer.process, data, detected).result()
        except Exception:
            logger.exception("Photo normalization failed, storing original bytes")
            return ProcessedImage(
                data=data,
                mime_type=detected.mime_type,
                width=detected.width,
                height=detected.height,
            )

    @with_db_retry
    def _insert_asset(
        self,
        listing_id: int,
        listing_key: str,
        request: UploadRequest,
        processed: ProcessedImage,
        url: str,
        metadata: PhotoMetadata,
    ) -> AssetRecord:
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")

            count = self._media_repo.count_photos(listing_id)
            if count >= self._media.max_photos:
                raise CapacityError(f"Maximum of {self._media.max_photos} photos per listing")

            if request.explicit_order is None or request.explicit_order > count:
                order_index = count + 1
            else:
                order_index = request.explicit_order
                self._media_repo.shift_photos_up(listing_id, order_index)

            asset = self._media_repo.add_asset(
                MediaAsset(
                    listing_id=listing_id,
                    listing_key=listing_key,
                    media_key=hashlib.md5(
                        f"{listing_id}_{url}_{time.time_ns()}".encode()
                    ).hexdigest(),
                    url=url,
                    category=MediaCategory.PHOTO,
                    order_index=order_index,
                    mime_type=processed.mime_type,
                    width=processed.width,
                    height=processed.height,
                    size_bytes=len(processed.data),
                    title=metadata.title,
                    alt_text=metadata.alt_text,
                    caption=metadata.caption,
                    description=metadata.description,
                )
            )
            record = _to_asset_record(asset)
            self._summary.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return record

    def _discard_blob(self, url: str) -> None:
        try:
            self._blob_store.delete(url)
        except OSError:
            logger.exception("Could not remove %s after failed upload", url)

    # ========== DELETE ==========

    def delete(self, listing_id: int, asset_id: int) -> None:
        """Delete one photo, close the order gap and remove its file.

        A file that is already gone is not an error.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
            AssetNotFoundError: If the photo doesn't exist on this listing.
            TransientStorageError: If the file or row could not be removed.
        """
        try:
            url = self._delete_asset(listing_id, asset_id)
        except SQLAlchemyError as e:
            logger.exception("Could not delete photo %d", asset_id)
            raise TransientStorageError(f"Could not delete photo {asset_id}: {e}") from e
        logger.info("Deleted photo %d (%s) from listing %d", asset_id, url, listing_id)

    @with_db_retry
    def _delete_asset(self, listing_id: int, asset_id: int) -> str:
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")

            asset = self._media_repo.get_asset(asset_id)
            if asset is None or asset.listing_id != listing_id:
                raise AssetNotFoundError(f"Photo {asset_id} not found on listing {listing_id}")

            url = asset.url
            removed_index = asset.order_index
            is_photo = asset.category == MediaCategory.PHOTO
            self._media_repo.delete_asset(asset)
            if is_photo:
                self._media_repo.close_order_gap(listing_id, removed_index)
            self._summary.recompute(listing_id)

            try:
                if not self._blob_store.delete(url):
                    logger.warning("File for photo %d was already gone: %s", asset_id, url)
            except OSError as e:
                raise TransientStorageError(f"Could not delete file {url}: {e}") from e

            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return url

    def delete_all(self, listing_id: int) -> int:
        """Delete every photo of a listing.

        Rows go first in one transaction; files are removed afterwards.

        Returns:
            Number of photos removed.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
            TransientStorageError: If the rows could not be removed.
        """
        try:
            urls = self._delete_all_rows(listing_id)
        except SQLAlchemyError as e:
            logger.exception("Could not delete photos of listing %d", listing_id)
            raise TransientStorageError(
                f"Could not delete photos of listing {listing_id}: {e}"
            ) from e

        for url in urls:
            try:
                self._blob_store.delete(url)
            except OSError:
                logger.exception("Could not remove file %s", url)
        logger.info("Deleted %d photos from listing %d", len(urls), listing_id)
        return len(urls)

    @with_db_retry
    def _delete_all_rows(self, listing_id: int) -> list[str]:
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")
            photos = self._media_repo.get_photos(listing_id)
            urls = [p.url for p in photos]
            for photo in photos:
                self._media_repo.delete_asset(photo)
            self._summary.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return urls

    # ========== REORDER ==========

    def reorder(self, listing_id: int, ordered_asset_ids: list[int]) -> list[AssetRecord]:
        """Put a listing's photos in the given order.

        Args:
            listing_id: Listing ID.
            ordered_asset_ids: Every photo id of the listing, first photo first.

        Returns:
            The photos in their new order.

        Raises:
            ListingNotFoundError: If listing doesn't exist.
            ValidationError: If the ids are not exactly the listing's photos.
            TransientStorageError: If the new order could not be saved.
        """
        try:
            records = self._reorder(listing_id, list(ordered_asset_ids))
        except SQLAlchemyError as e:
            logger.exception("Could not reorder photos of listing %d", listing_id)
            raise TransientStorageError(f"Could not reorder photos: {e}") from e
        logger.info("Reordered %d photos of listing %d", len(records), listing_id)
        return records

    @with_db_retry
    def _reorder(self, listing_id: int, ordered_asset_ids: list[int]) -> list[AssetRecord]:
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")

            photos = self._media_repo.get_photos(listing_id)
            by_id = {p.id: p for p in photos}
            if len(set(ordered_asset_ids)) != len(ordered_asset_ids):
                raise ValidationError("Photo order contains duplicate ids")
            if set(ordered_asset_ids) != set(by_id):
                unknown = sorted(set(ordered_asset_ids) - set(by_id))
                missing = sorted(set(by_id) - set(ordered_asset_ids))
                raise ValidationError(
                    f"Photo order must list every photo of listing {listing_id} exactly once "
                    f"(unknown: {unknown}, missing: {missing})"
                )

            for position, asset_id in enumerate(ordered_asset_ids, start=1):
                by_id[asset_id].order_index = position
            self._session.flush()
            records = [_to_asset_record(by_id[a]) for a in ordered_asset_ids]
            self._summary.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return records

    # ========== OPTIMIZE ==========

    def optimize_existing(self, batch_size: int | None = None, offset: int = 0) -> OptimizeResult:
        """Re-encode one batch of stored photos that are not WebP yet.

        Only photos of self-issued listings are touched. Each optimized
        photo gets a new WebP file; the row is switched to it in a
        transaction that locks the listing and refreshes its summary, and
        the old file is removed after the commit. Photos that are small
        already, or that do not get smaller, are skipped.

        Optimized photos leave the result set, so the next batch should
        start at ``next_offset`` (the photos skipped or failed so far).

        Args:
            batch_size: Photos to process. Defaults to the configured size.
            offset: Non-WebP photos to pass over before this batch.

        Returns:
            Counts for the batch and the number of photos left to visit.
        """
        threshold = self._settings.allocator.partition_threshold
        limit = batch_size or self._media.optimize_batch_size
        pending = [
            (a.id, a.listing_id, a.url)
            for a in self._media_repo.get_non_webp_photos(threshold, limit, offset)
        ]
        # Write transactions must start from a fresh snapshot
        self._session.rollback()

        result = OptimizeResult()
        for asset_id, listing_id, url in pending:
            result.processed += 1
            try:
                status, detail, saved = self._optimize_photo(asset_id, listing_id, url)
            except Exception as e:
                logger.exception("Unexpected failure optimizing photo %d", asset_id)
                status, detail, saved = _FAILED, str(e), 0

            if status == _OPTIMIZED:
                result.optimized += 1
                result.bytes_saved += saved
                continue
            if status == _SKIPPED:
                result.skipped += 1
            else:
                result.errors += 1
            result.messages.append(f"Photo {asset_id} {status}: {detail}")

        result.next_offset = offset + result.skipped + result.errors
        result.remaining = max(
            self._media_repo.count_non_webp_photos(threshold) - result.next_offset, 0
        )
        self._session.rollback()
        logger.info(
            "Optimized %d of %d photos (%d skipped, %d errors), saved %d bytes",
            result.optimized,
            result.processed,
            result.skipped,
            result.errors,
            result.bytes_saved,
        )
        return result

    def _optimize_photo(self, asset_id: int, listing_id: int, url: str) -> tuple[str, str, int]:
        """Re-encode one stored photo.

        Returns:
            Tuple of (status, detail, bytes saved).
        """
        try:
            data = self._blob_store.read(url)
        except OSError as e:
            return _FAILED, f"could not read {url}: {e}", 0
        if data is None:
            return _FAILED, f"file not found: {url}", 0
        if len(data) < self._media.optimize_skip_below:
            return _SKIPPED, f"already under {self._media.optimize_skip_below} bytes", 0

        detected = detect_image(data)
        if detected is None:
            return _FAILED, "stored file is not a readable image", 0

        processed = self._normalize(data, detected)
        if processed.mime_type != "image/webp" or len(processed.data) >= len(data):
            return _SKIPPED, "WebP version would not be smaller", 0

        stem = PurePosixPath(unquote(urlsplit(url).path)).stem
        now = utc_now()
        path = f"{self._settings.storage.path_prefix}/{now:%Y}/{now:%m}/{stem}.{processed.extension}"
        try:
            new_url = self._blob_store.put(path, processed.data, processed.mime_type)
        except OSError as e:
            return _FAILED, f"could not store WebP version: {e}", 0

        try:
            self._swap_asset_file(asset_id, listing_id, url, new_url, processed)
        except (ExclusiveListingsError, SQLAlchemyError) as e:
            logger.warning("Could not switch photo %d to %s: %s", asset_id, new_url, e)
            self._discard_blob(new_url)
            return _FAILED, str(e), 0
        except Exception:
            self._discard_blob(new_url)
            raise

        try:
            self._blob_store.delete(url)
        except OSError:
            logger.exception("Could not remove replaced file %s", url)

        saved = len(data) - len(processed.data)
        logger.info("Photo %d now at %s (%d bytes saved)", asset_id, new_url, saved)
        return _OPTIMIZED, new_url, saved

    @with_db_retry
    def _swap_asset_file(
        self,
        asset_id: int,
        listing_id: int,
        old_url: str,
        new_url: str,
        processed: ProcessedImage,
    ) -> None:
        try:
            if not self._listing_repo.lock_listing(listing_id):
                raise ListingNotFoundError(f"Listing {listing_id} not found")

            asset = self._media_repo.get_asset(asset_id)
            if asset is None or asset.url != old_url:
                raise AssetNotFoundError(f"Photo {asset_id} changed while being optimized")

            asset.url = new_url
            asset.mime_type = processed.mime_type
            asset.size_bytes = len(processed.data)
            asset.width = processed.width
            asset.height = processed.height
            self._session.flush()
            self._summary.recompute(listing_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise


def register_deletion_handler(
    blob_store: BlobStore,
    session_factory: Callable[[], Session],
    settings: Settings | None = None,
) -> DeletionListener:
    """Reconcile affected listings whenever a stored file is deleted out of band.

    Args:
        blob_store: Store whose deletion events to follow.
        session_factory: Creates a fresh session per event.
        settings: Application settings.

    Returns:
        The registered listener.
    """

    def on_blob_deleted(url: str) -> None:
        with session_factory() as session:
            listing_ids = MediaRepository(session).get_listing_ids_for_url(url)
            reconciler = Reconciler(session, blob_store, settings)
            for listing_id in listing_ids:
                result = reconciler.reconcile(listing_id)
                logger.info(
                    "Out-of-band deletion of %s: listing %d cleaned %d photo(s)",
                    url,
                    listing_id,
                    result.cleaned,
                )

    blob_store.subscribe(on_blob_deleted)
    return on_blob_deleted
