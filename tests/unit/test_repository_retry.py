"""Lock errors on the write paths are retried with backoff, then surfaced."""

from collections.abc import Callable, Generator
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from conftest import make_image_bytes
from exclusive_listings.config import MediaSettings, Settings
from exclusive_listings.database.repository import (
    DB_RETRY_MAX_ATTEMPTS,
    CounterRepository,
    ListingRepository,
)
from exclusive_listings.models.db_models import Listing, MediaAsset
from exclusive_listings.models.pydantic_models import UploadRequest
from exclusive_listings.services.errors import AllocationFailure, TransientStorageError
from exclusive_listings.services.id_allocator import IdAllocator
from exclusive_listings.services.media_service import MediaService
from exclusive_listings.services.reconciler import Reconciler
from exclusive_listings.storage.blob_store import LocalBlobStore


def locked(statement: str = "UPDATE listings") -> OperationalError:
    return OperationalError(statement, None, Exception("database is locked"))


def failing_first(original: Callable, failures: int, error: Exception) -> tuple[Callable, list]:
    """Wrap a repository method so its first calls raise error."""
    calls: list = []

    def wrapper(self, *args, **kwargs):
        calls.append(args)
        if len(calls) <= failures:
            raise error
        return original(self, *args, **kwargs)

    return wrapper, calls


def jpeg_request(name: str = "photo.jpg") -> UploadRequest:
    return UploadRequest.from_bytes(name, make_image_bytes(), "image/jpeg")


@pytest.fixture(autouse=True)
def no_backoff() -> Generator[None, None, None]:
    with patch("exclusive_listings.database.repository.wait_exponential", return_value=0):
        yield


@pytest.fixture
def service(db_session: Session, blob_store: LocalBlobStore, settings: Settings) -> MediaService:
    return MediaService(db_session, blob_store, settings)


class TestAllocationRetry:
    """IdAllocator.allocate() against a locked counter row."""

    def test_locked_counter_is_retried(self, db_session: Session) -> None:
        flaky, calls = failing_first(CounterRepository.increment, 2, locked("UPDATE counters"))

        with patch.object(CounterRepository, "increment", flaky):
            listing_id = IdAllocator(db_session).allocate()

        assert listing_id == 1
        assert len(calls) >= 3

    def test_integrity_error_is_not_retried(self, db_session: Session) -> None:
        error = IntegrityError("UPDATE counters", None, Exception("constraint failed"))
        flaky, calls = failing_first(CounterRepository.increment, 99, error)

        with patch.object(CounterRepository, "increment", flaky):
            with pytest.raises(AllocationFailure):
                IdAllocator(db_session).allocate()

        assert len(calls) == 1


class TestPhotoWriteRetry:
    """Photo transactions take the listing lock first and retry when it is busy."""

    def test_upload_retries_listing_lock(
        self, service: MediaService, db_session: Session, listing_id: int
    ) -> None:
        flaky, calls = failing_first(ListingRepository.lock_listing, 1, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            asset = service.upload(listing_id, jpeg_request())

        assert len(calls) == 2
        assert asset.order_index == 1
        assert db_session.scalar(select(func.count(MediaAsset.id))) == 1
        assert db_session.get(Listing, listing_id).photo_count == 1

    def test_delete_retries_listing_lock(
        self, service: MediaService, blob_store: LocalBlobStore, listing_id: int
    ) -> None:
        asset = service.upload(listing_id, jpeg_request())
        flaky, calls = failing_first(ListingRepository.lock_listing, 2, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            service.delete(listing_id, asset.id)

        assert len(calls) == 3
        assert service.get_photos(listing_id) == []
        assert blob_store.path_for(asset.url).exists() is False

    def test_delete_gives_up_after_max_attempts(
        self, service: MediaService, blob_store: LocalBlobStore, listing_id: int
    ) -> None:
        """A lock that never frees is a transient error and nothing is removed."""
        asset = service.upload(listing_id, jpeg_request())
        flaky, calls = failing_first(ListingRepository.lock_listing, 99, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            with pytest.raises(TransientStorageError, match="database is locked"):
                service.delete(listing_id, asset.id)

        assert len(calls) == DB_RETRY_MAX_ATTEMPTS
        assert [p.id for p in service.get_photos(listing_id)] == [asset.id]
        assert blob_store.path_for(asset.url).is_file()

    def test_optimize_retries_file_swap(
        self,
        db_session: Session,
        blob_store: LocalBlobStore,
        settings: Settings,
        listing_id: int,
    ) -> None:
        plain = MediaService(
            db_session,
            blob_store,
            settings.model_copy(update={"media": MediaSettings(convert_to_webp=False)}),
        )
        original = plain.upload(listing_id, jpeg_request())
        optimizer = MediaService(
            db_session,
            blob_store,
            settings.model_copy(update={"media": MediaSettings(optimize_skip_below=0)}),
        )
        flaky, calls = failing_first(ListingRepository.lock_listing, 1, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            result = optimizer.optimize_existing()

        assert len(calls) == 2
        assert (result.optimized, result.errors) == (1, 0)
        photo = optimizer.get_photos(listing_id)[0]
        assert photo.mime_type == "image/webp"
        assert blob_store.path_for(original.url).exists() is False


class TestReconcileRetry:
    """Reconciler cleanup against a busy listing row."""

    def test_orphan_removal_retries_listing_lock(
        self,
        service: MediaService,
        db_session: Session,
        blob_store: LocalBlobStore,
        settings: Settings,
        listing_id: int,
    ) -> None:
        asset = service.upload(listing_id, jpeg_request())
        blob_store.path_for(asset.url).unlink()
        flaky, calls = failing_first(ListingRepository.lock_listing, 1, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            result = Reconciler(db_session, blob_store, settings).reconcile(listing_id)

        assert len(calls) == 2
        assert (result.orphaned, result.cleaned) == (1, 1)
        assert result.errors == []
        assert db_session.get(Listing, listing_id).photo_count == 0

    def test_orphan_left_when_lock_never_frees(
        self,
        service: MediaService,
        db_session: Session,
        blob_store: LocalBlobStore,
        settings: Settings,
        listing_id: int,
    ) -> None:
        asset = service.upload(listing_id, jpeg_request())
        blob_store.path_for(asset.url).unlink()
        flaky, calls = failing_first(ListingRepository.lock_listing, 99, locked())

        with patch.object(ListingRepository, "lock_listing", flaky):
            result = Reconciler(db_session, blob_store, settings).reconcile(listing_id)

        assert len(calls) == DB_RETRY_MAX_ATTEMPTS
        assert (result.orphaned, result.cleaned) == (1, 0)
        assert len(result.errors) == 1
        assert [p.id for p in service.get_photos(listing_id)] == [asset.id]
