"""FastAPI dependency injection for database sessions, storage and services."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from exclusive_listings.config import Settings, load_settings
from exclusive_listings.database.engine import get_session_factory
from exclusive_listings.services.listing_service import ListingService
from exclusive_listings.services.media_service import MediaService, register_deletion_handler
from exclusive_listings.services.reconciler import Reconciler
from exclusive_listings.services.summary_service import SummaryService
from exclusive_listings.storage.blob_store import BlobStore, create_blob_store


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session.

    Yields:
        Database session that is automatically closed after use.
    """
    session_factory = get_session_factory()
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# Settings singleton (loaded once on first use)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Dependency that provides the application settings.

    Returns:
        Settings loaded from the YAML config file.
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


# Blob store singleton; its deletion listeners live as long as the app
_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Dependency that provides the configured blob store.

    The first call also subscribes the out-of-band deletion handler.

    Returns:
        Shared BlobStore instance.
    """
    global _blob_store
    if _blob_store is None:
        settings = get_settings()
        store = create_blob_store(settings.storage)
        register_deletion_handler(store, get_session_factory(), settings)
        _blob_store = store
    return _blob_store


def close_blob_store() -> None:
    """Close the shared blob store, if one was created, and forget it."""
    global _blob_store
    if _blob_store is not None:
        _blob_store.close()
    _blob_store = None


def reset_dependencies() -> None:
    """Forget cached settings and blob store. Useful for testing."""
    global _settings, _blob_store
    _settings = None
    _blob_store = None


SettingsDep = Annotated[Settings, Depends(get_settings)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]


def get_listing_service(
    session: Annotated[Session, Depends(get_db)],
    blob_store: BlobStoreDep,
    settings: SettingsDep,
) -> ListingService:
    """Dependency that provides a ListingService instance.

    Args:
        session: Database session from get_db dependency.
        blob_store: Blob store from get_blob_store dependency.
        settings: Settings from get_settings dependency.

    Returns:
        ListingService instance.
    """
    return ListingService(session, blob_store, settings)


def get_media_service(
    session: Annotated[Session, Depends(get_db)],
    blob_store: BlobStoreDep,
    settings: SettingsDep,
) -> MediaService:
    """Dependency that provides a MediaService instance."""
    return MediaService(session, blob_store, settings)


def get_reconciler(
    session: Annotated[Session, Depends(get_db)],
    blob_store: BlobStoreDep,
    settings: SettingsDep,
) -> Reconciler:
    """Dependency that provides a Reconciler instance."""
    return Reconciler(session, blob_store, settings)


def get_summary_service(
    session: Annotated[Session, Depends(get_db)],
    settings: SettingsDep,
) -> SummaryService:
    """Dependency that provides a SummaryService instance."""
    return SummaryService(session, settings.allocator)


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db)]
ListingServiceDep = Annotated[ListingService, Depends(get_listing_service)]
MediaServiceDep = Annotated[MediaService, Depends(get_media_service)]
ReconcilerDep = Annotated[Reconciler, Depends(get_reconciler)]
SummaryServiceDep = Annotated[SummaryService, Depends(get_summary_service)]
