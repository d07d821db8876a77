"""Shared fixtures: temporary database, blob store and generated images."""

import io
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from exclusive_listings.api.dependencies import get_blob_store, get_db, get_settings
from exclusive_listings.api.main import create_app
from exclusive_listings.config import (
    MediaSettings,
    ReconcilerSettings,
    Settings,
    StorageSettings,
)
from exclusive_listings.database.repository import ListingRepository
from exclusive_listings.models.db_models import Base
from exclusive_listings.models.pydantic_models import ListingCreate
from exclusive_listings.services.id_allocator import generate_listing_key
from exclusive_listings.services.media_service import register_deletion_handler
from exclusive_listings.storage.blob_store import LocalBlobStore

BASE_URL = "http://testserver/media"


def make_image_bytes(
    fmt: str = "JPEG",
    size: tuple[int, int] = (64, 48),
    color: tuple[int, int, int] = (200, 30, 30),
) -> bytes:
    """Render a solid-color image in the given Pillow format."""
    img = Image.new("RGB", size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_animated_gif(frames: int = 3, size: tuple[int, int] = (32, 32)) -> bytes:
    """Render a small animated GIF."""
    images = [Image.new("RGB", size, (i * 60, 0, 0)) for i in range(frames)]
    buffer = io.BytesIO()
    images[0].save(buffer, format="GIF", save_all=True, append_images=images[1:], duration=100)
    return buffer.getvalue()


@pytest.fixture
def test_engine(tmp_path: Path) -> Engine:
    """Create a file-backed SQLite engine (shared across threads)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def session_factory(test_engine: Engine) -> sessionmaker[Session]:
    """Create a session factory for the test database."""
    return sessionmaker(bind=test_engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing storage at a temporary directory."""
    return Settings(
        media=MediaSettings(brokerage_name="Test Realty"),
        storage=StorageSettings(root=tmp_path / "media", base_url=BASE_URL),
        reconciler=ReconcilerSettings(check_timeout_seconds=1.0, check_concurrency=4),
    )


@pytest.fixture
def blob_store(settings: Settings) -> LocalBlobStore:
    """Filesystem blob store under the temporary media root."""
    return LocalBlobStore(settings.storage.root, settings.storage.base_url)


def create_test_listing(session: Session, listing_id: int = 42, **overrides) -> int:
    """Insert a listing with a Boston address and return its id."""
    data = {
        "street_number": "123",
        "street_name": "Main St",
        "city": "Boston",
        "state_or_province": "MA",
        "property_type": "Residential",
        "list_price": 750000,
        "bedrooms_total": 3,
        "bathrooms_total": 2.0,
    }
    data.update(overrides)
    ListingRepository(session).create_listing(
        listing_id, generate_listing_key(listing_id), ListingCreate(**data)
    )
    return listing_id


@pytest.fixture
def listing_id(db_session: Session) -> int:
    """A listing with id 42 and no photos."""
    return create_test_listing(db_session)


@pytest.fixture
def client(
    session_factory: sessionmaker[Session],
    settings: Settings,
    blob_store: LocalBlobStore,
) -> Generator[TestClient, None, None]:
    """Create a test client wired to the temporary database and blob store."""
    app = create_app()

    def override_get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    register_deletion_handler(blob_store, session_factory, settings)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as test_client:
        yield test_client
