"""Tests for database location, SQLite setup and the shared session factory."""

import threading
from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import func, inspect, select, text

from exclusive_listings.database.engine import (
    DATABASE_URL_ENV_VAR,
    DB_PATH_ENV_VAR,
    DEFAULT_DB_PATH,
    SQLITE_BUSY_TIMEOUT,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from exclusive_listings.models.db_models import Listing
from exclusive_listings.models.pydantic_models import ListingCreate
from exclusive_listings.services.listing_service import ListingService
from exclusive_listings.storage.blob_store import LocalBlobStore


@pytest.fixture(autouse=True)
def fresh_engine(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Start every test without a shared engine or database env vars."""
    monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)
    monkeypatch.delenv(DB_PATH_ENV_VAR, raising=False)
    reset_engine()
    yield
    reset_engine()


class TestDatabaseLocation:
    """Tests for get_database_url()."""

    def test_default_is_data_directory(self) -> None:
        assert get_database_url() == f"sqlite:///{DEFAULT_DB_PATH}"

    def test_db_path_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(DB_PATH_ENV_VAR, str(tmp_path / "listings.db"))
        assert get_database_url() == f"sqlite:///{tmp_path / 'listings.db'}"

    def test_explicit_path_beats_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(DB_PATH_ENV_VAR, str(tmp_path / "env.db"))
        assert get_database_url(tmp_path / "cli.db") == f"sqlite:///{tmp_path / 'cli.db'}"

    def test_database_url_beats_paths(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(DATABASE_URL_ENV_VAR, "postgresql://listings@db/listings")
        monkeypatch.setenv(DB_PATH_ENV_VAR, str(tmp_path / "env.db"))

        assert get_database_url(tmp_path / "cli.db") == "postgresql://listings@db/listings"


class TestSqliteEngine:
    """Tests for the SQLite engine built by get_engine()."""

    def test_opens_env_path_and_creates_directory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db_path = tmp_path / "nested" / "listings.db"
        monkeypatch.setenv(DB_PATH_ENV_VAR, str(db_path))

        engine = get_engine()

        assert engine.url.database == str(db_path)
        assert db_path.parent.is_dir()

    def test_every_connection_uses_wal(self, tmp_path: Path) -> None:
        engine = init_db(tmp_path / "wal.db")

        with engine.connect() as first, engine.connect() as second:
            for conn in (first, second):
                assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"

    def test_writers_wait_for_the_lock(self, tmp_path: Path) -> None:
        engine = init_db(tmp_path / "busy.db")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA busy_timeout")).scalar() == SQLITE_BUSY_TIMEOUT * 1000

    def test_creates_service_tables(self, tmp_path: Path) -> None:
        tables = set(inspect(init_db(tmp_path / "schema.db")).get_table_names())
        assert {"listings", "media_assets", "listing_id_counters"} <= tables

    def test_shared_until_reset(self, tmp_path: Path) -> None:
        first = get_engine(tmp_path / "a.db")
        assert get_engine(tmp_path / "b.db") is first

        reset_engine()
        second = get_engine(tmp_path / "b.db")

        assert second is not first
        assert second.url.database == str(tmp_path / "b.db")


class TestSessions:
    """Tests for get_session_factory() and get_session()."""

    def test_factory_bound_to_shared_engine(self, tmp_path: Path) -> None:
        engine = init_db(tmp_path / "s.db")

        with get_session_factory()() as session:
            assert session.get_bind() is engine

    def test_factory_rebuilt_after_reset(self, tmp_path: Path) -> None:
        init_db(tmp_path / "a.db")
        first = get_session_factory()
        reset_engine()
        init_db(tmp_path / "b.db")

        assert get_session_factory() is not first

    def test_get_session(self, tmp_path: Path) -> None:
        init_db(tmp_path / "s.db")
        with get_session() as session:
            assert session.execute(text("SELECT 1")).scalar() == 1

    def test_concurrent_listing_creation(self, tmp_path: Path) -> None:
        """Threads creating listings through the shared factory get distinct ids."""
        init_db(tmp_path / "concurrent.db")
        factory = get_session_factory()
        store = LocalBlobStore(tmp_path / "media", "http://testserver/media")
        created: list[int] = []
        errors: list[Exception] = []
        lock = threading.Lock()
        start = threading.Barrier(4)

        def worker(n: int) -> None:
            try:
                with factory() as session:
                    service = ListingService(session, store)
                    start.wait()
                    for i in range(5):
                        listing = service.create_listing(ListingCreate(street_number=f"{n}{i}"))
                        with lock:
                            created.append(listing.id)
            except Exception as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(created) == list(range(1, 21))
        with get_session() as session:
            assert session.scalar(select(func.count(Listing.id))) == 20
