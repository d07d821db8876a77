"""SQLAlchemy engine and sessions for the listings database."""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from exclusive_listings.models.db_models import Base

# Full SQLAlchemy URL; wins over every other setting
DATABASE_URL_ENV_VAR = "DATABASE_URL"

# Path of the SQLite file when DATABASE_URL is not set
DB_PATH_ENV_VAR = "EXCLUSIVE_LISTINGS_DB_PATH"

# Relative to the working directory, like the media root in settings
DEFAULT_DB_PATH = Path("data") / "exclusive_listings.db"

# Seconds a SQLite writer waits for the lock before OperationalError
SQLITE_BUSY_TIMEOUT = 30

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """Resolve which database to use.

    ``DATABASE_URL`` comes first, then ``db_path``, then
    ``EXCLUSIVE_LISTINGS_DB_PATH``, then ``data/exclusive_listings.db``.
    """
    if url := os.environ.get(DATABASE_URL_ENV_VAR):
        return url
    path = db_path or os.environ.get(DB_PATH_ENV_VAR) or DEFAULT_DB_PATH
    return f"sqlite:///{path}"


def _use_wal(dbapi_connection: Any, connection_record: Any) -> None:
    # Readers keep going while an upload or id allocation holds the write lock
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def _build_engine(url: str, echo: bool) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_size=5, pool_recycle=3600, pool_pre_ping=True)

    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )
    event.listen(engine, "connect", _use_wal)
    return engine


def get_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Get the shared engine, creating it and any missing tables on first use.

    Arguments only matter on the first call; use reset_engine() to point
    the process at another database.
    """
    global _engine
    if _engine is None:
        _engine = _build_engine(get_database_url(db_path), echo)
        Base.metadata.create_all(_engine)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False)
    return _session_factory


@contextmanager
def get_session() -> Iterator[Session]:
    """Session for one CLI command or script step, closed on exit."""
    with get_session_factory()() as session:
        yield session


def init_db(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Open the database and create any missing tables."""
    return get_engine(db_path, echo)


def reset_engine() -> None:
    """Dispose of the shared engine so the next call opens a new one."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
