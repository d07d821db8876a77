"""Database module."""

from exclusive_listings.database.engine import get_engine, get_session, init_db
from exclusive_listings.database.repository import (
    CounterRepository,
    ListingRepository,
    MediaRepository,
)

__all__ = [
    "get_engine",
    "get_session",
    "init_db",
    "CounterRepository",
    "ListingRepository",
    "MediaRepository",
]
