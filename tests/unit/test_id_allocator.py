"""Tests for listing id allocation."""

import threading
from unittest.mock import patch

import pytest
from sqlalchemy.exc import DatabaseError
from sqlalchemy.orm import Session, sessionmaker

from exclusive_listings.config import AllocatorSettings
from exclusive_listings.database.repository import CounterRepository
from exclusive_listings.models.db_models import ListingIdCounter
from exclusive_listings.services.errors import AllocationFailure
from exclusive_listings.services.id_allocator import IdAllocator, generate_listing_key


class TestAllocate:
    """Tests for IdAllocator.allocate()."""

    def test_first_allocation_returns_start_value(self, db_session: Session) -> None:
        """An empty counter hands out the start value first."""
        allocator = IdAllocator(db_session)
        assert allocator.allocate() == 1

    def test_custom_start_value(self, db_session: Session) -> None:
        """start_value controls the first id."""
        allocator = IdAllocator(db_session, AllocatorSettings(start_value=500))
        assert allocator.allocate() == 500
        assert allocator.allocate() == 501

    def test_sequential_allocations_increase(self, db_session: Session) -> None:
        """Consecutive allocations never repeat."""
        allocator = IdAllocator(db_session)
        ids = [allocator.allocate() for _ in range(5)]
        assert ids == [1, 2, 3, 4, 5]

    def test_counter_row_persisted(self, db_session: Session) -> None:
        """The counter value survives in the counter table."""
        allocator = IdAllocator(db_session)
        allocator.allocate()
        allocator.allocate()

        counter = db_session.get(ListingIdCounter, "exclusive_listing")
        assert counter is not None
        assert counter.last_value == 2

    def test_independent_counter_names(self, db_session: Session) -> None:
        """Differently named counters do not share values."""
        a = IdAllocator(db_session, AllocatorSettings(counter_name="a"))
        b = IdAllocator(db_session, AllocatorSettings(counter_name="b", start_value=100))
        assert a.allocate() == 1
        assert b.allocate() == 100
        assert a.allocate() == 2

    def test_partition_exhausted_raises(self, db_session: Session) -> None:
        """Reaching the threshold fails instead of issuing a feed-owned id."""
        allocator = IdAllocator(db_session, AllocatorSettings(partition_threshold=3))
        assert allocator.allocate() == 1
        assert allocator.allocate() == 2

        with pytest.raises(AllocationFailure, match="exhausted"):
            allocator.allocate()

    def test_exhausted_increment_is_rolled_back(self, db_session: Session) -> None:
        """A failed allocation leaves the counter where it was."""
        allocator = IdAllocator(db_session, AllocatorSettings(partition_threshold=2))
        allocator.allocate()

        with pytest.raises(AllocationFailure):
            allocator.allocate()

        assert CounterRepository(db_session).get_last_value("exclusive_listing") == 1

    def test_database_error_raises_allocation_failure(self, db_session: Session) -> None:
        """Database errors never turn into a fallback id."""
        allocator = IdAllocator(db_session)
        with (
            patch.object(
                CounterRepository,
                "increment",
                side_effect=DatabaseError("UPDATE", None, Exception("disk I/O error")),
            ),
            pytest.raises(AllocationFailure, match="unavailable"),
        ):
            allocator.allocate()

    def test_concurrent_allocations_are_distinct(
        self, session_factory: sessionmaker[Session]
    ) -> None:
        """Parallel callers on separate sessions never get the same id."""
        results: list[int] = []
        errors: list[Exception] = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def worker() -> None:
            session = session_factory()
            try:
                allocator = IdAllocator(session)
                start.wait()
                for _ in range(5):
                    value = allocator.allocate()
                    with lock:
                        results.append(value)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(results) == 40
        assert len(set(results)) == 40
        assert all(0 < value < 1_000_000 for value in results)
        assert sorted(results) == list(range(1, 41))

    def test_two_concurrent_first_allocations(self, session_factory: sessionmaker[Session]) -> None:
        """Two callers racing on an empty counter get two different ids."""
        results: list[int] = []
        start = threading.Barrier(2)

        def worker() -> None:
            session = session_factory()
            try:
                allocator = IdAllocator(session)
                start.wait()
                results.append(allocator.allocate())
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == [1, 2]


class TestPeekNext:
    """Tests for IdAllocator.peek_next()."""

    def test_peek_on_empty_counter(self, db_session: Session) -> None:
        assert IdAllocator(db_session).peek_next() == 1

    def test_peek_does_not_consume(self, db_session: Session) -> None:
        """Peeking twice shows the same value, and allocate() then returns it."""
        allocator = IdAllocator(db_session)
        allocator.allocate()

        assert allocator.peek_next() == 2
        assert allocator.peek_next() == 2
        assert allocator.allocate() == 2


class TestIsSelfIssued:
    """Tests for partition membership."""

    @pytest.mark.parametrize(
        ("listing_id", "expected"),
        [(1, True), (999_999, True), (1_000_000, False), (73_000_123, False), (0, False)],
    )
    def test_threshold_boundaries(
        self, db_session: Session, listing_id: int, expected: bool
    ) -> None:
        assert IdAllocator(db_session).is_self_issued(listing_id) is expected


class TestGenerateListingKey:
    """Tests for generate_listing_key()."""

    def test_key_is_md5_of_prefixed_id(self) -> None:
        import hashlib

        assert generate_listing_key(42) == hashlib.md5(b"exclusive_42").hexdigest()

    def test_keys_differ_per_listing(self) -> None:
        assert generate_listing_key(1) != generate_listing_key(2)
