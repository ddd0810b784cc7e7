"""
Shared fixtures: an in-memory store double, a controllable clock and a fake
Guesty calendar source, plus a TestClient wired to them.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Generator, Iterator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from casa_booking.context import ServiceContext
from casa_booking.dependencies import get_context
from casa_booking.errors import UpstreamUnavailable
from casa_booking.main import app
from casa_booking.services.availability_cache import AvailabilityCache
from casa_booking.services.family_bookings import FamilyBookingWorkflow
from casa_booking.services.family_sessions import FamilySessionService

PROPERTY_ID = "listing-123"
FAMILY_PASSWORD = "Casa-Familia"


class InMemoryStore:
    """Thread-safe stand-in for StoreHandle."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int | None] = {}
        self.healthy = True
        self.locks_available = True
        self._mutex = threading.RLock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> str | None:
        with self._mutex:
            return self.data.get(key)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._mutex:
            self.data[key] = value
            self.ttls[key] = ttl_seconds

    def delete(self, key: str) -> None:
        with self._mutex:
            self.data.pop(key, None)
            self.ttls.pop(key, None)

    def add_to_set(self, key: str, member: str) -> None:
        with self._mutex:
            self.sets.setdefault(key, set()).add(member)

    def remove_from_set(self, key: str, member: str) -> None:
        with self._mutex:
            self.sets.get(key, set()).discard(member)

    def set_members(self, key: str) -> set[str]:
        with self._mutex:
            return set(self.sets.get(key, set()))

    def compare_and_set(
        self,
        key: str,
        value: str,
        should_replace: Callable[[str | None], bool],
        ttl_seconds: int | None = None,
    ) -> bool:
        with self._mutex:
            if not should_replace(self.data.get(key)):
                return False
            self.data[key] = value
            self.ttls[key] = ttl_seconds
            return True

    def ping(self) -> bool:
        return self.healthy

    @contextmanager
    def single_flight(
        self, key: str, hold_seconds: float = 30.0, wait_seconds: float = 10.0
    ) -> Iterator[bool]:
        if not self.locks_available:
            yield False
            return
        with self._mutex:
            lock = self._locks.setdefault(key, threading.Lock())
        acquired = lock.acquire(timeout=wait_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


class FakeClock:
    """Callable clock returning a settable UTC datetime."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCalendarSource:
    """
    Records ``get_calendar`` calls and returns one ``available`` day per
    night. Ranges whose start is in ``failing`` raise UpstreamUnavailable.
    """

    def __init__(self, price: float = 250.0) -> None:
        self.price = price
        self.calls: list[tuple[str, date, date]] = []
        self.failing: set[date] = set()
        self.overrides: dict[str, dict[str, Any]] = {}
        self._mutex = threading.Lock()

    def get_calendar(self, listing_id: str, start: date, end: date) -> Any:
        with self._mutex:
            self.calls.append((listing_id, start, end))
        if start in self.failing:
            raise UpstreamUnavailable(f"Guesty calendar request failed for {start}")
        days = []
        current = start
        while current < end:
            day = {"date": current.isoformat(), "status": "available", "price": self.price}
            day.update(self.overrides.get(current.isoformat(), {}))
            days.append(day)
            current += timedelta(days=1)
        return days


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 11, 17, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def calendar_source() -> FakeCalendarSource:
    return FakeCalendarSource()


@pytest.fixture
def cache(
    store: InMemoryStore, calendar_source: FakeCalendarSource, clock: FakeClock
) -> AvailabilityCache:
    return AvailabilityCache(
        store,
        calendar_source,
        property_id=PROPERTY_ID,
        ttl_seconds=3600,
        retention_seconds=7 * 24 * 3600,
        clock=clock,
        lock_wait_seconds=1,
    )


@pytest.fixture
def workflow(store: InMemoryStore, clock: FakeClock) -> FamilyBookingWorkflow:
    counter = iter(range(1, 10_000))
    return FamilyBookingWorkflow(store, clock=clock, id_factory=lambda: f"booking-{next(counter)}")


@pytest.fixture
def sessions(store: InMemoryStore, clock: FakeClock) -> FamilySessionService:
    return FamilySessionService(store, FAMILY_PASSWORD, session_days=30, clock=clock.timestamp)


@pytest.fixture
def service_context(
    store: InMemoryStore,
    cache: AvailabilityCache,
    workflow: FamilyBookingWorkflow,
    sessions: FamilySessionService,
) -> ServiceContext:
    return ServiceContext(
        store=store,  # type: ignore[arg-type]
        guesty=MagicMock(),
        availability=cache,
        family=workflow,
        sessions=sessions,
        property_id=PROPERTY_ID,
    )


@pytest.fixture
def client(service_context: ServiceContext) -> Generator[TestClient, None, None]:
    """TestClient with the service context replaced by in-memory fakes."""
    app.dependency_overrides[get_context] = lambda: service_context
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def family_client(client: TestClient, sessions: FamilySessionService) -> TestClient:
    """TestClient already carrying a valid family session cookie."""
    client.cookies.set("family_session", sessions.create_session())
    return client
