"""
Process-wide service context.

Built once at application startup and handed to request handlers through
``casa_booking.dependencies.get_context``. It owns the single store handle
every component shares.
"""

from __future__ import annotations

from dataclasses import dataclass

from casa_booking import config
from casa_booking.guesty.auth import TokenProvider
from casa_booking.guesty.client import GuestyClient, worst_case_seconds
from casa_booking.services.availability_cache import AvailabilityCache
from casa_booking.services.family_bookings import FamilyBookingWorkflow
from casa_booking.services.family_sessions import FamilySessionService
from casa_booking.store.handle import StoreHandle


@dataclass
class ServiceContext:
    store: StoreHandle
    guesty: GuestyClient
    availability: AvailabilityCache
    family: FamilyBookingWorkflow
    sessions: FamilySessionService
    property_id: str


def build_context() -> ServiceContext:
    """Wire services from configuration. No connection is opened here."""
    store = StoreHandle(config.REDIS_URL, socket_timeout=config.REDIS_SOCKET_TIMEOUT_SECONDS)
    tokens = TokenProvider(
        store,
        client_id=config.GUESTY_CLIENT_ID,
        client_secret=config.GUESTY_CLIENT_SECRET,
        token_url=config.GUESTY_OAUTH_TOKEN_URL,
        scope=config.GUESTY_OAUTH_SCOPE,
        timeout=config.UPSTREAM_TIMEOUT_SECONDS,
    )
    guesty = GuestyClient(tokens, config.GUESTY_API_BASE, timeout=config.UPSTREAM_TIMEOUT_SECONDS)
    availability = AvailabilityCache(
        store,
        guesty,
        property_id=config.GUESTY_PROPERTY_ID,
        ttl_seconds=config.AVAILABILITY_TTL_SECONDS,
        retention_seconds=config.AVAILABILITY_STALE_RETENTION_SECONDS,
        lock_hold_seconds=worst_case_seconds(config.UPSTREAM_TIMEOUT_SECONDS) + 10,
        lock_wait_seconds=config.UPSTREAM_TIMEOUT_SECONDS * 2 + 5,
    )
    return ServiceContext(
        store=store,
        guesty=guesty,
        availability=availability,
        family=FamilyBookingWorkflow(store),
        sessions=FamilySessionService(
            store, config.FAMILY_PASSWORD, session_days=config.FAMILY_SESSION_DAYS
        ),
        property_id=config.GUESTY_PROPERTY_ID,
    )
