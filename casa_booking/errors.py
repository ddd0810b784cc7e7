"""
Error taxonomy shared by the services and the HTTP layer.

Each error carries a human-readable message and the HTTP status the API
renders it with. Handlers registered in ``casa_booking.main`` translate them
into ``{"error": message}`` responses, so services never import FastAPI.
"""

from __future__ import annotations


class CasaError(Exception):
    """Base class for all domain errors raised by this service."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CasaError):
    """Caller input is missing or out of range. User-correctable."""

    status_code = 400


class BookingConflict(CasaError):
    """Requested stay overlaps an approved family booking."""

    status_code = 409


class NotFound(CasaError):
    """Referenced entity does not exist."""

    status_code = 404


class InvalidTransition(CasaError):
    """Family booking state machine violation (e.g. approving twice)."""

    status_code = 409


class UpstreamError(CasaError):
    """Base class for failures talking to the Guesty API."""

    status_code = 502


class UpstreamUnavailable(UpstreamError):
    """Guesty unreachable, timed out, or still failing after retries."""

    status_code = 503


class UpstreamDataError(UpstreamError):
    """Guesty answered with a payload of unexpected shape."""

    status_code = 502


class UpstreamRejected(UpstreamError):
    """Guesty refused the request with a non-retryable 4xx."""

    status_code = 422

    def __init__(self, message: str, upstream_status: int) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class CacheUnavailable(CasaError):
    """The key-value store could not be reached."""

    status_code = 503
