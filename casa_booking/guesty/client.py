"""
Client for the Guesty booking-engine API with bounded timeouts, a single
retry for transient failures and token refresh on 401.
"""

from __future__ import annotations

import time
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urljoin

import requests
import structlog

from casa_booking.errors import UpstreamDataError, UpstreamRejected, UpstreamUnavailable
from casa_booking.guesty.auth import TokenProvider
from casa_booking.metrics import upstream_latency, upstream_requests

logger = structlog.get_logger(__name__)

MAX_RETRIES = 1
RETRY_DELAY = 1.0


def worst_case_seconds(timeout: float) -> float:
    """
    Upper bound on one ``GuestyClient.request`` call: the first attempt, one
    repeat after a 401 and MAX_RETRIES retries, plus a token request before
    the first attempt and after the 401, each up to ``timeout``, and the
    retry sleeps.

    Example:
        >>> worst_case_seconds(20)
        101.0
    """
    attempts = 2 + MAX_RETRIES
    sleeps = sum(RETRY_DELAY * n for n in range(1, MAX_RETRIES + 1))
    return float(timeout * (attempts + 2) + sleeps)


def should_retry(res: Optional[requests.Response], err: Optional[Exception]) -> bool:
    """
    Determine whether the request should be retried based on response or error.

    Args:
        res (Optional[requests.Response]): Response object if available.
        err (Optional[Exception]): Exception raised by the request, if any.

    Returns:
        bool: True if the request should be retried, False otherwise.
    """
    if res is not None and res.status_code == 429:
        return True
    if isinstance(err, (requests.Timeout, requests.ConnectionError)):
        return True
    if res is not None and 500 <= res.status_code < 600:
        return True
    return False


def calendar_days(payload: Any) -> list[dict[str, Any]]:
    """
    Extract the per-day entries from a calendar payload.

    Guesty returns a bare list of day objects; some API versions wrap it in
    ``{"data": [...]}``. Both are accepted.

    Raises:
        UpstreamDataError: if the payload has neither shape
    """
    days = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(days, list):
        raise UpstreamDataError("Calendar response is not a list of days")
    for day in days:
        if not isinstance(day, dict) or "date" not in day:
            raise UpstreamDataError("Calendar day entry without a date")
    return days


class GuestyClient:
    """
    Thin wrapper around the Guesty booking-engine endpoints this site uses.

    Responses are passed through unchanged; only their shape is checked.
    """

    def __init__(self, tokens: TokenProvider, base_url: str, timeout: float = 20.0) -> None:
        self.tokens = tokens
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout = timeout

    def request(
        self,
        method: str,
        endpoint: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        retry: bool = True,
    ) -> Any:
        """
        Perform an authenticated request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Logical endpoint name used for metrics and logs
            path: Path relative to the API base URL
            params: Query parameters
            json_body: JSON request body
            retry: Retry once on timeouts, 429 and 5xx. Disable for calls
                   that are not safe to repeat.

        Raises:
            UpstreamUnavailable: Unreachable, timed out, or still failing after retry.
            UpstreamRejected: Non-retryable 4xx.
            UpstreamDataError: Body is not JSON.
        """
        url = urljoin(self.base_url, path)
        token = self.tokens.get_access_token()
        retries = 0
        token_refreshed = False

        while True:
            headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
            try:
                logger.debug("guesty_request", endpoint=endpoint, method=method, params=params)
                start_time = time.time()
                res = requests.request(
                    method, url, headers=headers, params=params, json=json_body, timeout=self.timeout
                )
                upstream_latency.labels(endpoint=endpoint).observe(time.time() - start_time)
                upstream_requests.labels(endpoint=endpoint, status_code=str(res.status_code)).inc()
            except requests.RequestException as err:
                label = "timeout" if isinstance(err, requests.Timeout) else "error"
                upstream_requests.labels(endpoint=endpoint, status_code=label).inc()
                logger.warning("guesty_request_error", endpoint=endpoint, error=str(err))
                if retry and retries < MAX_RETRIES and should_retry(None, err):
                    retries += 1
                    time.sleep(RETRY_DELAY * retries)
                    continue
                raise UpstreamUnavailable(f"Guesty {endpoint} request failed: {err}") from err

            if res.status_code == 401 and not token_refreshed:
                logger.warning("guesty_unauthorized_refreshing_token", endpoint=endpoint)
                token = self.tokens.get_or_refresh_token(prev_token=token)
                token_refreshed = True
                continue

            if should_retry(res, None):
                if retry and retries < MAX_RETRIES:
                    retries += 1
                    logger.warning(
                        "guesty_request_retrying",
                        endpoint=endpoint,
                        status_code=res.status_code,
                        delay=RETRY_DELAY * retries,
                    )
                    time.sleep(RETRY_DELAY * retries)
                    continue
                raise UpstreamUnavailable(f"Guesty {endpoint} returned {res.status_code}")

            if res.status_code >= 400:
                logger.error(
                    "guesty_request_rejected",
                    endpoint=endpoint,
                    status_code=res.status_code,
                    response_text=res.text[:500],
                )
                raise UpstreamRejected(
                    f"Guesty {endpoint} rejected the request ({res.status_code})",
                    upstream_status=res.status_code,
                )

            try:
                return res.json()
            except ValueError as e:
                logger.error("guesty_invalid_json", endpoint=endpoint, response_text=res.text[:500])
                raise UpstreamDataError(f"Guesty {endpoint} returned invalid JSON") from e

    def get_calendar(self, listing_id: str, start: date, end: date) -> Any:
        """
        Fetch per-day availability and pricing for ``[start, end)``.

        Guesty's ``to`` parameter is inclusive, so the last requested day is
        ``end - 1``.

        Returns:
            The calendar payload, unchanged.
        """
        payload = self.request(
            "GET",
            "calendar",
            f"listings/{listing_id}/calendar",
            params={
                "from": start.isoformat(),
                "to": (end - timedelta(days=1)).isoformat(),
            },
        )
        calendar_days(payload)
        return payload

    def create_quote(
        self, listing_id: str, check_in: date, check_out: date, guests: int, coupon: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "listingId": listing_id,
            "checkInDateLocalized": check_in.isoformat(),
            "checkOutDateLocalized": check_out.isoformat(),
            "guestsCount": guests,
        }
        if coupon:
            body["coupons"] = coupon
        payload = self.request("POST", "quotes", "reservations/quotes", json_body=body)
        if not isinstance(payload, dict):
            raise UpstreamDataError("Quote response is not an object")
        return payload

    def create_booking(
        self,
        listing_id: str,
        check_in: date,
        check_out: date,
        guest: dict[str, Any],
        address: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Create a reservation in Guesty. Never retried automatically.

        Returns:
            The booking confirmation object, unchanged.
        """
        body: dict[str, Any] = {
            "listingId": listing_id,
            "checkIn": check_in.isoformat(),
            "checkOut": check_out.isoformat(),
            "guest": guest,
        }
        if address:
            body["address"] = address
        payload = self.request("POST", "bookings", "bookings", json_body=body, retry=False)
        if not isinstance(payload, dict):
            raise UpstreamDataError("Booking response is not an object")
        logger.info(
            "guesty_booking_created",
            listing_id=listing_id,
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
            booking_id=payload.get("_id") or payload.get("id"),
        )
        return payload
