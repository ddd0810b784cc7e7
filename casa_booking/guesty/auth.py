"""
Guesty OAuth token management.

Guesty's booking-engine token endpoint allows only a handful of requests per
day, so tokens are cached in the key-value store (shared by every process)
and new ones are requested under a store lock.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable

import requests
import structlog

from casa_booking.errors import UpstreamDataError, UpstreamRejected, UpstreamUnavailable
from casa_booking.metrics import token_fetches, upstream_requests
from casa_booking.store.handle import StoreHandle

logger = structlog.get_logger(__name__)

TOKEN_KEY = "guesty:token"
TOKEN_BUFFER_SECONDS = 60
DEFAULT_EXPIRES_IN = 24 * 60 * 60


def create_access_token(
    client_id: str,
    client_secret: str,
    token_url: str,
    scope: str,
    timeout: float = 20.0,
) -> tuple[str, int]:
    """
    Exchange client credentials for a Guesty access token.

    Args:
        client_id (str): Guesty OAuth client id.
        client_secret (str): Guesty OAuth client secret.
        token_url (str): OAuth token endpoint.
        scope (str): Requested scope, e.g. "booking_engine:api".
        timeout (float): Request timeout in seconds.

    Returns:
        tuple[str, int]: Bearer token and its lifetime in seconds.

    Raises:
        UpstreamUnavailable: Network failure, timeout, 429 or 5xx.
        UpstreamRejected: Credentials refused (other 4xx).
        UpstreamDataError: Response without a usable access_token.
    """
    logger.warning("guesty_token_requested", client_id=client_id)
    token_fetches.inc()

    payload = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": scope,
    }
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Cache-Control": "no-cache",
    }

    try:
        response = requests.post(token_url, data=payload, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        upstream_requests.labels(endpoint="token", status_code="error").inc()
        logger.error("guesty_token_request_failed", error=str(e))
        raise UpstreamUnavailable(f"Token request failed: {e}") from e

    upstream_requests.labels(endpoint="token", status_code=str(response.status_code)).inc()

    if response.status_code == 429 or response.status_code >= 500:
        logger.error(
            "guesty_token_request_failed",
            status_code=response.status_code,
            retry_after=response.headers.get("Retry-After"),
        )
        raise UpstreamUnavailable(f"Token endpoint returned {response.status_code}")
    if response.status_code >= 400:
        logger.error(
            "guesty_token_rejected", status_code=response.status_code, response_text=response.text
        )
        raise UpstreamRejected(
            f"Token endpoint rejected credentials ({response.status_code})",
            upstream_status=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamDataError("Token response is not JSON") from e

    token = data.get("access_token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        logger.error("guesty_token_missing", response_text=response.text)
        raise UpstreamDataError("No access_token in Guesty response.")

    expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN
    return token, int(expires_in)


class TokenProvider:
    """
    Store-backed access token cache for the Guesty API.

    Example:
        >>> provider = TokenProvider(store, "client-id", "secret", TOKEN_URL, "booking_engine:api")
        >>> token = provider.get_access_token()
        >>> # after a 401 with that token:
        >>> token = provider.get_or_refresh_token(prev_token=token)
    """

    def __init__(
        self,
        store: StoreHandle,
        client_id: str | None,
        client_secret: str | None,
        token_url: str,
        scope: str,
        timeout: float = 20.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.scope = scope
        self.timeout = timeout
        self.clock = clock

    def _read_cached(self) -> str | None:
        raw = self.store.get(TOKEN_KEY)
        if not raw:
            return None
        try:
            data: dict[str, Any] = json.loads(raw)
        except ValueError:
            logger.warning("guesty_token_cache_corrupt", key=TOKEN_KEY)
            return None

        token = data.get("access_token")
        expires_at = data.get("expires_at", 0)
        if not token or expires_at - self.clock() <= TOKEN_BUFFER_SECONDS:
            logger.debug("guesty_token_cache_expired", expires_at=expires_at)
            return None
        return str(token)

    def _store_token(self, token: str, expires_in: int) -> None:
        now = int(self.clock())
        ttl = max(expires_in - TOKEN_BUFFER_SECONDS, 1)
        self.store.set(
            TOKEN_KEY,
            json.dumps({"access_token": token, "expires_at": now + expires_in, "cached_at": now}),
            ttl_seconds=ttl,
        )

    def refresh_access_token(self, prev_token: str | None = None) -> str:
        """
        Request a new token and store it.

        Runs under a store lock. If another process stored a different token
        while we waited, that token is reused instead of spending another
        token request.

        Args:
            prev_token: Token that just failed, if any

        Returns:
            str: Valid bearer token
        """
        if not self.client_id or not self.client_secret:
            raise UpstreamUnavailable("Missing GUESTY_CLIENT_ID or GUESTY_CLIENT_SECRET")

        lock = self.store.single_flight(TOKEN_KEY, hold_seconds=self.timeout + 5)
        with lock as owned:
            cached = self._read_cached()
            if cached and cached != prev_token:
                logger.debug("guesty_token_refreshed_elsewhere")
                return cached
            if not owned:
                # The token endpoint is rate limited; never request in parallel.
                raise UpstreamUnavailable("Guesty token refresh already in progress")

            token, expires_in = create_access_token(
                self.client_id, self.client_secret, self.token_url, self.scope, self.timeout
            )
            self._store_token(token, expires_in)

        logger.info("guesty_token_refreshed", expires_in=expires_in)
        return token

    def get_access_token(self) -> str:
        """Return the cached token, requesting a new one if missing or expiring."""
        cached = self._read_cached()
        if cached:
            logger.debug("guesty_token_cache_hit")
            return cached

        logger.debug("guesty_token_cache_miss")
        return self.refresh_access_token()

    def get_or_refresh_token(self, prev_token: str | None = None) -> str:
        """
        Get the stored token. If it matches a token that just failed, refresh it.

        Args:
            prev_token (str | None): Optional token that was rejected with 401

        Returns:
            str: Valid bearer token
        """
        token = self.get_access_token()
        if prev_token is not None and token == prev_token:
            logger.debug("guesty_token_matched_failed_token")
            return self.refresh_access_token(prev_token=prev_token)
        return token
