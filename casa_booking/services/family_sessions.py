"""Password check and store-backed sessions for the family portal."""

from __future__ import annotations

import hmac
import json
import time
import uuid
from typing import Callable

import structlog

from casa_booking.metrics import family_logins
from casa_booking.store.handle import StoreHandle

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "family_session"


def session_key(token: str) -> str:
    return f"family:session:{token}"


class FamilySessionService:
    """
    Issues opaque session tokens after a password check.

    A token is valid while ``family:session:{token}`` exists in the store
    and its recorded expiry lies in the future. Every authenticated request
    re-checks the store.
    """

    def __init__(
        self,
        store: StoreHandle,
        password: str | None,
        session_days: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.password = password
        self.session_seconds = session_days * 24 * 60 * 60
        self.clock = clock

    def verify_password(self, candidate: str | None) -> bool:
        """Case-insensitive comparison against the configured family password."""
        if not self.password:
            logger.error("family_password_not_configured")
            family_logins.labels(status="failure").inc()
            return False
        given = (candidate or "").strip().lower()
        expected = self.password.strip().lower()
        ok = hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))
        family_logins.labels(status="success" if ok else "failure").inc()
        return ok

    def create_session(self) -> str:
        token = str(uuid.uuid4())
        expires_at = int(self.clock()) + self.session_seconds
        self.store.set(
            session_key(token),
            json.dumps({"authenticated": True, "expires_at": expires_at}),
            ttl_seconds=self.session_seconds,
        )
        logger.info("family_session_created", expires_at=expires_at)
        return token

    def is_valid(self, token: str | None) -> bool:
        if not token:
            return False
        raw = self.store.get(session_key(token))
        if not raw:
            return False
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("family_session_corrupt")
            return False
        return bool(data.get("authenticated")) and data.get("expires_at", 0) > self.clock()

    def revoke(self, token: str | None) -> None:
        if token:
            self.store.delete(session_key(token))
            logger.info("family_session_revoked")
