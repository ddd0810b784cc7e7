"""
Reusable Redis connection handle.

The handle is created once per process by the service context and passed
explicitly to every component that needs the key-value store. The Redis
client is created lazily on first use; when a connection drops, the client is
discarded, rebuilt and the operation retried once before ``CacheUnavailable``
is raised.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar
from urllib.parse import urlsplit

import redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from casa_booking.errors import CacheUnavailable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_PREFIX = "lock:"


def _redact(url: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ""
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{host}{port}{parts.path}"


class StoreHandle:
    """
    Lazily-initialized Redis client with reconnect-on-drop.

    Values are stored as strings (``decode_responses=True``). Keys are
    namespaced by the callers (``availability:``, ``family:``, ``guesty:``).

    Example:
        >>> store = StoreHandle("redis://localhost:6379/0")
        >>> store.set("family:session:abc", "{}", ttl_seconds=60)
        >>> store.get("family:session:abc")
        '{}'
    """

    def __init__(self, url: str, socket_timeout: float = 5.0) -> None:
        self._url = url
        self._socket_timeout = socket_timeout
        self._client: redis.Redis | None = None
        self._init_lock = threading.Lock()

    def client(self) -> redis.Redis:
        """Return the Redis client, connecting on first use."""
        if self._client is None:
            with self._init_lock:
                if self._client is None:
                    self._client = redis.Redis.from_url(
                        self._url,
                        decode_responses=True,
                        socket_timeout=self._socket_timeout,
                        socket_connect_timeout=self._socket_timeout,
                        health_check_interval=30,
                    )
                    logger.info("store_client_created", url=_redact(self._url))
        return self._client

    def reset(self) -> None:
        """Drop the current client so the next operation reconnects."""
        with self._init_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                client.close()
            except RedisError as e:
                logger.debug("store_client_close_failed", error=str(e))

    def _execute(self, operation: str, key: str, fn: Callable[[redis.Redis], T]) -> T:
        last_error: Exception | None = None
        for attempt in (1, 2):
            try:
                return fn(self.client())
            except (RedisConnectionError, RedisTimeoutError) as e:
                last_error = e
                logger.warning(
                    "store_connection_dropped",
                    operation=operation,
                    key=key,
                    attempt=attempt,
                    error=str(e),
                )
                self.reset()
            except RedisError as e:
                logger.error("store_operation_failed", operation=operation, key=key, error=str(e))
                raise CacheUnavailable(f"Store {operation} failed for {key}: {e}") from e

        logger.error("store_unavailable", operation=operation, key=key, error=str(last_error))
        raise CacheUnavailable(f"Store unavailable during {operation} for {key}") from last_error

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        return self._execute("get", key, lambda c: c.get(key))

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds`` if given."""
        self._execute("set", key, lambda c: c.set(key, value, ex=ttl_seconds))

    def delete(self, key: str) -> None:
        self._execute("delete", key, lambda c: c.delete(key))

    def add_to_set(self, key: str, member: str) -> None:
        self._execute("sadd", key, lambda c: c.sadd(key, member))

    def remove_from_set(self, key: str, member: str) -> None:
        self._execute("srem", key, lambda c: c.srem(key, member))

    def set_members(self, key: str) -> set[str]:
        return set(self._execute("smembers", key, lambda c: c.smembers(key)))

    def compare_and_set(
        self,
        key: str,
        value: str,
        should_replace: Callable[[str | None], bool],
        ttl_seconds: int | None = None,
    ) -> bool:
        """
        Write ``value`` only if ``should_replace(current value)`` is true.

        The check and the write run in one WATCH/MULTI transaction; a
        concurrent write to ``key`` in between makes redis-py re-run the
        check against the new value.

        Returns:
            bool: True if the value was written
        """

        def _apply(pipe: Any) -> bool:
            if not should_replace(pipe.get(key)):
                return False
            pipe.multi()
            pipe.set(key, value, ex=ttl_seconds)
            return True

        return bool(
            self._execute(
                "compare_and_set",
                key,
                lambda c: c.transaction(_apply, key, value_from_callable=True),
            )
        )

    def ping(self) -> bool:
        """
        Check store connectivity. Used by the /ready endpoint.

        Returns:
            bool: True if Redis answered PING, False otherwise
        """
        try:
            return bool(self._execute("ping", "-", lambda c: c.ping()))
        except CacheUnavailable:
            return False

    # ------------------------------------------------------------------
    # Coordination
    # ------------------------------------------------------------------

    @contextmanager
    def single_flight(
        self, key: str, hold_seconds: float = 30.0, wait_seconds: float = 10.0
    ) -> Iterator[bool]:
        """
        Hold a short-lived store lock for ``key``.

        Yields True when the lock was acquired within ``wait_seconds``, False
        otherwise. The lock expires on its own after ``hold_seconds`` so a
        crashed holder cannot block the key forever.

        Example:
            >>> with store.single_flight("availability:123:2025-11-01:2025-12-01") as owned:
            ...     if owned:
            ...         refresh()
        """
        name = f"{LOCK_PREFIX}{key}"

        def _acquire(client: redis.Redis) -> tuple[Any, bool]:
            lock = client.lock(name, timeout=hold_seconds, blocking_timeout=wait_seconds)
            return lock, bool(lock.acquire())

        lock, acquired = self._execute("lock", name, _acquire)
        if not acquired:
            logger.warning("store_lock_wait_timeout", key=name, wait_seconds=wait_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    lock.release()
                except LockError:
                    logger.warning("store_lock_expired_before_release", key=name)
                except (RedisConnectionError, RedisTimeoutError) as e:
                    logger.warning("store_lock_release_failed", key=name, error=str(e))
