"""
Key/value store with per-key TTL.

The rate limiter keeps its counters here. ``MemoryKV`` is process-local and
meant for development and tests; ``RedisKV`` is shared between workers.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis

from core.exceptions import KVStoreError
from core.logging_config import get_logger

logger = get_logger(__name__)


class KeyValueStore:
    """Interface shared by the store backends."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def ping(self) -> None:
        """Raise KVStoreError when the store is unreachable."""


class MemoryKV(KeyValueStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + expiration_ttl if expiration_ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class RedisKV(KeyValueStore):
    def __init__(self, url: str):
        self._client = redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise KVStoreError(f"get failed for {key}") from exc

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        try:
            self._client.set(key, value, ex=expiration_ttl)
        except redis.RedisError as exc:
            raise KVStoreError(f"put failed for {key}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise KVStoreError(f"delete failed for {key}") from exc

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise KVStoreError("ping failed") from exc


def create_kv_store(url: str) -> KeyValueStore:
    """Build the store named by ``url`` (``memory://`` or ``redis://...``)."""
    if url.startswith("memory://"):
        logger.info("Using in-memory KV store")
        return MemoryKV()

    if url.startswith(("redis://", "rediss://", "unix://")):
        logger.info("Using Redis KV store", extra={"kv_url": url.split("@")[-1]})
        return RedisKV(url)

    raise ValueError(f"Unsupported KV_URL scheme: {url}")
