"""
In-memory key-value store for testing and development.

Set `available = False` to simulate an unreachable store: every operation
then raises StoreConnectionError, exactly like a Redis outage would.
"""

import time
from collections.abc import Callable

from herald.barrier.base import KeyValueStore, StoreConnectionError


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dictionary-backed KeyValueStore with lazy expiry.

    Usage:
        >>> store = InMemoryKeyValueStore()
        >>> await store.set_if_absent("email:sent:m1", "{}", ttl_seconds=60)
        True
        >>> await store.set_if_absent("email:sent:m1", "{}", ttl_seconds=60)
        False
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self.available = True

    def _check_available(self) -> None:
        if not self.available:
            msg = "In-memory store marked unavailable"
            raise StoreConnectionError(msg)

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self._check_available()
        return self._live(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check_available()
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check_available()
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        self._check_available()
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed

    async def exists(self, key: str) -> bool:
        self._check_available()
        return self._live(key) is not None

    async def count(self, prefix: str) -> int:
        self._check_available()
        return sum(1 for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None)

    async def ping(self) -> bool:
        self._check_available()
        return True

    def ttl(self, key: str) -> float | None:
        """Remaining lifetime of `key` in seconds (for testing)."""
        entry = self._data.get(key)
        if entry is None:
            return None
        return entry[1] - self._clock()
