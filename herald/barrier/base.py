"""
Key-value store interface backing the idempotency barrier.

Any store with an atomic set-if-absent and per-key expiry can back the
barrier. Implementations raise StoreError (or a subclass) for every failure
to reach the store; they never report "absent" when the answer is unknown.
"""

from abc import ABC, abstractmethod


class StoreError(Exception):
    """Base exception for key-value store errors."""


class StoreConnectionError(StoreError):
    """Store is unreachable."""


class KeyValueStore(ABC):
    """
    Abstract key-value store with TTL support.

    Values are strings. TTLs are whole seconds.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value of `key`, or None if absent or expired."""
        ...

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        """Unconditionally store `value` under `key` for `ttl_seconds`."""
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Atomically store `value` only if `key` has no live value.

        Returns:
            True if this call stored the value, False if another value was present
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete `key`. Returns True if it existed."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def count(self, prefix: str) -> int:
        """Number of live keys starting with `prefix`."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check reachability.

        Raises:
            StoreError: If the store cannot be reached
        """
        ...

    async def close(self) -> None:
        """Release connections."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
