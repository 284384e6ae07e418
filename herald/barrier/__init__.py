"""
Idempotency barrier and the key-value stores that back it.
"""

from herald.barrier.barrier import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_TTL_SECONDS,
    BarrierConfig,
    IdempotencyBarrier,
)
from herald.barrier.base import KeyValueStore, StoreConnectionError, StoreError
from herald.barrier.memory import InMemoryKeyValueStore
from herald.barrier.redis import RedisKeyValueStore, redis_url_from_env

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_TTL_SECONDS",
    "BarrierConfig",
    "IdempotencyBarrier",
    "KeyValueStore",
    "StoreError",
    "StoreConnectionError",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "redis_url_from_env",
]
