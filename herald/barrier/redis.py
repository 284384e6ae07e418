"""
Redis key-value store for the idempotency barrier.

`set_if_absent` maps to `SET key value NX EX ttl`, which is atomic on the
server, so concurrent consumers racing on one message_id get exactly one
winner.

Example:
    >>> async with RedisKeyValueStore("redis://localhost:6379/0") as store:
    ...     await store.set_if_absent("email:sent:m1", "{}", ttl_seconds=86400)
    True
"""

import asyncio
import logging
import os
from urllib.parse import quote

import redis.asyncio as redis
from redis.exceptions import RedisError

from herald.barrier.base import KeyValueStore, StoreConnectionError, StoreError

logger = logging.getLogger(__name__)


def redis_url_from_env() -> str:
    """
    Build a Redis URL from the environment.

    REDIS_URL wins; otherwise REDIS_ADDR (host:port), REDIS_PASSWORD and
    REDIS_DB are combined.
    """
    url = os.getenv("REDIS_URL")
    if url:
        return url

    addr = os.getenv("REDIS_ADDR") or "localhost:6379"
    password = os.getenv("REDIS_PASSWORD")
    db = os.getenv("REDIS_DB") or "0"
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{addr}/{db}"


class RedisKeyValueStore(KeyValueStore):
    """
    Redis implementation of KeyValueStore.

    The connection is created lazily on first use and verified with PING.
    Every Redis failure surfaces as StoreError.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        scan_count: int = 500,
        **redis_kwargs,
    ):
        self.redis_url = redis_url
        self.scan_count = scan_count
        self.redis_kwargs = redis_kwargs
        self._redis = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_env(cls) -> "RedisKeyValueStore":
        return cls(redis_url_from_env())

    async def _get_redis(self):
        """Get Redis connection, creating if necessary"""
        if self._redis is not None:
            return self._redis

        async with self._lock:
            if self._redis is None:
                client = redis.from_url(self.redis_url, decode_responses=True, **self.redis_kwargs)
                try:
                    await client.ping()
                except RedisError as e:
                    await client.aclose()
                    msg = f"Failed to connect to Redis: {e}"
                    raise StoreConnectionError(msg) from e
                self._redis = client
                logger.info("Connected to Redis idempotency store")

        return self._redis

    async def get(self, key: str) -> str | None:
        client = await self._get_redis()
        try:
            return await client.get(key)
        except RedisError as e:
            msg = f"Redis GET {key} failed: {e}"
            raise StoreError(msg) from e

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        client = await self._get_redis()
        try:
            await client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            msg = f"Redis SET {key} failed: {e}"
            raise StoreError(msg) from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        client = await self._get_redis()
        try:
            # SET NX returns None when the key already exists
            return bool(await client.set(key, value, nx=True, ex=ttl_seconds))
        except RedisError as e:
            msg = f"Redis SET NX {key} failed: {e}"
            raise StoreError(msg) from e

    async def delete(self, key: str) -> bool:
        client = await self._get_redis()
        try:
            return bool(await client.delete(key))
        except RedisError as e:
            msg = f"Redis DEL {key} failed: {e}"
            raise StoreError(msg) from e

    async def exists(self, key: str) -> bool:
        client = await self._get_redis()
        try:
            return bool(await client.exists(key))
        except RedisError as e:
            msg = f"Redis EXISTS {key} failed: {e}"
            raise StoreError(msg) from e

    async def count(self, prefix: str) -> int:
        client = await self._get_redis()
        total = 0
        try:
            async for _ in client.scan_iter(match=f"{prefix}*", count=self.scan_count):
                total += 1
        except RedisError as e:
            msg = f"Redis SCAN {prefix}* failed: {e}"
            raise StoreError(msg) from e
        return total

    async def ping(self) -> bool:
        client = await self._get_redis()
        try:
            return bool(await client.ping())
        except RedisError as e:
            msg = f"Redis PING failed: {e}"
            raise StoreConnectionError(msg) from e

    async def close(self) -> None:
        """Close Redis connection"""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
