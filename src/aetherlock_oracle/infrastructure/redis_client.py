"""Redis client and the distributed single-flight lease.

The client is built once in the application lifespan and passed to its
users; nothing here holds a module-level connection.

Usage:
    redis = await connect_redis(settings.redis_url)
    guard = RedisFlightGuard(redis, ttl_seconds=900)
    token = await guard.acquire("9f1c...")
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

from aetherlock_oracle.logging_config import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "aetherlock:verification"

# Delete only if the caller still owns the lease.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def connect_redis(url: str) -> aioredis.Redis:
    """Create a Redis client and verify connectivity. Called during app startup."""
    client = aioredis.from_url(url, decode_responses=True)
    await client.ping()
    logger.info("redis.connected")
    return client


async def close_redis(client: aioredis.Redis | None) -> None:
    """Close the Redis connection. Called during app shutdown."""
    if client is not None:
        await client.aclose()
        logger.info("redis.disconnected")


class RedisFlightGuard:
    """Single-flight lease shared by every service replica.

    The lease expires after ``ttl_seconds`` so a crashed holder cannot block
    an escrow forever; the TTL must exceed the longest pipeline run.
    """

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 900) -> None:
        self._client = client
        self._ttl = ttl_seconds

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    async def acquire(self, key: str) -> str | None:
        token = uuid.uuid4().hex
        acquired = await self._client.set(self._key(key), token, nx=True, ex=self._ttl)
        if not acquired:
            logger.info("single_flight.busy", escrow_id=key, backend="redis")
            return None
        return token

    async def release(self, key: str, token: str) -> None:
        released = await self._client.eval(_RELEASE_SCRIPT, 1, self._key(key), token)
        if not released:
            logger.warning("single_flight.lease_lost", escrow_id=key)
