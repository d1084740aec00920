from __future__ import annotations

import redis.asyncio as aioredis


class RedisKeyValueStore:
    """Implements application.ports.kv.KeyValueStore on a shared Redis pool.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(self, redis: aioredis.Redis, *, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(key, value, ex=self._ttl)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)
