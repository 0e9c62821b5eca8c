"""
Redis client for the hot cache tier and the response cache.
"""
import json
from typing import Any

import redis.asyncio as redis

from lyrics_api.config import settings


class RedisClient:
    """Async Redis client with JSON helpers."""

    def __init__(self):
        self._client: redis.Redis | None = None

    async def get_client(self) -> redis.Redis:
        """Get or create Redis connection with connection pooling."""
        if self._client is None:
            self._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
        return self._client

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None

    async def get_json(self, key: str) -> Any | None:
        """Read and decode a JSON value, None when absent."""
        client = await self.get_client()
        data = await client.get(key)
        if data:
            return json.loads(data)
        return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        """Store a JSON value with TTL in seconds."""
        client = await self.get_client()
        await client.setex(key, ttl, json.dumps(value, ensure_ascii=False))

    async def delete(self, *keys: str) -> None:
        """Delete one or more keys."""
        if not keys:
            return
        client = await self.get_client()
        await client.delete(*keys)

    async def add_to_set(self, key: str, member: str, ttl: int) -> None:
        """Add a member to a set and (re)set the set's TTL."""
        client = await self.get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.sadd(key, member)
            pipe.expire(key, ttl)
            await pipe.execute()

    async def set_members(self, key: str) -> set[str]:
        client = await self.get_client()
        return set(await client.smembers(key))


# Singleton instance
redis_client = RedisClient()
