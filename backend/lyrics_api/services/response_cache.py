"""
Edge cache for whole /api/lyrics responses, keyed by request URL.

Responses with synced lyrics live for response_cache_ttl_synced, everything
else for response_cache_ttl_unsynced. Every key is also indexed per video
so the cache-purge endpoint can drop all URL variants of a video.
"""
import logging

from lyrics_api.config import Settings, settings as default_settings
from lyrics_api.services.redis_client import redis_client as default_redis_client

logger = logging.getLogger(__name__)

RESPONSE_CACHE_PREFIX = "response:"
VIDEO_INDEX_PREFIX = "response-index:"


class ResponseCache:
    def __init__(self, redis=None, config: Settings | None = None):
        self._redis = default_redis_client if redis is None else redis
        self._settings = default_settings if config is None else config

    async def get(self, url: str) -> dict | None:
        try:
            return await self._redis.get_json(RESPONSE_CACHE_PREFIX + url)
        except Exception as e:
            logger.warning("[ResponseCache] Redis error: %s", e)
            return None

    async def put(self, url: str, video_id: str, body: dict, synced: bool) -> None:
        if synced:
            ttl = self._settings.response_cache_ttl_synced
        else:
            ttl = self._settings.response_cache_ttl_unsynced
        try:
            await self._redis.set_json(RESPONSE_CACHE_PREFIX + url, body, ttl)
            await self._redis.add_to_set(VIDEO_INDEX_PREFIX + video_id, url, self._settings.response_cache_ttl_synced)
        except Exception as e:
            logger.warning("[ResponseCache] Redis set error: %s", e)

    async def invalidate_video(self, video_id: str) -> None:
        try:
            index_key = VIDEO_INDEX_PREFIX + video_id
            urls = await self._redis.set_members(index_key)
            await self._redis.delete(index_key, *(RESPONSE_CACHE_PREFIX + url for url in urls))
        except Exception as e:
            logger.warning("[ResponseCache] Redis delete error: %s", e)


# Singleton instance
response_cache = ResponseCache()
