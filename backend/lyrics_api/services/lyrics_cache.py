"""
Multi-tier lyrics cache.

Cache hierarchy:
Redis (1h TTL, decompressed) → PostgreSQL (track metadata) + blob storage (gzip bodies) → upstream APIs

Positive entries:
- Keyed by (source_platform, source_track_id) through TrackMapping → Track → LyricBlob.
- Once older than a refetch threshold, each read has a configured chance of
  triggering a background refetch; the cached content is still served.
- last_accessed_at is bumped at most once per access refresh interval.

Negative entries:
- (source_platform, source_track_id) → created_at, TTL per source platform.
- An expired entry still answers "no lyrics" but is reported stale so the
  caller can revalidate in the background.

Every failure in this module is logged and swallowed: a broken tier degrades
to a cache miss, never to an error for the caller.
"""
import asyncio
import gzip
import logging
import random
import time
from dataclasses import dataclass

from sqlalchemy import select, delete, update, func

from lyrics_api.config import Settings, settings as default_settings
from lyrics_api.models import LyricBlob, NegativeMapping, Track, TrackMapping
from lyrics_api.services.database import get_db, insert_for
from lyrics_api.services.redis_client import redis_client as default_redis_client
from lyrics_api.services.request_scope import defer, observe
from lyrics_api.services.storage import storage as default_storage

logger = logging.getLogger(__name__)

# Source platforms (one cache namespace per upstream)
LRCLIB = "lrclib"
MUSIXMATCH = "musixmatch"
GOLYRICS = "golyrics"
SOURCE_PLATFORMS = (LRCLIB, MUSIXMATCH, GOLYRICS)

# Lyric formats
RICH_SYNC = "rich_sync"
NORMAL_SYNC = "normal_sync"
BASIC = "basic"
TTML = "ttml"

REDIS_CACHE_PREFIX = "lyrics:"


@dataclass
class CachedLyrics:
    """Positive cache hit: lyric bodies by format."""
    contents: dict[str, str]
    last_updated_at: int


@dataclass(frozen=True)
class NegativeStatus:
    """Negative cache lookup: miss (hit=False), fresh hit, or stale hit."""
    hit: bool
    stale: bool = False


NEGATIVE_MISS = NegativeStatus(hit=False)


def _now() -> int:
    return int(time.time())


def blob_key(source_platform: str, owner_id: str, lyric_format: str) -> str:
    """Deterministic blob key for (owning identity, format)."""
    return f"{source_platform}-{owner_id}/{lyric_format}.gz"


def compress(content: str) -> bytes:
    return gzip.compress(content.encode("utf-8"))


def decompress(data: bytes) -> str:
    return gzip.decompress(data).decode("utf-8")


def should_refetch(last_updated_at: int, threshold: int, chance: float) -> bool:
    """Stale entries are revalidated with probability `chance` per read."""
    if _now() - last_updated_at > threshold:
        return random.random() < chance
    return False


class LyricsCacheService:
    """
    Positive/negative lyrics cache over Redis, PostgreSQL and blob storage.

    Collaborators are injectable; the defaults are the process singletons.
    """

    def __init__(
        self,
        session_factory=None,
        blob_store=None,
        redis=None,
        config: Settings | None = None,
    ):
        self._session_factory = session_factory
        self._storage = default_storage if blob_store is None else blob_store
        self._redis = default_redis_client if redis is None else redis
        self._settings = default_settings if config is None else config

    # ============================================
    # Redis Layer (hot tier)
    # ============================================

    @staticmethod
    def _redis_key(source_platform: str, source_track_id: str) -> str:
        return f"{REDIS_CACHE_PREFIX}{source_platform}:{source_track_id}"

    async def get_from_redis(self, source_platform: str, source_track_id: str) -> dict | None:
        try:
            data = await self._redis.get_json(self._redis_key(source_platform, source_track_id))
            if data:
                logger.debug("[LyricsCache] Redis HIT for %s:%s", source_platform, source_track_id)
                return data
        except Exception as e:
            logger.warning("[LyricsCache] Redis error: %s", e)
        return None

    async def set_in_redis(self, source_platform: str, source_track_id: str, cached: CachedLyrics) -> None:
        try:
            await self._redis.set_json(
                self._redis_key(source_platform, source_track_id),
                {"contents": cached.contents, "lastUpdatedAt": cached.last_updated_at},
                self._settings.redis_cache_ttl,
            )
        except Exception as e:
            logger.warning("[LyricsCache] Redis set error: %s", e)

    async def invalidate_redis(self, source_platform: str, source_track_id: str) -> None:
        try:
            await self._redis.delete(self._redis_key(source_platform, source_track_id))
        except Exception as e:
            logger.warning("[LyricsCache] Redis delete error: %s", e)

    # ============================================
    # Positive cache
    # ============================================

    async def get_positive(self, source_platform: str, source_track_id: str) -> CachedLyrics | None:
        """
        Look up cached lyric bodies for an identifier.

        Returns None on a miss, on any tier failure, and when metadata rows
        exist but none of their blobs can be read.
        """
        data = await self.get_from_redis(source_platform, source_track_id)
        if data:
            observe(cacheLookup={"platform": source_platform, "id": source_track_id, "hit": "redis"})
            return CachedLyrics(contents=data["contents"], last_updated_at=data["lastUpdatedAt"])

        try:
            async with get_db(self._session_factory) as session:
                result = await session.execute(
                    select(
                        Track.id,
                        Track.last_accessed_at,
                        Track.last_updated_at,
                        LyricBlob.format,
                        LyricBlob.blob_key,
                    )
                    .select_from(TrackMapping)
                    .join(Track, TrackMapping.track_id == Track.id)
                    .outerjoin(LyricBlob, LyricBlob.track_id == Track.id)
                    .where(
                        TrackMapping.source_platform == source_platform,
                        TrackMapping.source_track_id == source_track_id,
                    )
                )
                rows = result.all()
        except Exception as e:
            logger.warning("[LyricsCache] PostgreSQL get error: %s", e)
            return None

        if not rows:
            observe(cacheLookup={"platform": source_platform, "id": source_track_id, "hit": False})
            return None

        first = rows[0]
        last_updated_at = first.last_updated_at or first.last_accessed_at

        now = _now()
        if now - first.last_accessed_at > self._settings.access_refresh_interval:
            defer(self._touch(first.id, now))

        blobs = [(row.format, row.blob_key) for row in rows if row.format and row.blob_key]
        bodies = await asyncio.gather(*(self._load_blob(key) for _, key in blobs))
        contents = {fmt: body for (fmt, _), body in zip(blobs, bodies) if body is not None}

        if not contents:
            observe(cacheLookup={"platform": source_platform, "id": source_track_id, "hit": "dangling"})
            return None

        observe(cacheLookup={"platform": source_platform, "id": source_track_id, "hit": "postgres"})
        cached = CachedLyrics(contents=contents, last_updated_at=last_updated_at)
        await self.set_in_redis(source_platform, source_track_id, cached)
        return cached

    async def _load_blob(self, key: str) -> str | None:
        try:
            data = await self._storage.download(key)
            if data is None:
                logger.warning("[LyricsCache] Blob missing: %s", key)
                return None
            return decompress(data)
        except Exception as e:
            logger.warning("[LyricsCache] Blob read error for %s: %s", key, e)
            return None

    async def _touch(self, track_id: int, now: int) -> None:
        try:
            async with get_db(self._session_factory) as session:
                await session.execute(
                    update(Track).where(Track.id == track_id).values(last_accessed_at=now)
                )
        except Exception as e:
            logger.warning("[LyricsCache] Access time update failed for track %s: %s", track_id, e)

    async def save_positive(
        self,
        source_platform: str,
        source_track_id: str,
        lyric_format: str,
        content: str,
        external_id: str | int | None = None,
    ) -> bool:
        """
        Persist one lyric format for an identifier.

        external_id is the provider's own identity for the song; several
        identifiers resolving to it share one Track. Defaults to the
        identifier itself. Clears any negative entry for the same key.
        """
        owner_id = str(external_id) if external_id is not None else source_track_id
        key = blob_key(source_platform, owner_id, lyric_format)
        now = _now()

        try:
            await self._storage.upload(compress(content), key)

            async with get_db(self._session_factory) as session:
                stmt = insert_for(session, Track).values(
                    source_platform=source_platform,
                    external_id=owner_id,
                    last_accessed_at=now,
                    last_updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source_platform", "external_id"],
                    set_={"last_accessed_at": now, "last_updated_at": now},
                )
                await session.execute(stmt)

                track_id = (await session.execute(
                    select(Track.id).where(
                        Track.source_platform == source_platform,
                        Track.external_id == owner_id,
                    )
                )).scalar_one()

                await session.execute(
                    insert_for(session, LyricBlob)
                    .values(track_id=track_id, format=lyric_format, blob_key=key)
                    .on_conflict_do_nothing(index_elements=["blob_key"])
                )

                stmt = insert_for(session, TrackMapping).values(
                    source_platform=source_platform,
                    source_track_id=source_track_id,
                    track_id=track_id,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source_platform", "source_track_id"],
                    set_={"track_id": track_id},
                )
                await session.execute(stmt)

                await session.execute(
                    delete(NegativeMapping).where(
                        NegativeMapping.source_platform == source_platform,
                        NegativeMapping.source_track_id == source_track_id,
                    )
                )
        except Exception as e:
            logger.error(
                "[LyricsCache] Save failed for %s:%s (%s): %s",
                source_platform, source_track_id, lyric_format, e,
            )
            observe(cacheSaveError={"platform": source_platform, "id": source_track_id, "error": str(e)})
            return False

        await self.invalidate_redis(source_platform, source_track_id)
        logger.info("[LyricsCache] SET %s:%s (%s -> %s)", source_platform, source_track_id, lyric_format, key)
        return True

    # ============================================
    # Negative cache
    # ============================================

    async def get_negative(self, source_platform: str, source_track_id: str) -> NegativeStatus:
        try:
            async with get_db(self._session_factory) as session:
                created_at = (await session.execute(
                    select(NegativeMapping.created_at).where(
                        NegativeMapping.source_platform == source_platform,
                        NegativeMapping.source_track_id == source_track_id,
                    )
                )).scalar_one_or_none()
        except Exception as e:
            logger.warning("[LyricsCache] Negative lookup error: %s", e)
            return NEGATIVE_MISS

        if created_at is None:
            return NEGATIVE_MISS

        ttl = self._settings.negative_cache_ttl(source_platform)
        status = NegativeStatus(hit=True, stale=_now() - created_at > ttl)
        observe(negativeCacheHit={"platform": source_platform, "id": source_track_id, "stale": status.stale})
        return status

    async def save_negative(self, source_platform: str, source_track_id: str) -> bool:
        """Record confirmed absence; refreshes created_at when already present."""
        now = _now()
        try:
            async with get_db(self._session_factory) as session:
                stmt = insert_for(session, NegativeMapping).values(
                    source_platform=source_platform,
                    source_track_id=source_track_id,
                    created_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source_platform", "source_track_id"],
                    set_={"created_at": now},
                )
                await session.execute(stmt)
        except Exception as e:
            logger.error("[LyricsCache] Negative save failed for %s:%s: %s", source_platform, source_track_id, e)
            return False
        logger.info("[LyricsCache] Negative SET %s:%s", source_platform, source_track_id)
        return True

    async def clear_negative(self, source_platform: str, source_track_id: str) -> bool:
        try:
            async with get_db(self._session_factory) as session:
                await session.execute(
                    delete(NegativeMapping).where(
                        NegativeMapping.source_platform == source_platform,
                        NegativeMapping.source_track_id == source_track_id,
                    )
                )
        except Exception as e:
            logger.error("[LyricsCache] Negative clear failed for %s:%s: %s", source_platform, source_track_id, e)
            return False
        return True

    # ============================================
    # Invalidation
    # ============================================

    async def delete_all(self, source_track_id: str) -> bool:
        """
        Purge every tier for one identifier, across all source platforms.

        Tracks left without any mapping are deleted together with their
        blob rows and blob objects.
        """
        blob_keys: list[str] = []
        try:
            async with get_db(self._session_factory) as session:
                track_ids = set((await session.execute(
                    select(TrackMapping.track_id).where(TrackMapping.source_track_id == source_track_id)
                )).scalars().all())

                await session.execute(
                    delete(TrackMapping).where(TrackMapping.source_track_id == source_track_id)
                )
                await session.execute(
                    delete(NegativeMapping).where(NegativeMapping.source_track_id == source_track_id)
                )

                orphan_ids = []
                for track_id in track_ids:
                    remaining = (await session.execute(
                        select(func.count()).select_from(TrackMapping).where(TrackMapping.track_id == track_id)
                    )).scalar()
                    if not remaining:
                        orphan_ids.append(track_id)

                if orphan_ids:
                    blob_keys = list((await session.execute(
                        select(LyricBlob.blob_key).where(LyricBlob.track_id.in_(orphan_ids))
                    )).scalars().all())
                    await session.execute(delete(LyricBlob).where(LyricBlob.track_id.in_(orphan_ids)))
                    await session.execute(delete(Track).where(Track.id.in_(orphan_ids)))
        except Exception as e:
            logger.error("[LyricsCache] Delete failed for %s: %s", source_track_id, e)
            return False

        await asyncio.gather(*(self._storage.delete(key) for key in blob_keys))
        for source_platform in SOURCE_PLATFORMS:
            await self.invalidate_redis(source_platform, source_track_id)

        logger.info("[LyricsCache] Purged %s (%d blobs)", source_track_id, len(blob_keys))
        return True


# Singleton instance
lyrics_cache_service = LyricsCacheService()
