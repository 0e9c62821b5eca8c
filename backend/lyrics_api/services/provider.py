"""
Common plumbing for upstream lyrics providers.

Every provider answers get_lyrics(...) -> LyricsResult | None through the
same read path:

1. Negative cache: a fresh hit answers None; a stale hit also answers None
   but schedules a background refetch.
2. Positive cache: a hit is served immediately; once stale, a random draw
   may schedule a background refetch (stale-while-revalidate).
3. Otherwise the upstream is fetched synchronously.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from lyrics_api.config import Settings, settings as default_settings
from lyrics_api.services.lyrics_cache import (
    BASIC,
    NORMAL_SYNC,
    RICH_SYNC,
    TTML,
    CachedLyrics,
    lyrics_cache_service,
    should_refetch,
)
from lyrics_api.services.request_scope import defer, observe

_MAX_CONNECTIONS = 20
_MAX_KEEPALIVE = 10


@dataclass
class LyricsResult:
    """
    Lyrics found by one provider. Every field is optional: a missing field
    means that representation was not available.
    """
    source: str
    word_synced: str | None = None
    line_synced: str | None = None
    plain: str | None = None
    ttml: str | None = None
    debug_info: dict | None = None

    def formats(self) -> dict[str, str]:
        """Available lyric bodies by cache format."""
        bodies = {
            RICH_SYNC: self.word_synced,
            NORMAL_SYNC: self.line_synced,
            BASIC: self.plain,
            TTML: self.ttml,
        }
        return {fmt: body for fmt, body in bodies.items() if body}


class LyricsProvider:
    """Base class: shared HTTP client and the cached read path."""

    source_platform = ""

    def __init__(
        self,
        cache=None,
        client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
    ):
        self.cache = lyrics_cache_service if cache is None else cache
        self.settings = default_settings if config is None else config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client (redirects are not followed)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(
                    max_connections=_MAX_CONNECTIONS,
                    max_keepalive_connections=_MAX_KEEPALIVE,
                ),
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @property
    def refetch_threshold(self) -> int:
        return self.settings.refetch_threshold

    @property
    def refetch_chance(self) -> float:
        return self.settings.refetch_chance

    def _from_cache(self, cached: CachedLyrics) -> LyricsResult:
        raise NotImplementedError

    async def _read_through(
        self,
        video_id: str,
        fetch: Callable[[], Awaitable[LyricsResult | None]],
    ) -> LyricsResult | None:
        """
        Serve from cache when possible, fetch otherwise.

        fetch is a factory so a background refetch gets its own coroutine.
        """
        negative = await self.cache.get_negative(self.source_platform, video_id)
        if negative.hit:
            if negative.stale:
                observe(negativeRefetch=self.source_platform)
                defer(fetch())
            return None

        cached = await self.cache.get_positive(self.source_platform, video_id)
        if cached:
            if should_refetch(cached.last_updated_at, self.refetch_threshold, self.refetch_chance):
                observe(cacheRefetch=self.source_platform)
                defer(fetch())
            return self._from_cache(cached)

        return await fetch()

    def _persist(self, video_id: str, result: LyricsResult, external_id: str | int | None = None) -> None:
        """Schedule one cache write per available format."""
        for lyric_format, content in result.formats().items():
            defer(self.cache.save_positive(
                self.source_platform,
                video_id,
                lyric_format,
                content,
                external_id=external_id,
            ))

    def _save_negative(self, video_id: str) -> None:
        defer(self.cache.save_negative(self.source_platform, video_id))
