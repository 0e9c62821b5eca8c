"""
Go lyrics API provider for TTML (markup-synced) lyrics.
Only queried when the track duration is known.
"""
import logging

import httpx

from lyrics_api.services.lyrics_cache import GOLYRICS, TTML, CachedLyrics
from lyrics_api.services.provider import LyricsProvider, LyricsResult
from lyrics_api.services.request_scope import observe

logger = logging.getLogger(__name__)

USER_AGENT = "Synced Lyrics API"


class GoLyricsApiProvider(LyricsProvider):
    """TTML lyrics keyed by song, artist, album and duration."""

    source_platform = GOLYRICS

    @property
    def refetch_threshold(self) -> int:
        return self.settings.golyrics_refetch_threshold

    @property
    def refetch_chance(self) -> float:
        return self.settings.golyrics_refetch_chance

    async def get_lyrics(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None,
        duration: str,
    ) -> LyricsResult | None:
        return await self._read_through(
            video_id,
            lambda: self._fetch_and_save(video_id, artist, song, album, duration),
        )

    def _from_cache(self, cached: CachedLyrics) -> LyricsResult:
        return LyricsResult(
            source=GOLYRICS,
            ttml=cached.contents.get(TTML),
            debug_info={"comment": "goLyricsApi cache"},
        )

    async def _fetch_and_save(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None,
        duration: str,
    ) -> LyricsResult | None:
        params = {"s": song, "a": artist, "d": str(duration)}
        if album is not None:
            params["al"] = album

        try:
            response = await self._get_client().get(
                self.settings.golyrics_api_url,
                params=params,
                headers={
                    "User-Agent": USER_AGENT,
                    "X-API-KEY": self.settings.golyrics_api_key,
                },
                timeout=self.settings.http_timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("[GoLyricsApi] Request error: %s", e)
            observe(goLyricsApiError=str(e))
            return None

        if response.status_code != 200:
            observe(goLyricsApiError={"invalidStatusCode": response.status_code, "body": response.text[:500]})
            if response.status_code == 404:
                self._save_negative(video_id)
            return None

        ttml = response.text
        if not ttml.strip():
            self._save_negative(video_id)
            return None

        result = LyricsResult(source=GOLYRICS, ttml=ttml)
        self._persist(video_id, result)
        return result
