"""
LRCLib provider for free, legal synced lyrics.
API docs: https://lrclib.net/docs
No API key required.
"""
import logging

import httpx
from pydantic import BaseModel

from lyrics_api.services.lyrics_cache import BASIC, LRCLIB, NORMAL_SYNC, CachedLyrics
from lyrics_api.services.provider import LyricsProvider, LyricsResult
from lyrics_api.services.request_scope import observe

logger = logging.getLogger(__name__)

USER_AGENT = "Synced Lyrics API (https://github.com/adaliea/better-lyrics-cf-api)"


class LrcLibResponse(BaseModel):
    """Payload of /api/get."""
    id: int
    trackName: str | None = None
    artistName: str | None = None
    albumName: str | None = None
    duration: float | None = None
    instrumental: bool = False
    plainLyrics: str | None = None
    syncedLyrics: str | None = None


class LrcLibLyricsProvider(LyricsProvider):
    """
    Line-synced and plain lyrics from LRCLib's exact-match endpoint.

    404 is a confirmed absence (negative cached); any other failure is
    transient and retried on the next request.
    """

    source_platform = LRCLIB

    async def get_lyrics(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None = None,
        duration: str | None = None,
    ) -> LyricsResult | None:
        return await self._read_through(
            video_id,
            lambda: self._fetch_and_save(video_id, artist, song, album, duration),
        )

    def _from_cache(self, cached: CachedLyrics) -> LyricsResult:
        return LyricsResult(
            source=LRCLIB,
            line_synced=cached.contents.get(NORMAL_SYNC),
            plain=cached.contents.get(BASIC),
            debug_info={"comment": "lrclib cache"},
        )

    async def _fetch_and_save(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None,
        duration: str | None,
    ) -> LyricsResult | None:
        params = {
            "artist_name": artist,
            "track_name": song,
        }
        if album:
            params["album_name"] = album
        if duration:
            params["duration"] = duration

        try:
            response = await self._get_client().get(
                self.settings.lrclib_api_url,
                params=params,
                headers={"User-Agent": USER_AGENT},
                timeout=self.settings.http_timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("[LRCLib] Request error: %s", e)
            observe(lrclibError=str(e))
            return None

        if response.status_code == 404:
            self._save_negative(video_id)
            return None

        if response.status_code != 200:
            logger.warning("[LRCLib] API error: %s", response.status_code)
            observe(lrclibError=response.status_code)
            return None

        try:
            data = LrcLibResponse.model_validate(response.json())
        except ValueError as e:
            logger.warning("[LRCLib] Malformed response: %s", e)
            observe(lrclibError="malformed response")
            return None

        result = LyricsResult(
            source=LRCLIB,
            line_synced=data.syncedLyrics or None,
            plain=data.plainLyrics or None,
        )
        if not result.formats():
            # Matched but empty (e.g. instrumental)
            self._save_negative(video_id)
            return None

        self._persist(video_id, result, external_id=data.id)
        return result
