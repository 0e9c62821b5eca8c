"""
Unified lyrics service fanning out to every provider.

Flow per request:
1. Musixmatch token acquisition starts immediately.
2. Missing song/artist/album/duration are filled by the metadata resolver.
3. LRCLib starts and is raced against a timer; the race is handed to
   Musixmatch as its alignment reference.
4. Musixmatch and the TTML provider (only with a duration) run concurrently.
5. LRCLib gets a short grace period; when it is still unresolved the
   response goes out without it (its late result is still cached).

Provider failures never escape: they are logged, observed and treated as
"nothing found".
"""
import asyncio
import logging
from typing import Any, Awaitable

from lyrics_api.config import Settings, settings as default_settings
from lyrics_api.services.golyrics import GoLyricsApiProvider
from lyrics_api.services.lrclib import LrcLibLyricsProvider
from lyrics_api.services.lyrics_cache import GOLYRICS, LRCLIB, MUSIXMATCH, lyrics_cache_service
from lyrics_api.services.metadata import MetadataResolver
from lyrics_api.services.musixmatch import MusixmatchLyricsProvider
from lyrics_api.services.provider import LyricsResult
from lyrics_api.services.request_scope import defer, observe, race

logger = logging.getLogger(__name__)

MISSING_SONG_MESSAGE = "A Song or Artist wasn't provided and couldn't be inferred"

SYNCED_FIELDS = (
    "musixmatchWordByWordLyrics",
    "musixmatchSyncedLyrics",
    "lrclibSyncedLyrics",
    "goLyricsApiTtml",
)


def split_artists(artist: str | None) -> list[str]:
    """'A, B & C' -> ['A', 'B', 'C']"""
    if not artist:
        return []
    names = []
    for part in artist.split(","):
        names.extend(name.strip() for name in part.split("&"))
    return [name for name in names if name]


def has_synced_lyrics(response: dict) -> bool:
    return any(response.get(key) for key in SYNCED_FIELDS)


class LyricsService:
    """
    Orchestrates LRCLib, Musixmatch and the Go lyrics API for one video.
    """

    def __init__(
        self,
        lrclib: LrcLibLyricsProvider | None = None,
        musixmatch: MusixmatchLyricsProvider | None = None,
        golyrics: GoLyricsApiProvider | None = None,
        metadata_resolver: MetadataResolver | None = None,
        cache=None,
        config: Settings | None = None,
    ):
        self.settings = default_settings if config is None else config
        self.cache = lyrics_cache_service if cache is None else cache
        self.lrclib = lrclib or LrcLibLyricsProvider(cache=self.cache, config=self.settings)
        self.musixmatch = musixmatch or MusixmatchLyricsProvider(cache=self.cache, config=self.settings)
        self.golyrics = golyrics or GoLyricsApiProvider(cache=self.cache, config=self.settings)
        self.metadata_resolver = metadata_resolver

    async def get_lyrics(
        self,
        video_id: str,
        song: str | None = None,
        artist: str | None = None,
        album: str | None = None,
        duration: str | None = None,
        always_fetch_metadata: bool = False,
    ) -> dict[str, Any]:
        """
        Get every available lyric representation for a video.

        Raises:
            ValueError: video_id is missing or blank
        """
        if not video_id or not video_id.strip():
            raise ValueError("Invalid Video Id")

        errors: dict[str, str] = {}
        token_task = defer(self._guarded(self.musixmatch.acquire_token(), "musixmatchToken", errors))

        artists = split_artists(artist)
        if always_fetch_metadata or not song or not song.strip() or not artists or not album:
            metadata = await self._resolve_metadata(video_id, always_fetch_metadata)
            if metadata and metadata.found:
                song = song or metadata.song
                artists = artists or list(metadata.artists)
                album = album or metadata.album
                if not duration and metadata.duration:
                    duration = str(metadata.duration)
        if artists:
            artist = ", ".join(artists)

        if not song or not artist:
            observe(foundLyrics=False, missingSongOrArtist=True)
            return {
                "message": MISSING_SONG_MESSAGE,
                "song": song,
                "artist": artist,
                "album": album,
                "duration": duration,
                "videoId": video_id,
            }

        response = {
            "song": song,
            "artist": artist,
            "album": album,
            "duration": duration,
            "videoId": video_id,
            "debugInfo": None,
            "musixmatchWordByWordLyrics": None,
            "musixmatchSyncedLyrics": None,
            "musixmatchPlainLyrics": None,
            "lrclibSyncedLyrics": None,
            "lrclibPlainLyrics": None,
            "goLyricsApiTtml": None,
        }

        combos = [{"artist": artist, "song": song, "album": album or None}]
        found_stats = []
        for combo in combos:
            await self._fetch_combo(video_id, combo, duration, token_task, response, errors)

            found_stats.append({
                "hasWordByWord": bool(response["musixmatchWordByWordLyrics"]),
                "hasLrcLibSynced": bool(response["lrclibSyncedLyrics"]),
                "hasMusixmatchSynced": bool(response["musixmatchSyncedLyrics"]),
                "hasLrcLibPlain": bool(response["lrclibPlainLyrics"]),
                "hasGoLyricsApiTtml": bool(response["goLyricsApiTtml"]),
                "musixMatchError": errors.get(MUSIXMATCH),
            })

            if has_synced_lyrics(response):
                response.update(combo)
                break

        observe(
            combos=combos,
            foundStats=found_stats,
            foundSyncedLyrics=has_synced_lyrics(response),
            foundPlainLyrics=bool(response["lrclibPlainLyrics"] or response["musixmatchPlainLyrics"]),
            foundRichSyncedLyrics=bool(response["musixmatchWordByWordLyrics"]),
            foundTtml=bool(response["goLyricsApiTtml"]),
            foundLyrics=any(
                value for key, value in response.items()
                if key.endswith("Lyrics") or key == "goLyricsApiTtml"
            ),
        )
        logger.info(
            "[LyricsService] %s (%s - %s): synced=%s",
            video_id, artist, song, has_synced_lyrics(response),
        )
        return response

    async def _fetch_combo(
        self,
        video_id: str,
        combo: dict,
        duration: str | None,
        token_task: asyncio.Future,
        response: dict,
        errors: dict[str, str],
    ) -> None:
        lrclib_task = defer(self._guarded(
            self.lrclib.get_lyrics(video_id, combo["artist"], combo["song"], combo["album"], duration),
            LRCLIB,
            errors,
        ))
        lrclib_race = asyncio.ensure_future(race(lrclib_task, self.settings.lrclib_timeout))

        pending = [
            self._guarded(
                self.musixmatch.get_lyrics(
                    video_id,
                    combo["artist"],
                    combo["song"],
                    combo["album"],
                    reference=lrclib_race,
                    token=token_task,
                ),
                MUSIXMATCH,
                errors,
            )
        ]
        if duration:
            pending.append(self._guarded(
                self.golyrics.get_lyrics(video_id, combo["artist"], combo["song"], combo["album"], duration),
                GOLYRICS,
                errors,
            ))

        results = await asyncio.gather(*pending)
        musixmatch_result = results[0]
        golyrics_result = results[1] if len(results) > 1 else None

        if musixmatch_result:
            response["musixmatchWordByWordLyrics"] = musixmatch_result.word_synced
            response["musixmatchSyncedLyrics"] = musixmatch_result.line_synced
            response["musixmatchPlainLyrics"] = musixmatch_result.plain
            response["debugInfo"] = musixmatch_result.debug_info
        if golyrics_result:
            response["goLyricsApiTtml"] = golyrics_result.ttml

        if response["goLyricsApiTtml"]:
            grace = self.settings.lrclib_grace_with_ttml
        else:
            grace = self.settings.lrclib_grace_no_ttml

        lrclib_result: LyricsResult | None = await race(lrclib_race, grace)
        if lrclib_result:
            response["lrclibSyncedLyrics"] = lrclib_result.line_synced
            response["lrclibPlainLyrics"] = lrclib_result.plain
        elif not lrclib_task.done():
            observe(lrclibLate=True)

    async def _resolve_metadata(self, video_id: str, always_fetch: bool):
        if self.metadata_resolver is None:
            return None
        try:
            return await self.metadata_resolver.resolve(video_id, always_fetch)
        except Exception as e:
            logger.warning("[LyricsService] Metadata lookup failed for %s: %s", video_id, e)
            observe(metadataError=str(e))
            return None

    @staticmethod
    async def _guarded(aw: Awaitable, name: str, errors: dict[str, str]):
        try:
            return await aw
        except Exception as e:
            logger.error("[LyricsService] %s failed: %s", name, e, exc_info=True)
            errors[name] = str(e)
            observe(providerError={"provider": name, "error": str(e)})
            return None

    async def invalidate_cache(self, video_id: str) -> bool:
        """Purge every cached lyric for a video."""
        return await self.cache.delete_all(video_id)

    def reset_session(self) -> None:
        """Forget the Musixmatch token and cookies (also leaves the Invalid state)."""
        self.musixmatch.session.reset()

    async def close(self):
        await asyncio.gather(
            self.lrclib.close(),
            self.musixmatch.close(),
            self.golyrics.close(),
        )


# Singleton instance
lyrics_service = LyricsService()
