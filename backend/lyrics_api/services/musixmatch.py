"""
Musixmatch desktop API provider for word-synced (richsync), line-synced
(subtitle) and plain lyrics.

Authenticated calls carry a user token obtained from token.get and a cookie
jar replayed from previous responses. Redirects are followed by hand so the
jar sees every Set-Cookie along the way.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable
from urllib.parse import urljoin

import httpx
from pydantic import BaseModel, TypeAdapter, field_validator

from lyrics_api.config import Settings
from lyrics_api.services.alignment import WordSyncedLine, align, render_word_synced, tokenize_word_synced
from lyrics_api.services.lyrics_cache import BASIC, MUSIXMATCH, NORMAL_SYNC, RICH_SYNC, CachedLyrics
from lyrics_api.services.provider import LyricsProvider, LyricsResult
from lyrics_api.services.request_scope import observe

logger = logging.getLogger(__name__)

APP_ID = "web-desktop-app-v1.0"
TOKEN_ACTION = "token.get"
REDIRECT_STATUSES = (301, 302, 303, 307, 308)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://www.musixmatch.com",
    "Referer": "https://www.musixmatch.com/",
}


class MusixmatchRedirectError(Exception):
    """Upstream kept redirecting past the configured limit."""


# ============================================
# Response envelope
# ============================================

class MusixmatchHeader(BaseModel):
    status_code: int


class MusixmatchTrack(BaseModel):
    track_id: int
    track_name: str | None = None
    artist_name: str | None = None
    album_name: str | None = None
    has_richsync: int = 0
    has_subtitles: int = 0
    has_lyrics: int = 0
    instrumental: int = 0


class RichsyncPayload(BaseModel):
    richsync_body: str


class SubtitlePayload(BaseModel):
    subtitle_body: str


class PlainLyricsPayload(BaseModel):
    lyrics_body: str


class MusixmatchBody(BaseModel):
    user_token: str | None = None
    track: MusixmatchTrack | None = None
    richsync: RichsyncPayload | None = None
    subtitle: SubtitlePayload | None = None
    lyrics: PlainLyricsPayload | None = None


class MusixmatchMessage(BaseModel):
    header: MusixmatchHeader
    body: MusixmatchBody | None = None

    @field_validator("body", mode="before")
    @classmethod
    def empty_body(cls, value):
        # Error responses carry an empty list or string instead of an object
        return value if isinstance(value, dict) else None


class MusixmatchEnvelope(BaseModel):
    message: MusixmatchMessage

    @property
    def status_code(self) -> int:
        return self.message.header.status_code

    @property
    def body(self) -> MusixmatchBody:
        return self.message.body or MusixmatchBody()


_richsync_adapter = TypeAdapter(list[WordSyncedLine])


# ============================================
# Session
# ============================================

class TokenState(Enum):
    UNSET = "unset"
    ACQUIRING = "acquiring"
    VALID = "valid"
    INVALID = "invalid"


class MusixmatchSession:
    """
    Process-wide Musixmatch credentials: user token and cookie jar.

    One instance is shared by every request. Acquisitions are not locked:
    two requests may both fetch a token and the last one stored wins. A
    failed acquisition that started before another one stored a token is
    ignored. A 401 on an authenticated call drops the token (Valid -> Unset).
    After retry_max consecutive failed acquisitions the session turns Invalid
    and Musixmatch is skipped until reset() is called.
    """

    def __init__(self, retry_max: int = 3):
        self.retry_max = retry_max
        self.generation = 0
        self.reset()

    def reset(self) -> None:
        self.state = TokenState.UNSET
        self.token: str | None = None
        self.retry_count = 0
        self.cookies = httpx.Cookies()
        self.generation += 1

    def begin_acquire(self) -> int:
        """Mark an acquisition in flight; returns the generation it started in."""
        self.state = TokenState.ACQUIRING
        return self.generation

    def store_token(self, token: str) -> None:
        self.token = token
        self.state = TokenState.VALID
        self.retry_count = 0
        self.generation += 1

    def record_failure(self, generation: int | None = None) -> None:
        # Stale failure: a token was stored (or the session reset) meanwhile
        if generation is not None and generation != self.generation:
            return
        self.token = None
        self.retry_count += 1
        if self.retry_count >= self.retry_max:
            self.state = TokenState.INVALID
        else:
            self.state = TokenState.UNSET

    def invalidate_token(self) -> None:
        """Upstream rejected the token."""
        if self.state is TokenState.VALID:
            self.token = None
            self.state = TokenState.UNSET

    def update_cookies(self, response: httpx.Response) -> None:
        self.cookies.extract_cookies(response)

    def apply_cookies(self, request: httpx.Request) -> None:
        """Replace any Cookie header with the session jar."""
        request.headers.pop("Cookie", None)
        self.cookies.set_cookie_header(request)


# ============================================
# Provider
# ============================================

class MusixmatchLyricsProvider(LyricsProvider):
    """Musixmatch lookups by song/artist/album, validated against line-synced lyrics."""

    source_platform = MUSIXMATCH

    def __init__(
        self,
        session: MusixmatchSession | None = None,
        cache=None,
        client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
    ):
        super().__init__(cache=cache, client=client, config=config)
        self.session = session or MusixmatchSession(self.settings.musixmatch_token_retry_max)

    # ---------- transport ----------

    async def _get(self, action: str, params: dict[str, str]) -> httpx.Response:
        """
        GET one API action with app id, user token, timestamp, browser
        headers and the session's cookies, following redirects by hand.

        Raises:
            MusixmatchRedirectError: more than musixmatch_max_redirects hops
            httpx.HTTPError: transport failure
        """
        query = dict(params)
        query["app_id"] = APP_ID
        if action != TOKEN_ACTION and self.session.token:
            query["usertoken"] = self.session.token
        query["t"] = str(int(time.time() * 1000))

        client = self._get_client()
        url = str(httpx.URL(self.settings.musixmatch_api_url + action, params=query))

        for _ in range(self.settings.musixmatch_max_redirects):
            request = client.build_request(
                "GET",
                url,
                headers=BROWSER_HEADERS,
                timeout=self.settings.http_timeout,
            )
            self.session.apply_cookies(request)

            response = await client.send(request, follow_redirects=False)
            self.session.update_cookies(response)

            location = response.headers.get("location")
            if response.status_code not in REDIRECT_STATUSES or not location:
                return response
            url = urljoin(url, location)

        raise MusixmatchRedirectError(f"too many redirects for {action}")

    async def _call(self, action: str, params: dict[str, str]) -> MusixmatchEnvelope | None:
        """Envelope of one action, None on transport or parse failure."""
        try:
            response = await self._get(action, params)
            if response.status_code == 401 and action != TOKEN_ACTION:
                self.session.invalidate_token()
            payload = MusixmatchEnvelope.model_validate(response.json())
        except (httpx.HTTPError, MusixmatchRedirectError, ValueError) as e:
            logger.warning("[Musixmatch] %s failed: %s", action, e)
            observe(musixmatchError={"action": action, "error": str(e)})
            return None

        if payload.status_code == 401 and action != TOKEN_ACTION:
            self.session.invalidate_token()
        return payload

    # ---------- token ----------

    async def acquire_token(self) -> str | None:
        """Current user token, fetching one first when the session has none."""
        session = self.session
        if session.state is TokenState.VALID and session.token:
            observe(musixmatchTokenStatus="token already valid")
            return session.token
        if session.state is TokenState.INVALID:
            observe(musixmatchTokenStatus="too many retries")
            return None

        generation = session.begin_acquire()
        payload = await self._call(TOKEN_ACTION, {"user_language": "en"})
        token = payload.body.user_token if payload and payload.status_code == 200 else None
        if not token:
            session.record_failure(generation)
            if session.state is TokenState.VALID:
                observe(musixmatchTokenStatus="token acquired concurrently")
                return session.token
            observe(musixmatchTokenStatus={
                "status": payload.status_code if payload else None,
                "retryCount": session.retry_count,
            })
            logger.warning("[Musixmatch] Token acquisition failed (%d/%d)", session.retry_count, session.retry_max)
            return None

        session.store_token(token)
        observe(musixmatchTokenStatus="token acquired")
        logger.info("[Musixmatch] Token acquired")
        return token

    # ---------- lyrics ----------

    async def get_lyrics(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None = None,
        reference: Awaitable[LyricsResult | None] | None = None,
        token: Awaitable[str | None] | None = None,
    ) -> LyricsResult | None:
        """
        Args:
            reference: Task resolving to independently timed line-synced
                lyrics (usually LRCLib) used to validate word timings
            token: Task resolving to the user token, started early by the caller
        """
        return await self._read_through(
            video_id,
            lambda: self._fetch_and_save(video_id, artist, song, album, reference, token),
        )

    def _from_cache(self, cached: CachedLyrics) -> LyricsResult:
        return LyricsResult(
            source=MUSIXMATCH,
            word_synced=cached.contents.get(RICH_SYNC),
            line_synced=cached.contents.get(NORMAL_SYNC),
            plain=cached.contents.get(BASIC),
            debug_info={"lyricMatchingStats": None, "comment": "musixmatch cache"},
        )

    async def _fetch_and_save(
        self,
        video_id: str,
        artist: str,
        song: str,
        album: str | None,
        reference: Awaitable[LyricsResult | None] | None,
        token: Awaitable[str | None] | None,
    ) -> LyricsResult | None:
        user_token = await token if token is not None else await self.acquire_token()
        observe(musixmatchHasValidToken=user_token is not None)
        if not user_token:
            return None

        params = {
            "q_track": song,
            "q_artist": artist,
            "page_size": "1",
            "page": "1",
        }
        if album:
            params["q_album"] = album

        payload = await self._call("matcher.track.get", params)
        if payload is None:
            return None
        if payload.status_code == 404:
            self._save_negative(video_id)
            return None
        if payload.status_code != 200 or payload.body.track is None:
            observe(musixmatchError={"action": "matcher.track.get", "status": payload.status_code})
            return None

        track = payload.body.track
        observe(musixmatchTrack={
            "id": track.track_id,
            "richsync": track.has_richsync,
            "subtitles": track.has_subtitles,
            "lyrics": track.has_lyrics,
        })

        if track.has_richsync:
            result = await self._word_synced(track.track_id, reference)
        elif track.has_subtitles:
            subtitle = await self._subtitle(track.track_id)
            result = LyricsResult(source=MUSIXMATCH, line_synced=subtitle) if subtitle else None
        elif track.has_lyrics:
            plain = await self._plain(track.track_id)
            result = LyricsResult(source=MUSIXMATCH, plain=plain) if plain else None
        else:
            # Matched a track without any lyrics
            self._save_negative(video_id)
            return None

        if result is None:
            return None

        self._persist(video_id, result, external_id=track.track_id)
        return result

    async def _word_synced(
        self,
        track_id: int,
        reference: Awaitable[LyricsResult | None] | None,
    ) -> LyricsResult | None:
        own_subtitle = asyncio.ensure_future(self._subtitle(track_id))

        payload = await self._call("track.richsync.get", {"track_id": str(track_id)})
        lines = None
        if payload is not None and payload.status_code == 200 and payload.body.richsync:
            try:
                lines = _richsync_adapter.validate_json(payload.body.richsync.richsync_body)
            except ValueError as e:
                logger.warning("[Musixmatch] Malformed richsync body for %s: %s", track_id, e)
                observe(musixmatchError={"action": "track.richsync.get", "error": "malformed body"})

        subtitle = await own_subtitle
        if not lines:
            return LyricsResult(source=MUSIXMATCH, line_synced=subtitle) if subtitle else None

        reference_result = await reference if reference is not None else None
        reference_lrc = (reference_result.line_synced if reference_result else None) or subtitle

        outcome = align(render_word_synced(lines), tokenize_word_synced(lines), reference_lrc)
        return LyricsResult(
            source=MUSIXMATCH,
            word_synced=outcome.word_synced,
            line_synced=subtitle,
            debug_info=outcome.debug_info,
        )

    async def _subtitle(self, track_id: int) -> str | None:
        payload = await self._call(
            "track.subtitle.get",
            {"track_id": str(track_id), "subtitle_format": "lrc"},
        )
        if payload is None or payload.status_code != 200 or payload.body.subtitle is None:
            return None
        return payload.body.subtitle.subtitle_body or None

    async def _plain(self, track_id: int) -> str | None:
        payload = await self._call("track.lyrics.get", {"track_id": str(track_id)})
        if payload is None or payload.status_code != 200 or payload.body.lyrics is None:
            return None
        return payload.body.lyrics.lyrics_body or None
