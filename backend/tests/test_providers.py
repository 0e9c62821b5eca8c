"""
Tests for the LRCLib and Go lyrics API providers (read path and negative-cache semantics).
"""
import time

import httpx
import pytest
from sqlalchemy import update

from lyrics_api.models import NegativeMapping
from lyrics_api.services.golyrics import GoLyricsApiProvider
from lyrics_api.services.lrclib import LrcLibLyricsProvider
from lyrics_api.services.lyrics_cache import BASIC, GOLYRICS, LRCLIB, NORMAL_SYNC, TTML
from lyrics_api.services.request_scope import open_scope

from conftest import SAMPLE_LRC, SAMPLE_PLAIN, SAMPLE_TTML, VIDEO_ID


class RecordingHandler:
    """MockTransport handler returning a canned response and recording requests."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _lrclib_found() -> httpx.Response:
    return httpx.Response(200, json={
        "id": 7,
        "trackName": "Never Gonna Give You Up",
        "artistName": "Rick Astley",
        "albumName": "Whenever You Need Somebody",
        "duration": 213,
        "instrumental": False,
        "plainLyrics": SAMPLE_PLAIN,
        "syncedLyrics": SAMPLE_LRC,
    })


async def _fetch_lrclib(provider):
    with open_scope() as scope:
        result = await provider.get_lyrics(
            VIDEO_ID, "Rick Astley", "Never Gonna Give You Up", "Whenever You Need Somebody", "213"
        )
    await scope.flush()
    return result


# ============================================
# LRCLib
# ============================================

async def test_lrclib_found_returns_and_caches(cache, test_settings, mock_blob_store):
    handler = RecordingHandler(_lrclib_found())
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    result = await _fetch_lrclib(provider)

    assert result.line_synced == SAMPLE_LRC
    assert result.plain == SAMPLE_PLAIN
    params = handler.requests[0].url.params
    assert params["artist_name"] == "Rick Astley"
    assert params["track_name"] == "Never Gonna Give You Up"
    assert params["album_name"] == "Whenever You Need Somebody"
    assert params["duration"] == "213"

    cached = await cache.get_positive(LRCLIB, VIDEO_ID)
    assert cached.contents == {NORMAL_SYNC: SAMPLE_LRC, BASIC: SAMPLE_PLAIN}
    assert "lrclib-7/normal_sync.gz" in mock_blob_store.objects


async def test_lrclib_cache_hit_skips_upstream(cache, test_settings):
    await cache.save_positive(LRCLIB, VIDEO_ID, NORMAL_SYNC, SAMPLE_LRC)
    handler = RecordingHandler(_lrclib_found())
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    result = await _fetch_lrclib(provider)

    assert result.line_synced == SAMPLE_LRC
    assert handler.requests == []


async def test_lrclib_404_is_negative_cached(cache, test_settings):
    handler = RecordingHandler(httpx.Response(404, json={"message": "Failed to find specified track"}))
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_lrclib(provider) is None

    status = await cache.get_negative(LRCLIB, VIDEO_ID)
    assert status.hit is True
    assert status.stale is False

    # Second request answered by the negative cache
    assert await _fetch_lrclib(provider) is None
    assert len(handler.requests) == 1


@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_lrclib_transient_error_is_not_cached(cache, test_settings, status_code):
    handler = RecordingHandler(httpx.Response(status_code, text="upstream error"))
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_lrclib(provider) is None

    assert (await cache.get_negative(LRCLIB, VIDEO_ID)).hit is False
    assert await cache.get_positive(LRCLIB, VIDEO_ID) is None


async def test_lrclib_network_error_returns_none(cache, test_settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_lrclib(provider) is None
    assert (await cache.get_negative(LRCLIB, VIDEO_ID)).hit is False


async def test_lrclib_stale_negative_revalidates_in_background(cache, test_settings, session_factory):
    await cache.save_negative(LRCLIB, VIDEO_ID)
    async with session_factory() as session:
        await session.execute(update(NegativeMapping).values(
            created_at=int(time.time()) - test_settings.negative_cache_ttl_lrclib - 10
        ))
        await session.commit()

    handler = RecordingHandler(_lrclib_found())
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    # Still answered as "no lyrics" for this request
    assert await _fetch_lrclib(provider) is None

    # ...but the background refetch replaced the negative entry
    assert len(handler.requests) == 1
    assert (await cache.get_negative(LRCLIB, VIDEO_ID)).hit is False
    assert (await cache.get_positive(LRCLIB, VIDEO_ID)).contents[NORMAL_SYNC] == SAMPLE_LRC


async def test_lrclib_stale_positive_served_while_refetching(cache, test_settings):
    test_settings.refetch_threshold = -1
    test_settings.refetch_chance = 1.0
    await cache.save_positive(LRCLIB, VIDEO_ID, NORMAL_SYNC, "[00:01.00] old")
    handler = RecordingHandler(_lrclib_found())
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    result = await _fetch_lrclib(provider)

    assert result.line_synced == "[00:01.00] old"
    assert len(handler.requests) == 1


async def test_lrclib_instrumental_is_negative_cached(cache, test_settings):
    handler = RecordingHandler(httpx.Response(200, json={
        "id": 8, "instrumental": True, "plainLyrics": None, "syncedLyrics": None,
    }))
    provider = LrcLibLyricsProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_lrclib(provider) is None
    assert (await cache.get_negative(LRCLIB, VIDEO_ID)).hit is True


# ============================================
# Go lyrics API (TTML)
# ============================================

async def _fetch_ttml(provider):
    with open_scope() as scope:
        result = await provider.get_lyrics(VIDEO_ID, "Rick Astley", "Never Gonna Give You Up", None, "213")
    await scope.flush()
    return result


async def test_golyrics_found_returns_and_caches(cache, test_settings):
    handler = RecordingHandler(httpx.Response(200, text=SAMPLE_TTML))
    provider = GoLyricsApiProvider(cache=cache, client=_client(handler), config=test_settings)

    result = await _fetch_ttml(provider)

    assert result.ttml == SAMPLE_TTML
    request = handler.requests[0]
    assert request.headers["X-API-KEY"] == "test-key"
    assert request.url.params["s"] == "Never Gonna Give You Up"
    assert request.url.params["d"] == "213"
    assert "al" not in request.url.params
    assert (await cache.get_positive(GOLYRICS, VIDEO_ID)).contents == {TTML: SAMPLE_TTML}


async def test_golyrics_empty_body_is_negative_cached(cache, test_settings):
    handler = RecordingHandler(httpx.Response(200, text=""))
    provider = GoLyricsApiProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_ttml(provider) is None
    assert (await cache.get_negative(GOLYRICS, VIDEO_ID)).hit is True


async def test_golyrics_server_error_is_not_cached(cache, test_settings):
    handler = RecordingHandler(httpx.Response(502, text="bad gateway"))
    provider = GoLyricsApiProvider(cache=cache, client=_client(handler), config=test_settings)

    assert await _fetch_ttml(provider) is None
    assert (await cache.get_negative(GOLYRICS, VIDEO_ID)).hit is False


async def test_golyrics_success_clears_negative(cache, test_settings, session_factory):
    await cache.save_negative(GOLYRICS, VIDEO_ID)
    async with session_factory() as session:
        await session.execute(update(NegativeMapping).values(created_at=1))
        await session.commit()
    handler = RecordingHandler(httpx.Response(200, text=SAMPLE_TTML))
    provider = GoLyricsApiProvider(cache=cache, client=_client(handler), config=test_settings)

    await _fetch_ttml(provider)

    assert (await cache.get_negative(GOLYRICS, VIDEO_ID)).hit is False
    assert (await cache.get_positive(GOLYRICS, VIDEO_ID)).contents[TTML] == SAMPLE_TTML
