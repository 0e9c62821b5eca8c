"""
Lyrics routes.

Provides endpoints for:
- Every available lyric representation of a video (word-synced, line-synced, plain, TTML)
- Purging all caches of a video
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel

from lyrics_api.services.lyrics import has_synced_lyrics, lyrics_service
from lyrics_api.services.request_scope import open_scope
from lyrics_api.services.response_cache import response_cache

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================
# Response Models
# ============================================

class LyricsResponse(BaseModel):
    """Every lyric representation found for a video."""
    song: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    duration: Optional[str] = None
    videoId: str
    debugInfo: Optional[Any] = None
    musixmatchWordByWordLyrics: Optional[str] = None
    musixmatchSyncedLyrics: Optional[str] = None
    musixmatchPlainLyrics: Optional[str] = None
    lrclibSyncedLyrics: Optional[str] = None
    lrclibPlainLyrics: Optional[str] = None
    goLyricsApiTtml: Optional[str] = None
    message: Optional[str] = None


class DeleteCacheResponse(BaseModel):
    success: bool


# ============================================
# Lyrics Endpoints
# ============================================

@router.get("", response_model=LyricsResponse)
async def get_lyrics(
    request: Request,
    background_tasks: BackgroundTasks,
    videoId: str = Query(..., description="YouTube video ID"),
    song: Optional[str] = Query(None, description="Track title"),
    artist: Optional[str] = Query(None, description="Artists, separated by ',' or '&'"),
    album: Optional[str] = Query(None, description="Album name"),
    duration: Optional[str] = Query(None, description="Track duration in seconds"),
    alwaysFetchMetadata: bool = Query(False, description="Resolve metadata even when provided"),
):
    """
    Get lyrics for a video from every provider.

    Cache strategy: response cache (by URL) → lyrics cache → upstream providers.
    Deferred cache writes finish after the response is sent.
    """
    if not videoId.strip():
        raise HTTPException(status_code=400, detail="Invalid Video Id")

    url = str(request.url)
    cached = await response_cache.get(url)
    if cached:
        logger.debug("[Lyrics] Response cache HIT for %s", url)
        return LyricsResponse(**cached)

    with open_scope() as scope:
        scope.observe(usingCachedLyrics=False)
        try:
            result = await lyrics_service.get_lyrics(
                video_id=videoId,
                song=song,
                artist=artist,
                album=album,
                duration=duration,
                always_fetch_metadata=alwaysFetchMetadata,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        finally:
            background_tasks.add_task(scope.flush)

    body = LyricsResponse(**result)
    payload = body.model_dump()
    background_tasks.add_task(
        response_cache.put, url, videoId, payload, has_synced_lyrics(payload)
    )
    return body


# ============================================
# Cache Management Endpoints
# ============================================

@router.delete("/cache", response_model=DeleteCacheResponse)
async def delete_cache(videoId: str = Query(..., description="YouTube video ID")):
    """
    Purge every cached lyric and cached response for a video.
    """
    if not videoId.strip():
        raise HTTPException(status_code=400, detail="Missing videoId")

    success = await lyrics_service.invalidate_cache(videoId)
    await response_cache.invalidate_video(videoId)

    return DeleteCacheResponse(success=success)
