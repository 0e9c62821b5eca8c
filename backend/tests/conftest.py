"""
Test fixtures for the Synced Lyrics backend.

Provides:
- Mock Redis (in-memory dict-based)
- Mock blob storage (in-memory)
- SQLite database with the full schema (aiosqlite, one file per test)
- Lyrics cache wired to the three of them
- FastAPI test client (httpx AsyncClient) with the lyrics service mocked
"""
import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lyrics_api.config import Settings
from lyrics_api.main import app
from lyrics_api.models import Base
from lyrics_api.services.lyrics_cache import LyricsCacheService
from lyrics_api.services.response_cache import ResponseCache


# ============================================
# Sample data
# ============================================

VIDEO_ID = "dQw4w9WgXcQ"

SAMPLE_LRC = (
    "[00:18.00] We're no strangers to love\n"
    "[00:22.00] You know the rules and so do I\n"
)

SAMPLE_PLAIN = "We're no strangers to love\nYou know the rules and so do I"

SAMPLE_TTML = '<tt xmlns="http://www.w3.org/ns/ttml"><body><div><p begin="18.0s">We\'re no strangers</p></div></body></tt>'

SAMPLE_RESPONSE = {
    "song": "Never Gonna Give You Up",
    "artist": "Rick Astley",
    "album": "Whenever You Need Somebody",
    "duration": "213",
    "videoId": VIDEO_ID,
    "debugInfo": None,
    "musixmatchWordByWordLyrics": None,
    "musixmatchSyncedLyrics": None,
    "musixmatchPlainLyrics": None,
    "lrclibSyncedLyrics": SAMPLE_LRC,
    "lrclibPlainLyrics": SAMPLE_PLAIN,
    "goLyricsApiTtml": None,
}


# ============================================
# Mock Redis (in-memory)
# ============================================

class MockRedisClient:
    """In-memory Redis mock for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._sets: dict[str, set[str]] = {}

    async def get_client(self):
        return self

    async def ping(self):
        return True

    async def close(self):
        pass

    async def get_json(self, key: str):
        raw = self._store.get(key)
        if raw:
            return json.loads(raw)
        return None

    async def set_json(self, key: str, value, ttl: int):
        self._store[key] = json.dumps(value)
        self._ttls[key] = ttl

    async def delete(self, *keys: str):
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)
            self._sets.pop(key, None)

    async def add_to_set(self, key: str, member: str, ttl: int):
        self._sets.setdefault(key, set()).add(member)
        self._ttls[key] = ttl

    async def set_members(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))


# ============================================
# Mock blob storage (in-memory)
# ============================================

class MockBlobStore:
    """In-memory stand-in for StorageClient."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_uploads = False

    async def upload(self, data: bytes, key: str, content_type: str = "application/gzip"):
        if self.fail_uploads:
            raise RuntimeError("storage unavailable")
        self.objects[key] = data

    async def download(self, key: str) -> bytes | None:
        return self.objects.get(key)

    async def delete(self, key: str):
        self.objects.pop(key, None)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def mock_redis():
    """Provide an in-memory Redis mock."""
    return MockRedisClient()


@pytest.fixture
def mock_blob_store():
    """Provide an in-memory blob store."""
    return MockBlobStore()


@pytest.fixture
def test_settings():
    """Settings with short timings and deterministic refetch decisions."""
    return Settings(
        refetch_chance=0.0,
        golyrics_refetch_chance=0.0,
        lrclib_timeout=0.5,
        lrclib_grace_no_ttml=0.2,
        lrclib_grace_with_ttml=0.05,
        musixmatch_api_url="https://musixmatch.test/ws/1.1/",
        lrclib_api_url="https://lrclib.test/api/get",
        golyrics_api_url="https://golyrics.test/getLyrics",
        golyrics_api_key="test-key",
    )


@pytest.fixture
async def session_factory(tmp_path):
    """SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lyrics.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def cache(session_factory, mock_blob_store, mock_redis, test_settings):
    """Lyrics cache over SQLite, in-memory blobs and in-memory Redis."""
    return LyricsCacheService(
        session_factory=session_factory,
        blob_store=mock_blob_store,
        redis=mock_redis,
        config=test_settings,
    )


@pytest.fixture
def mock_lyrics():
    """Mock lyrics service."""
    service = AsyncMock()
    service.get_lyrics.return_value = dict(SAMPLE_RESPONSE)
    service.invalidate_cache.return_value = True
    return service


@pytest.fixture
async def client(mock_redis, mock_lyrics):
    """
    Async test client with all services mocked.

    Patches singleton services so routes use mocks instead of real connections.
    """
    with (
        patch("lyrics_api.routers.lyrics.lyrics_service", mock_lyrics),
        patch("lyrics_api.routers.lyrics.response_cache", ResponseCache(redis=mock_redis)),
    ):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            # Expose mocks on client for assertions
            ac.mock_redis = mock_redis  # type: ignore
            ac.mock_lyrics = mock_lyrics  # type: ignore
            yield ac
