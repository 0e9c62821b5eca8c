"""
Video metadata used to fill in missing song/artist/album/duration.

Resolving metadata (YouTube Data API, description scraping) is deployment
specific; the orchestrator only depends on the MetadataResolver protocol and
runs without one by default.
"""
from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class VideoMetadata:
    video_id: str
    song: str | None = None
    artists: list[str] = field(default_factory=list)
    album: str | None = None
    duration: int | None = None
    found: bool = True


class MetadataResolver(Protocol):
    async def resolve(self, video_id: str, always_fetch: bool = False) -> VideoMetadata | None:
        """Metadata for a video, None when it cannot be resolved."""
        ...
