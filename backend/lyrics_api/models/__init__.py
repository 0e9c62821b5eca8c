"""Database models."""
from lyrics_api.models.track import Base, Track, TrackMapping
from lyrics_api.models.lyric_blob import LyricBlob
from lyrics_api.models.negative_mapping import NegativeMapping

__all__ = ["Base", "Track", "TrackMapping", "LyricBlob", "NegativeMapping"]
