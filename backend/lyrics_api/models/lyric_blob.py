"""
SQLAlchemy model for lyric blob references.
The lyric body itself lives gzip-compressed in blob storage under blob_key.
"""
from sqlalchemy import Column, ForeignKey, Integer, String, Index

from lyrics_api.models.track import Base


class LyricBlob(Base):
    """One stored lyric format of a Track ('rich_sync', 'normal_sync', 'basic', 'ttml')."""
    __tablename__ = "lyrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    track_id = Column(Integer, ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False)
    format = Column(String(20), nullable=False)
    blob_key = Column(String(512), nullable=False, unique=True)

    __table_args__ = (
        Index("idx_lyrics_track_id", "track_id"),
    )

    def __repr__(self) -> str:
        return f"<LyricBlob(track={self.track_id}, format={self.format}, key={self.blob_key})>"
