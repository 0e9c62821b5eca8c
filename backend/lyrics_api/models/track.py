"""
SQLAlchemy models for track identity.

A Track is the canonical identity of a song inside one provider's universe
(e.g. a Musixmatch track id). Many external identifiers (video ids) can map
onto the same Track through TrackMapping.
"""
from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, UniqueConstraint, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class Track(Base):
    """
    Canonical track identity per source platform.

    Timestamps are epoch seconds. last_accessed_at is bumped lazily
    (at most once per access refresh interval), last_updated_at on every
    accepted upstream fetch.
    """
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_platform = Column(String(32), nullable=False)
    # Provider-specific owning identity (Musixmatch track id, LRCLib id, video id)
    external_id = Column(String(255), nullable=False)
    last_accessed_at = Column(BigInteger, nullable=False)
    last_updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("source_platform", "external_id", name="uq_tracks_platform_external"),
    )

    def __repr__(self) -> str:
        return f"<Track(id={self.id}, platform={self.source_platform}, external={self.external_id})>"


class TrackMapping(Base):
    """Maps a (source_platform, source_track_id) pair onto exactly one Track."""
    __tablename__ = "track_mappings"

    source_platform = Column(String(32), primary_key=True)
    source_track_id = Column(String(255), primary_key=True)
    track_id = Column(Integer, ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        Index("idx_track_mappings_source_track", "source_track_id"),
    )

    def __repr__(self) -> str:
        return f"<TrackMapping({self.source_platform}:{self.source_track_id} -> {self.track_id})>"
