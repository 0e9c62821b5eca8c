"""
SQLAlchemy model for the negative cache.
Records that an upstream confirmed it has no lyrics for an identifier.
"""
from sqlalchemy import BigInteger, Column, String

from lyrics_api.models.track import Base


class NegativeMapping(Base):
    """Confirmed absence of lyrics, keyed by (source_platform, source_track_id)."""
    __tablename__ = "negative_mappings"

    source_platform = Column(String(32), primary_key=True)
    source_track_id = Column(String(255), primary_key=True)
    created_at = Column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<NegativeMapping({self.source_platform}:{self.source_track_id} @ {self.created_at})>"
