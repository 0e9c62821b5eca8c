"""Initial schema: tracks, track mappings, lyric blobs and negative mappings.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # tracks
    op.create_table(
        "tracks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_platform", sa.String(32), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("last_accessed_at", sa.BigInteger(), nullable=False),
        sa.Column("last_updated_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("source_platform", "external_id", name="uq_tracks_platform_external"),
    )

    # track_mappings
    op.create_table(
        "track_mappings",
        sa.Column("source_platform", sa.String(32), primary_key=True),
        sa.Column("source_track_id", sa.String(255), primary_key=True),
        sa.Column(
            "track_id",
            sa.Integer(),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index("idx_track_mappings_source_track", "track_mappings", ["source_track_id"])

    # lyrics
    op.create_table(
        "lyrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "track_id",
            sa.Integer(),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("format", sa.String(20), nullable=False),
        sa.Column("blob_key", sa.String(512), nullable=False, unique=True),
    )
    op.create_index("idx_lyrics_track_id", "lyrics", ["track_id"])

    # negative_mappings
    op.create_table(
        "negative_mappings",
        sa.Column("source_platform", sa.String(32), primary_key=True),
        sa.Column("source_track_id", sa.String(255), primary_key=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("negative_mappings")
    op.drop_index("idx_lyrics_track_id", table_name="lyrics")
    op.drop_table("lyrics")
    op.drop_index("idx_track_mappings_source_track", table_name="track_mappings")
    op.drop_table("track_mappings")
    op.drop_table("tracks")
