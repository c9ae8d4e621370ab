"""add stories and story_segments tables

Revision ID: 0001_stories_and_segments
Revises:
Create Date: 2026-09-02 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from storyloom.db.types import GUID


revision: str = "0001_stories_and_segments"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "stories",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("story_mode", sa.String(length=64), nullable=False),
        sa.Column("target_age", sa.String(length=16), nullable=False, server_default="7-9"),
        sa.Column("story_length", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("story_params", sa.JSON(), nullable=False),
        sa.Column("prepaid_segments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("segment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audio_generation_status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stories_user_id", "stories", ["user_id"], unique=False)
    op.create_index("ix_stories_story_mode", "stories", ["story_mode"], unique=False)
    op.create_index("ix_stories_is_completed", "stories", ["is_completed"], unique=False)
    op.create_index("ix_stories_created_at", "stories", ["created_at"], unique=False)

    op.create_table(
        "story_segments",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("story_id", GUID(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("parent_segment_id", GUID(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("choices", sa.JSON(), nullable=False),
        sa.Column("is_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("generated_by", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("image_prompt", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("audio_url", sa.Text(), nullable=True),
        sa.Column("audio_status", sa.String(length=16), nullable=False, server_default="not_started"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_segment_id"], ["story_segments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_id", "position", name="uq_story_segments_story_position"),
    )
    op.create_index("ix_story_segments_story_id", "story_segments", ["story_id"], unique=False)
    op.create_index("ix_story_segments_created_at", "story_segments", ["created_at"], unique=False)
    op.create_index("ix_story_segments_story_position", "story_segments", ["story_id", "position"], unique=False)
    op.create_index(
        "uq_story_segments_single_root",
        "story_segments",
        ["story_id"],
        unique=True,
        sqlite_where=sa.text("parent_segment_id IS NULL"),
        postgresql_where=sa.text("parent_segment_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_story_segments_single_root", table_name="story_segments")
    op.drop_index("ix_story_segments_story_position", table_name="story_segments")
    op.drop_index("ix_story_segments_created_at", table_name="story_segments")
    op.drop_index("ix_story_segments_story_id", table_name="story_segments")
    op.drop_table("story_segments")
    op.drop_index("ix_stories_created_at", table_name="stories")
    op.drop_index("ix_stories_is_completed", table_name="stories")
    op.drop_index("ix_stories_story_mode", table_name="stories")
    op.drop_index("ix_stories_user_id", table_name="stories")
    op.drop_table("stories")
