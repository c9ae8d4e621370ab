"""add asset_jobs work queue

Revision ID: 0003_asset_jobs
Revises: 0002_credit_ledger
Create Date: 2026-09-11 09:15:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from storyloom.db.types import GUID


revision: str = "0003_asset_jobs"
down_revision: Union[str, None] = "0002_credit_ledger"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "asset_jobs",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("segment_id", GUID(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["segment_id"], ["story_segments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_asset_jobs_segment_id", "asset_jobs", ["segment_id"], unique=False)
    op.create_index("ix_asset_jobs_status_created", "asset_jobs", ["status", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_asset_jobs_status_created", table_name="asset_jobs")
    op.drop_index("ix_asset_jobs_segment_id", table_name="asset_jobs")
    op.drop_table("asset_jobs")
