"""add credit ledger tables

Revision ID: 0002_credit_ledger
Revises: 0001_stories_and_segments
Create Date: 2026-09-05 14:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from storyloom.db.types import GUID


revision: str = "0002_credit_ledger"
down_revision: Union[str, None] = "0001_stories_and_segments"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "credit_accounts",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_table(
        "credit_transactions",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=False),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["credit_accounts.user_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id",
            "reason",
            "reference_id",
            name="uq_credit_transactions_account_reason_reference",
        ),
        sa.UniqueConstraint("account_id", "sequence", name="uq_credit_transactions_account_sequence"),
    )
    op.create_index("ix_credit_transactions_account_id", "credit_transactions", ["account_id"], unique=False)
    op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_credit_transactions_created_at", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_account_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_accounts")
