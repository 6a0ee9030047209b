"""007: disbursement claim marker on transactions

A payout run stamps disbursement_claimed_at before calling the provider and
only then records disbursed_at, so overlapping runs never pay the same row.

Revision ID: 007
Revises: 006
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TABLE transactions ADD COLUMN disbursement_claimed_at TIMESTAMPTZ;")
    # Claimed but never recorded: payout outcome unknown, needs manual review
    op.execute("""
        CREATE INDEX idx_transactions_disbursement_claimed
            ON transactions (disbursement_claimed_at)
            WHERE disbursement_claimed_at IS NOT NULL AND disbursed_at IS NULL;
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_transactions_disbursement_claimed;")
    op.execute("ALTER TABLE transactions DROP COLUMN IF EXISTS disbursement_claimed_at;")
