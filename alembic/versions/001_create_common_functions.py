"""001: extensions and shared trigger functions

Revision ID: 001
Revises:
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # gen_random_uuid() for listing / transaction primary keys (built in from PG 13)
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    # Every escrow table keeps updated_at current through this trigger
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_update_timestamp()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS fn_update_timestamp() CASCADE;")
