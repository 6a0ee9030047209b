"""004: create credential_access table

Revision ID: 004
Revises: 003
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE credential_access (
            id              BIGSERIAL       PRIMARY KEY,
            transaction_id  UUID            NOT NULL REFERENCES transactions(id) ON DELETE CASCADE,
            buyer_id        VARCHAR(64)     NOT NULL,
            accessed_at     TIMESTAMPTZ     NOT NULL,
            expires_at      TIMESTAMPTZ     NOT NULL,
            CONSTRAINT uq_credential_access_transaction UNIQUE (transaction_id),
            CONSTRAINT ck_credential_access_window      CHECK (expires_at > accessed_at)
        );
    """)
    op.execute("CREATE INDEX idx_credential_access_accessed ON credential_access (accessed_at);")
    op.execute("COMMENT ON TABLE credential_access IS 'One credential disclosure window per transaction';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credential_access CASCADE;")
