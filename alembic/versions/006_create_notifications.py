"""006: create notifications table

Revision ID: 006
Revises: 005
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE notifications (
            id          BIGSERIAL       PRIMARY KEY,
            user_id     VARCHAR(64)     NOT NULL,
            type        VARCHAR(40)     NOT NULL,
            title       VARCHAR(255)    NOT NULL,
            message     TEXT            NOT NULL,
            related_id  VARCHAR(64),
            is_read     BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at  TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_notifications_user ON notifications (user_id, is_read, created_at DESC);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE;")
