"""005: create disputes, dispute_messages, refunds tables

Revision ID: 005
Revises: 004
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE disputes (
            id                  VARCHAR(64)     PRIMARY KEY,
            transaction_id      UUID            NOT NULL REFERENCES transactions(id),
            buyer_id            VARCHAR(64)     NOT NULL,
            seller_id           VARCHAR(64)     NOT NULL,
            reason              VARCHAR(32)     NOT NULL,
            description         TEXT            NOT NULL,
            evidence_urls       JSONB           NOT NULL DEFAULT '[]'::jsonb,
            status              VARCHAR(20)     NOT NULL DEFAULT 'open',
            resolution          VARCHAR(32),
            refund_percentage   INT,
            notes               TEXT,
            resolved_by         VARCHAR(64),
            auto_resolve_at     TIMESTAMPTZ     NOT NULL,
            resolved_at         TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_disputes_reason       CHECK (
                reason IN ('account_not_received', 'incorrect_account', 'account_banned',
                           'seller_unresponsive', 'other')
            ),
            CONSTRAINT ck_disputes_status       CHECK (
                status IN ('open', 'in_review', 'resolved', 'auto_resolved', 'closed')
            ),
            CONSTRAINT ck_disputes_resolution   CHECK (
                resolution IS NULL OR resolution IN
                    ('refund_buyer', 'in_favor_seller', 'partial_refund', 'auto_resolved')
            ),
            CONSTRAINT ck_disputes_refund_pct   CHECK (
                refund_percentage IS NULL OR refund_percentage BETWEEN 0 AND 100
            ),
            CONSTRAINT ck_disputes_evidence_max CHECK (jsonb_array_length(evidence_urls) <= 5)
        );
    """)
    # At most one non-closed dispute per transaction
    op.execute("""
        CREATE UNIQUE INDEX uq_disputes_transaction_active
        ON disputes (transaction_id)
        WHERE status <> 'closed';
    """)
    op.execute("CREATE INDEX idx_disputes_buyer ON disputes (buyer_id, created_at DESC);")
    op.execute("CREATE INDEX idx_disputes_seller ON disputes (seller_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_disputes_auto_resolve
        ON disputes (auto_resolve_at)
        WHERE status IN ('open', 'in_review');
    """)
    op.execute("""
        CREATE TRIGGER trg_disputes_updated_at
            BEFORE UPDATE ON disputes
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE dispute_messages (
            id              VARCHAR(64)     PRIMARY KEY,
            dispute_id      VARCHAR(64)     NOT NULL REFERENCES disputes(id) ON DELETE CASCADE,
            sender_id       VARCHAR(64)     NOT NULL,
            message         TEXT            NOT NULL,
            attachments     JSONB           NOT NULL DEFAULT '[]'::jsonb,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_dispute_messages_attachments_max CHECK (jsonb_array_length(attachments) <= 3)
        );
    """)
    op.execute("CREATE INDEX idx_dispute_messages_thread ON dispute_messages (dispute_id, created_at);")

    op.execute("""
        CREATE TABLE refunds (
            id                      BIGSERIAL       PRIMARY KEY,
            dispute_id              VARCHAR(64)     NOT NULL REFERENCES disputes(id),
            buyer_id                VARCHAR(64)     NOT NULL,
            seller_id               VARCHAR(64)     NOT NULL,
            buyer_refund_amount     BIGINT          NOT NULL,
            seller_refund_amount    BIGINT          NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'pending',
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_refunds_amounts CHECK (buyer_refund_amount > 0 AND seller_refund_amount >= 0),
            CONSTRAINT ck_refunds_status  CHECK (status IN ('pending', 'completed', 'failed'))
        );
    """)
    op.execute("CREATE INDEX idx_refunds_dispute ON refunds (dispute_id);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS refunds CASCADE;")
    op.execute("DROP TABLE IF EXISTS dispute_messages CASCADE;")
    op.execute("DROP TABLE IF EXISTS disputes CASCADE;")
