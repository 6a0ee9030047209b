"""003: create transactions table

Revision ID: 003
Revises: 002
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE transactions (
            id                              UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            buyer_id                        VARCHAR(64)     NOT NULL,
            seller_id                       VARCHAR(64)     NOT NULL,
            listing_id                      UUID            NOT NULL REFERENCES listings(id),
            item_price                      BIGINT          NOT NULL,
            platform_fee_bps                INT             NOT NULL,
            platform_fee_amount             BIGINT          NOT NULL,
            disbursement_fee                BIGINT          NOT NULL,
            total_buyer_paid                BIGINT          NOT NULL,
            seller_received                 BIGINT          NOT NULL,
            status                          VARCHAR(20)     NOT NULL DEFAULT 'pending',
            payment_status                  VARCHAR(20)     NOT NULL DEFAULT 'pending',
            payment_gateway_ref             VARCHAR(128),
            expires_at                      TIMESTAMPTZ,
            credentials_first_accessed_at   TIMESTAMPTZ,
            credentials_expires_at          TIMESTAMPTZ,
            completed_at                    TIMESTAMPTZ,
            disbursed_at                    TIMESTAMPTZ,
            disbursement_ref                VARCHAR(128),
            created_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_transactions_gateway_ref  UNIQUE (payment_gateway_ref),
            CONSTRAINT ck_transactions_no_self_buy  CHECK (buyer_id <> seller_id),
            CONSTRAINT ck_transactions_price        CHECK (item_price > 0),
            CONSTRAINT ck_transactions_total        CHECK (total_buyer_paid >= item_price),
            CONSTRAINT ck_transactions_reconcile    CHECK (
                seller_received + platform_fee_amount + disbursement_fee = item_price
            ),
            CONSTRAINT ck_transactions_status       CHECK (
                status IN ('pending', 'paid', 'processing', 'completed',
                           'disputed', 'refunded', 'cancelled')
            ),
            CONSTRAINT ck_transactions_payment_status CHECK (
                payment_status IN ('pending', 'paid', 'failed', 'expired')
            )
        );
    """)
    # At most one live purchase per listing
    op.execute("""
        CREATE UNIQUE INDEX uq_transactions_listing_active
        ON transactions (listing_id)
        WHERE status IN ('pending', 'paid', 'processing');
    """)
    op.execute("CREATE INDEX idx_transactions_buyer ON transactions (buyer_id, created_at DESC);")
    op.execute("CREATE INDEX idx_transactions_seller ON transactions (seller_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_transactions_pending_expiry
        ON transactions (expires_at)
        WHERE status = 'pending';
    """)
    op.execute("""
        CREATE INDEX idx_transactions_disbursable
        ON transactions (completed_at)
        WHERE status = 'completed' AND disbursed_at IS NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_transactions_updated_at
            BEFORE UPDATE ON transactions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE transactions IS 'Escrow record; fee columns written once at insert';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transactions CASCADE;")
