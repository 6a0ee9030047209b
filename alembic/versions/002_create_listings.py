"""002: create listings table

Revision ID: 002
Revises: 001
Create Date: 2026-09-14
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE listings (
            id                  UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            seller_id           VARCHAR(64)     NOT NULL,
            account_identifier  VARCHAR(255)    NOT NULL,
            price               BIGINT          NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'active',
            field_values        JSONB           NOT NULL DEFAULT '{}'::jsonb,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            expires_at          TIMESTAMPTZ,
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listings_price_positive CHECK (price > 0),
            CONSTRAINT ck_listings_status         CHECK (
                status IN ('active', 'sold', 'expired', 'deleted')
            )
        );
    """)
    op.execute("CREATE INDEX idx_listings_seller ON listings (seller_id, status);")
    op.execute("""
        CREATE INDEX idx_listings_active_created
        ON listings (created_at)
        WHERE status = 'active';
    """)
    op.execute("""
        CREATE TRIGGER trg_listings_updated_at
            BEFORE UPDATE ON listings
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE listings IS 'Game account postings; CRUD owned by the catalog service, status driven by escrow';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS listings CASCADE;")
