"""001: create auctions table

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TABLE auctions (
            id                      VARCHAR(64)     PRIMARY KEY,
            seller_id               VARCHAR(64)     NOT NULL,
            title                   VARCHAR(120)    NOT NULL,
            description             VARCHAR(2000),
            starting_price_cents    BIGINT          NOT NULL,
            bid_increment_cents     BIGINT          NOT NULL,
            current_price_cents     BIGINT          NOT NULL,
            go_live_at              TIMESTAMPTZ     NOT NULL,
            ends_at                 TIMESTAMPTZ     NOT NULL,
            status                  VARCHAR(16)     NOT NULL DEFAULT 'scheduled',
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_auctions_starting_price_gte_0  CHECK (starting_price_cents >= 0),
            CONSTRAINT ck_auctions_increment_gt_0        CHECK (bid_increment_cents > 0),
            CONSTRAINT ck_auctions_price_gte_start       CHECK (current_price_cents >= starting_price_cents),
            CONSTRAINT ck_auctions_window                CHECK (ends_at > go_live_at),
            CONSTRAINT ck_auctions_status CHECK (
                status IN ('scheduled', 'live', 'ended', 'closed')
            )
        );
    """)
    op.execute("CREATE INDEX idx_auctions_status_ends_at ON auctions (status, ends_at);")
    op.execute("CREATE INDEX idx_auctions_status_go_live_at ON auctions (status, go_live_at);")
    op.execute("CREATE INDEX idx_auctions_seller_created ON auctions (seller_id, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_auctions_updated_at
            BEFORE UPDATE ON auctions
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON TABLE auctions IS 'One item per row; current_price_cents only rises, except on reset';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS auctions CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_touch_updated_at();")
