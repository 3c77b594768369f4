"""002: create bids table

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE bids (
            id              VARCHAR(64)     PRIMARY KEY,
            auction_id      VARCHAR(64)     NOT NULL REFERENCES auctions (id),
            bidder_id       VARCHAR(64)     NOT NULL,
            amount_cents    BIGINT          NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_bids_amount_gt_0 CHECK (amount_cents > 0)
        );
    """)
    op.execute("CREATE INDEX idx_bids_auction_created ON bids (auction_id, created_at DESC);")
    op.execute("CREATE INDEX idx_bids_auction_amount ON bids (auction_id, amount_cents DESC, created_at);")
    op.execute("COMMENT ON TABLE bids IS 'Immutable; one row per accepted bid, written with its price raise';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS bids CASCADE;")
