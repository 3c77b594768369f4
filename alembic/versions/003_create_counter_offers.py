"""003: create counter_offers table

Revision ID: 003
Revises: 002
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE counter_offers (
            id              VARCHAR(64)     PRIMARY KEY,
            auction_id      VARCHAR(64)     NOT NULL REFERENCES auctions (id),
            seller_id       VARCHAR(64)     NOT NULL,
            buyer_id        VARCHAR(64)     NOT NULL,
            amount_cents    BIGINT          NOT NULL,
            status          VARCHAR(16)     NOT NULL DEFAULT 'pending',
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_counter_offers_amount_gt_0 CHECK (amount_cents > 0),
            CONSTRAINT ck_counter_offers_status CHECK (
                status IN ('pending', 'accepted', 'rejected')
            )
        );
    """)
    # At most one open counter offer per auction
    op.execute("""
        CREATE UNIQUE INDEX uq_counter_offers_one_pending
            ON counter_offers (auction_id)
            WHERE status = 'pending';
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS counter_offers CASCADE;")
