"""006: place_bid() for clients that cannot hold a transaction open

The REST backend reaches it as POST /rpc/place_bid; the raise and the bid row
commit in the function's single transaction.

Revision ID: 006
Revises: 005
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION place_bid(
            p_bid_id        VARCHAR,
            p_auction_id    VARCHAR,
            p_bidder_id     VARCHAR,
            p_amount_cents  BIGINT,
            p_now           TIMESTAMPTZ
        ) RETURNS BOOLEAN
        LANGUAGE plpgsql
        AS $$
        BEGIN
            UPDATE auctions
            SET current_price_cents = p_amount_cents,
                updated_at = p_now
            WHERE id = p_auction_id
              AND status = 'live'
              AND ends_at > p_now
              AND current_price_cents <= p_amount_cents - bid_increment_cents;
            IF NOT FOUND THEN
                RETURN FALSE;
            END IF;
            INSERT INTO bids (id, auction_id, bidder_id, amount_cents, created_at)
            VALUES (p_bid_id, p_auction_id, p_bidder_id, p_amount_cents, p_now);
            RETURN TRUE;
        END;
        $$;
    """)


def downgrade() -> None:
    op.execute(
        "DROP FUNCTION IF EXISTS place_bid(VARCHAR, VARCHAR, VARCHAR, BIGINT, TIMESTAMPTZ);"
    )
