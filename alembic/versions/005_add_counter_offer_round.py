"""005: tie each counter offer to the bidding window it was made for

Revision ID: 005
Revises: 004
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TABLE counter_offers ADD COLUMN round_ends_at TIMESTAMPTZ;")
    op.execute("""
        UPDATE counter_offers c
        SET round_ends_at = a.ends_at
        FROM auctions a
        WHERE a.id = c.auction_id;
    """)
    op.execute(
        "COMMENT ON COLUMN counter_offers.round_ends_at IS "
        "'auctions.ends_at when the counter was made; settling requires it unchanged';"
    )


def downgrade() -> None:
    op.execute("ALTER TABLE counter_offers DROP COLUMN IF EXISTS round_ends_at;")
