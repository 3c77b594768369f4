"""Integer arithmetic utilities for cents-based auction prices.

All prices, increments and bid amounts use int (cents). No float, no Decimal.
"""


def validate_amount(amount_cents: int) -> None:
    """Validate that a bid amount is a positive whole number of cents."""
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValueError(f"Amount must be an integer number of cents, got {amount_cents!r}")
    if amount_cents <= 0:
        raise ValueError(f"Amount must be positive, got {amount_cents}")


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 6500 -> '$65.00', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"
