"""Integer arithmetic utilities for cents-based amounts.

All prices, amounts, and balances use int (cents). No float, no Decimal.
"""


def validate_amount(amount: int) -> None:
    """Validate that an order amount is a positive whole number of cents."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Amount must be a positive number of cents, got {amount!r}")


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 6500 -> '$65.00', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"


def apply_bps(amount: int, bps: int) -> int:
    """Percentage of a non-negative amount in basis points, round-half-up on cents.

    fee = floor(amount * bps / 10000 + 1/2) = (amount * bps + 5000) // 10000
    """
    if amount < 0 or bps < 0:
        raise ValueError(f"amount and bps must be non-negative, got {amount}, {bps}")
    if amount == 0 or bps == 0:
        return 0
    return (amount * bps + 5000) // 10000
