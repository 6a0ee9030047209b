"""Integer arithmetic for minor-unit amounts (IDR has no sub-unit).

All prices, fees and refunds are int. No float, no Decimal.
"""


def percent_of_bps(amount: int, bps: int) -> int:
    """Round-half-up share of ``amount`` at ``bps`` basis points.

    percent_of_bps(100_000, 300) == 3000; 50 * 3% = 1.5 -> 2.
    """
    if amount == 0 or bps == 0:
        return 0
    return (amount * bps + 5000) // 10000


def percent_floor(amount: int, percentage: int) -> int:
    """Floor of amount * percentage / 100; refunds never exceed the exact share."""
    return (amount * percentage) // 100


def format_idr(amount: int) -> str:
    """Display string: 94500 -> 'Rp94.500', -2500 -> '-Rp2.500'."""
    sign = "-" if amount < 0 else ""
    return f"{sign}Rp{abs(amount):,}".replace(",", ".")
