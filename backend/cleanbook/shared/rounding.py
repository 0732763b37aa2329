from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("1")


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(Decimal(value).to_integral_value(rounding=ROUND_HALF_UP))


def percent_of_cents(cents: int, percent: float) -> int:
    """``percent`` of a cent amount in whole cents (12750 at 15% -> 1913).

    The product is taken in Decimal so an exact half cent is never nudged by float error.
    """
    amount = Decimal(cents) * Decimal(str(percent)) / Decimal(100)
    return int(amount.quantize(CENT, rounding=ROUND_HALF_UP))


def round_decimal(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
