"""
Integer unit arithmetic for money, gold weight, and ratios.

UNITS:
- money: integer cents
- weight: integer milligrams (1 g = 1000 mg)
- ratios and percentages: integer basis points (10000 bps = 100%)
- gold rates: cents per gram

Every division goes through div_round so rounding is uniform: half away
from zero, to the unit of the result.
"""

from __future__ import annotations

MG_PER_GRAM = 1000
BPS_SCALE = 10_000


def div_round(numerator: int, denominator: int) -> int:
    """Integer division rounding half away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("division by zero")
    sign = -1 if (numerator < 0) != (denominator < 0) else 1
    n, d = abs(numerator), abs(denominator)
    q, r = divmod(n, d)
    if r * 2 >= d:
        q += 1
    return sign * q


def percent_of(amount_cents: int, rate_bps: int) -> int:
    return div_round(amount_cents * rate_bps, BPS_SCALE)


def ratio_bps(part: int, whole: int) -> int:
    """part / whole as basis points; 0 when whole is 0."""
    if not whole:
        return 0
    return div_round(part * BPS_SCALE, whole)


def paid_share(weight_mg: int, paid_cents: int, owed_cents: int) -> int:
    """
    Weight covered by paying paid_cents of owed_cents.

    Paying the whole amount (or owing nothing) covers all of weight_mg, so
    the last payment never leaves a rounding remainder unowned.
    """
    if owed_cents <= 0 or paid_cents >= owed_cents:
        return weight_mg
    return div_round(weight_mg * paid_cents, owed_cents)


def gold_value_cents(weight_mg: int, rate_cents_per_gram: int) -> int:
    return div_round(weight_mg * rate_cents_per_gram, MG_PER_GRAM)


def cents_to_str(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole:,}.{frac:02d}"


def mg_to_str(weight_mg: int) -> str:
    sign = "-" if weight_mg < 0 else ""
    whole, frac = divmod(abs(weight_mg), MG_PER_GRAM)
    return f"{sign}{whole}.{frac:03d}g"
