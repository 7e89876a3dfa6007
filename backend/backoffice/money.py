# Overview: Integer-cent arithmetic helpers shared by settlement and credit services.

"""
All monetary amounts are integer cents. Rounding is nearest-cent, half-up,
done with integer arithmetic so no float or Decimal ever touches a balance.
"""

from __future__ import annotations

BPS_DENOMINATOR = 10_000


def div_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -div_half_up(-numerator, denominator)
    return (numerator + (denominator // 2)) // denominator


def apply_rate_bps(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rounded half-up to the cent. Negative bases yield zero."""
    return div_half_up(max(amount_cents, 0) * rate_bps, BPS_DENOMINATOR)


def format_cents(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    units, cents = divmod(abs(amount_cents), 100)
    return f"{sign}{units}.{cents:02d}"
