"""Base-unit scales for every on-chain field, in one place.

Each scaled field has its own named divisor. Fields that happen to share a
value (safety buffer and LP fee share are both ×100) still get separate
names so a change to one contract field cannot silently change another.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

STABLECOIN_DECIMALS = 6
RATE_DECIMALS = 8
LP_SHARE_DECIMALS = 18

HEALTH_FACTOR_SCALE = 10_000
THRESHOLD_SCALE = 10_000
SAFETY_BUFFER_SCALE = 100
FEE_SHARE_SCALE = 100
DEPRECIATION_SCALE = 100

SECONDS_PER_DAY = 24 * 60 * 60


def to_base_units(amount: str | int | float | Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, truncating extra digits.

    Strings are parsed exactly; floats go through ``repr`` so ``0.1`` stays
    ``0.1`` rather than its binary expansion.
    """
    try:
        value = Decimal(amount if isinstance(amount, (str, Decimal)) else repr(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> float:
    return float(Decimal(int(raw)) / (Decimal(10) ** decimals))


def decode_amount(raw: int) -> float:
    """Stablecoin amount (collateral, debt, balances, LP capital)."""
    return from_base_units(raw, STABLECOIN_DECIMALS)


def encode_amount(amount: str | int | float | Decimal) -> int:
    return to_base_units(amount, STABLECOIN_DECIMALS)


def decode_rate(raw: int) -> float:
    """Exchange rate, USD per unit of the target currency."""
    return from_base_units(raw, RATE_DECIMALS)


def encode_rate(rate: str | int | float | Decimal) -> int:
    return to_base_units(rate, RATE_DECIMALS)


def decode_health_factor(raw: int | float) -> float:
    return raw / HEALTH_FACTOR_SCALE


def encode_health_factor(value: float) -> int:
    return round(value * HEALTH_FACTOR_SCALE)


def decode_threshold(raw: int) -> float:
    return raw / THRESHOLD_SCALE


def decode_safety_buffer(raw: int) -> float:
    """Safety buffer, percent."""
    return raw / SAFETY_BUFFER_SCALE


def decode_fee_share(raw: int) -> float:
    """LP fee share, percent."""
    return raw / FEE_SHARE_SCALE


def decode_depreciation(raw: int) -> float:
    """Depreciation returned by the settlement preview, percent."""
    return raw / DEPRECIATION_SCALE


def decode_lp_shares(raw: int) -> float:
    return from_base_units(raw, LP_SHARE_DECIMALS)


def lock_period_days(seconds: int) -> float:
    return seconds / SECONDS_PER_DAY
