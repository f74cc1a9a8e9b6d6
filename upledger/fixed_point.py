"""
fixed_point.py - Directed-rounding arithmetic and day-calendar helpers

Every amount the engine computes passes through mul_div(), which evaluates
x * y / z exactly on rational integers and then rounds once to the token
quantum (1e-18) in a caller-chosen direction:

    ROUND_DOWN (floor): the protocol pays out or mints; it keeps the remainder
    ROUND_UP   (ceil):  the protocol collects or requires collateral; it never
                        under-collects

Operands are non-negative, so truncation toward zero is a floor.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Union

from .core import TOKEN_DECIMALS, BPS_BASE


Numeric = Union[Decimal, int, str, float]

_SCALE = 10 ** TOKEN_DECIMALS

ONE_DAY = timedelta(days=1)


def to_amount(value: Numeric) -> Decimal:
    """
    Convert user input to a token amount.

    Floats are converted through str() so 0.1 stays 0.1.

    Raises:
        ValueError: If the value is non-finite, negative, or carries more
                    than TOKEN_DECIMALS fractional digits
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise ValueError(f"Amount must be numeric, got {value!r}")
    else:
        amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite, got {amount}")
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    if amount.as_tuple().exponent < -TOKEN_DECIMALS and amount != amount.quantize(
        Decimal(1).scaleb(-TOKEN_DECIMALS), rounding=ROUND_DOWN
    ):
        raise ValueError(f"Amount {amount} has more than {TOKEN_DECIMALS} decimal places")
    return amount


def mul_div(x: Decimal, y: Decimal, z: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """
    Compute x * y / z at full precision, rounded once to 18 decimal places.

    Args:
        x, y: Non-negative factors
        z: Positive divisor
        rounding: ROUND_DOWN for floor, ROUND_UP for ceil

    Raises:
        ZeroDivisionError: If z is zero
        ValueError: On negative operands or an unsupported rounding mode

    Example:
        mul_div(Decimal("1"), Decimal("2"), Decimal("3"), ROUND_DOWN)
        # Decimal('0.666666666666666666')
        mul_div(Decimal("1"), Decimal("2"), Decimal("3"), ROUND_UP)
        # Decimal('0.666666666666666667')
    """
    if rounding not in (ROUND_DOWN, ROUND_UP):
        raise ValueError(f"Unsupported rounding mode: {rounding}")
    x, y, z = Decimal(x), Decimal(y), Decimal(z)
    if z == 0:
        raise ZeroDivisionError("mul_div divisor is zero")
    if x < 0 or y < 0 or z < 0:
        raise ValueError("mul_div operands must be non-negative")

    xn, xd = x.as_integer_ratio()
    yn, yd = y.as_integer_ratio()
    zn, zd = z.as_integer_ratio()
    numerator = xn * yn * zd * _SCALE
    denominator = xd * yd * zn

    scaled, remainder = divmod(numerator, denominator)
    if rounding == ROUND_UP and remainder:
        scaled += 1
    return Decimal(scaled).scaleb(-TOKEN_DECIMALS)


def mul_div_floor(x: Decimal, y: Decimal, z: Decimal) -> Decimal:
    return mul_div(x, y, z, ROUND_DOWN)


def mul_div_ceil(x: Decimal, y: Decimal, z: Decimal) -> Decimal:
    return mul_div(x, y, z, ROUND_UP)


def bps_floor(amount: Decimal, bps: int) -> Decimal:
    """amount * bps / 10_000, rounded down."""
    return mul_div(amount, Decimal(bps), Decimal(BPS_BASE), ROUND_DOWN)


def bps_ceil(amount: Decimal, bps: int) -> Decimal:
    """amount * bps / 10_000, rounded up."""
    return mul_div(amount, Decimal(bps), Decimal(BPS_BASE), ROUND_UP)


# ============================================================================
# DAY CALENDAR
# ============================================================================

def floor_to_midnight(moment: datetime) -> datetime:
    """Midnight at the start of the calendar day containing moment."""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def next_day_boundary(moment: datetime) -> datetime:
    """
    The first midnight after the calendar day containing moment.

    A moment that is exactly midnight still maps to the following midnight.
    """
    return floor_to_midnight(moment) + ONE_DAY


def maturity_for(now: datetime, days: int) -> datetime:
    """Day-aligned maturity for a loan of `days` taken at `now`."""
    return next_day_boundary(now + timedelta(days=days))


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of complete days from start to end (floor, never negative)."""
    if end <= start:
        return 0
    return (end - start) // ONE_DAY
