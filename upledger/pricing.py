"""
pricing.py - Receipt/Reserve Exchange Rate

Pure conversion functions between receipt and reserve units. They take the
two quantities that define the rate explicitly:

    supply  - receipts in circulation
    backing - reserve held by the engine + total outstanding debt

Outstanding debt counts as backing because it is covered by locked
collateral valued at no less than the debt.

Key Formulas:
    receipts = reserve  * supply  / backing
    reserve  = receipts * backing / supply
    price    = backing / supply

Each conversion exists in a floor and a ceil flavour. The caller picks the
direction; the engine pins one per call site.
"""

from __future__ import annotations
from decimal import Decimal

from .core import InvariantViolation
from .fixed_point import mul_div_floor, mul_div_ceil


def compute_backing(reserve_held: Decimal, total_borrowed: Decimal) -> Decimal:
    """Reserve value standing behind the receipt supply."""
    return reserve_held + total_borrowed


def _require_rate(supply: Decimal, backing: Decimal) -> None:
    if supply <= 0 or backing <= 0:
        raise InvariantViolation(
            f"Exchange rate undefined for supply={supply}, backing={backing}"
        )


def reserve_to_receipt_floor(value: Decimal, supply: Decimal, backing: Decimal) -> Decimal:
    """Receipts worth `value` reserve, rounded down (minting to a caller)."""
    _require_rate(supply, backing)
    return mul_div_floor(value, supply, backing)


def reserve_to_receipt_ceil(value: Decimal, supply: Decimal, backing: Decimal) -> Decimal:
    """Receipts worth `value` reserve, rounded up (collateral the protocol requires)."""
    _require_rate(supply, backing)
    return mul_div_ceil(value, supply, backing)


def receipt_to_reserve_floor(value: Decimal, supply: Decimal, backing: Decimal) -> Decimal:
    """Reserve worth `value` receipts, rounded down (paying a caller out)."""
    _require_rate(supply, backing)
    return mul_div_floor(value, backing, supply)


def receipt_to_reserve_ceil(value: Decimal, supply: Decimal, backing: Decimal) -> Decimal:
    """Reserve worth `value` receipts, rounded up."""
    _require_rate(supply, backing)
    return mul_div_ceil(value, backing, supply)


def unit_price(supply: Decimal, backing: Decimal) -> Decimal:
    """
    Reserve value of one receipt, rounded down to the token quantum.

    Raises:
        InvariantViolation: If supply or backing is not positive
    """
    _require_rate(supply, backing)
    return mul_div_floor(backing, Decimal(1), supply)
