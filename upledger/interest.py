"""
interest.py - Interest-Rate Provider and Up-Front Interest Fee

The engine charges all interest up front, at loan origination or extension,
from an annualized basis-point rate looked up per account:

    interest = principal * rate_bps * days / (10_000 * 365)

rounded up, since it is a payment the protocol collects.

The rate lookup is a collaborator behind the InterestRateProvider protocol.
FixedRateProvider is the in-process implementation: a default rate with
optional per-account overrides, every rate held inside [min_bps, max_bps].
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, Optional, Protocol, runtime_checkable

from .core import BPS_BASE, DAYS_PER_YEAR, ZERO
from .fixed_point import mul_div_ceil


# Bounds applied when a FixedRateProvider is built without explicit ones.
DEFAULT_MIN_RATE_BPS = 100
DEFAULT_MAX_RATE_BPS = 2_000


@runtime_checkable
class InterestRateProvider(Protocol):
    """Synchronous per-account annual rate lookup, in basis points."""

    def get_rate_bps(self, account: str) -> int:
        ...


class FixedRateProvider:
    """
    Bounded per-account rate table.

    Example:
        rates = FixedRateProvider(default_bps=500)
        rates.set_rate("whale", 300)
        rates.get_rate_bps("whale")   # 300
        rates.get_rate_bps("alice")   # 500
    """

    def __init__(
        self,
        default_bps: int,
        overrides: Optional[Dict[str, int]] = None,
        min_bps: int = DEFAULT_MIN_RATE_BPS,
        max_bps: int = DEFAULT_MAX_RATE_BPS,
    ):
        if min_bps < 0 or max_bps < min_bps:
            raise ValueError(f"Invalid rate bounds [{min_bps}, {max_bps}]")
        self.min_bps = min_bps
        self.max_bps = max_bps
        self._check(default_bps)
        self.default_bps = default_bps
        self._overrides: Dict[str, int] = {}
        for account, bps in (overrides or {}).items():
            self.set_rate(account, bps)

    def _check(self, bps: int) -> None:
        if not isinstance(bps, int) or isinstance(bps, bool):
            raise ValueError(f"Rate must be an integer number of basis points, got {bps!r}")
        if not self.min_bps <= bps <= self.max_bps:
            raise ValueError(f"Rate {bps} bps outside [{self.min_bps}, {self.max_bps}]")

    def set_rate(self, account: str, bps: int) -> None:
        self._check(bps)
        self._overrides[account] = bps

    def clear_rate(self, account: str) -> None:
        self._overrides.pop(account, None)

    def get_rate_bps(self, account: str) -> int:
        return self._overrides.get(account, self.default_bps)


def compute_interest(principal: Decimal, rate_bps: int, days: int) -> Decimal:
    """
    Up-front interest for `days` on `principal` at an annual bps rate.

    Example:
        compute_interest(Decimal("1000"), 500, 365)   # Decimal('50')
    """
    if days <= 0 or principal <= 0 or rate_bps <= 0:
        return ZERO
    return mul_div_ceil(
        principal,
        Decimal(rate_bps * days),
        Decimal(BPS_BASE * DAYS_PER_YEAR),
    )
