"""
config.py - Engine Parameters and Fee Bounds

EngineConfig is the immutable term sheet of an engine instance: the
haircut, the treasury's cut of every fee, the dust floor, the launch fee
levels, and the bounds the administrative setters enforce afterwards.
Fee levels that change at runtime live in ProtocolState (engine.py); this
dataclass only supplies their starting values.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal

from .core import BPS_BASE, DAYS_PER_YEAR


@dataclass(frozen=True, slots=True)
class FeeBounds:
    """Inclusive basis-point range a fee may be set to."""
    min_bps: int
    max_bps: int

    def __post_init__(self):
        if not 0 <= self.min_bps <= self.max_bps <= BPS_BASE:
            raise ValueError(f"Invalid fee bounds [{self.min_bps}, {self.max_bps}]")

    def contains(self, bps: int) -> bool:
        return self.min_bps <= bps <= self.max_bps


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable engine parameters.

    Attributes:
        ltv_bps: Share of collateral value that may be borrowed (9900 = 99%)
        treasury_share_bps: Treasury's cut of every fee (3000 = 30%)
        min_fee: Dust floor; the treasury cut must exceed it
        buy_fee_bps, sell_fee_bps: Mint/redeem fees at launch
        leverage_fee_bps: Mint fee charged on leverage exposure at launch
        flash_close_fee_bps: Fee on collateral value at flash close at launch
        buy_fee_bounds, sell_fee_bounds, leverage_fee_bounds,
        flash_close_fee_bounds: Ranges enforced by the setters
        max_tenure_days: Longest loan, counted from now
        initial_mint_cap: Cumulative receipt issuance allowed at launch
    """
    ltv_bps: int = 9_900
    treasury_share_bps: int = 3_000
    min_fee: Decimal = Decimal("1e-15")
    buy_fee_bps: int = 250
    sell_fee_bps: int = 250
    leverage_fee_bps: int = 100
    flash_close_fee_bps: int = 100
    buy_fee_bounds: FeeBounds = field(default_factory=lambda: FeeBounds(50, 500))
    sell_fee_bounds: FeeBounds = field(default_factory=lambda: FeeBounds(50, 500))
    leverage_fee_bounds: FeeBounds = field(default_factory=lambda: FeeBounds(0, 250))
    flash_close_fee_bounds: FeeBounds = field(default_factory=lambda: FeeBounds(10, 300))
    max_tenure_days: int = DAYS_PER_YEAR
    initial_mint_cap: Decimal = Decimal("1000000000")

    def __post_init__(self):
        """Coerce Decimal fields and check every launch value against its bounds."""
        if not isinstance(self.min_fee, Decimal):
            object.__setattr__(self, 'min_fee', Decimal(str(self.min_fee)))
        if not isinstance(self.initial_mint_cap, Decimal):
            object.__setattr__(self, 'initial_mint_cap', Decimal(str(self.initial_mint_cap)))

        if not 0 < self.ltv_bps < BPS_BASE:
            raise ValueError(f"ltv_bps must be in (0, {BPS_BASE}), got {self.ltv_bps}")
        if not 0 < self.treasury_share_bps <= BPS_BASE:
            raise ValueError(f"treasury_share_bps must be in (0, {BPS_BASE}], got {self.treasury_share_bps}")
        if self.min_fee < 0:
            raise ValueError("min_fee cannot be negative")
        if not 0 < self.max_tenure_days <= DAYS_PER_YEAR:
            raise ValueError(f"max_tenure_days must be in [1, {DAYS_PER_YEAR}]")
        if self.initial_mint_cap <= 0:
            raise ValueError("initial_mint_cap must be positive")

        for name in ("buy_fee", "sell_fee", "leverage_fee", "flash_close_fee"):
            bps = getattr(self, f"{name}_bps")
            bounds = getattr(self, f"{name}_bounds")
            if not bounds.contains(bps):
                raise ValueError(
                    f"{name}_bps={bps} outside [{bounds.min_bps}, {bounds.max_bps}]"
                )
