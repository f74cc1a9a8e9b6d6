"""
events.py - Structured audit records emitted by the engine

Each mutating engine operation appends one or more of these immutable
records to ReceiptEngine.events. They exist for external audit only; no
engine logic reads them back. Records of an operation that fails are
discarded together with the rest of its effects.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Union


@dataclass(frozen=True, slots=True)
class Started:
    """Trading opened with an initial 1:1 deposit."""
    timestamp: datetime
    account: str
    reserve: Decimal
    burned: Decimal

    def summary(self) -> str:
        return f"started by {self.account}: {self.reserve} reserve, {self.burned} burned"


@dataclass(frozen=True, slots=True)
class PriceUpdated:
    """Guard passed; new unit price and the value the operation captured."""
    timestamp: datetime
    price: Decimal
    captured_value: Decimal

    def summary(self) -> str:
        return f"price {self.price} (captured {self.captured_value})"


@dataclass(frozen=True, slots=True)
class Liquidated:
    """A sweep forgave debt; `day` is the last maturity day it processed."""
    day: datetime
    borrowed: Decimal
    collateral: Decimal

    def summary(self) -> str:
        return f"liquidated through {self.day:%Y-%m-%d}: {self.borrowed} debt, {self.collateral} collateral burned"


@dataclass(frozen=True, slots=True)
class LoanDataUpdated:
    """Aggregate loan totals after a bucket change."""
    timestamp: datetime
    collateral_by_date: Decimal
    borrowed_by_date: Decimal
    total_borrowed: Decimal
    total_collateral: Decimal

    def summary(self) -> str:
        return f"loans: {self.total_borrowed} borrowed / {self.total_collateral} collateral"


@dataclass(frozen=True, slots=True)
class ParameterChanged:
    """An administrative setter changed a protocol parameter."""
    timestamp: datetime
    name: str
    old_value: object
    new_value: object

    def summary(self) -> str:
        return f"{self.name}: {self.old_value!r} -> {self.new_value!r}"


EngineEvent = Union[Started, PriceUpdated, Liquidated, LoanDataUpdated, ParameterChanged]
