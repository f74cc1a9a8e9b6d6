"""
pool.py - Pre-Launch Contribution Pool

Collects reserve from many accounts up to a cap before a deadline, converts
the whole pot into receipts with a single engine buy, then lets each
contributor claim a pro-rata share (rounded down) of the receipts received.

    pool = ContributionPool(engine, "presale", cap=Decimal("5000"),
                            deadline=datetime(2025, 2, 1))
    pool.contribute("alice", Decimal("100"))
    ...                                   # clock passes the deadline
    pool.convert("anyone")
    pool.claim("alice")
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from .core import (
    Move, TransactionOrigin, OriginType, ExecuteResult, build_transaction,
    ZERO, LedgerError, TransferFailed,
)
from .engine import ReceiptEngine
from .fixed_point import Numeric, to_amount, mul_div_floor


class PoolError(LedgerError):
    """Contribution pool precondition failed."""
    pass


class ContributionPool:
    """Capped, deadline-bound pool that buys receipts once for all contributors."""

    def __init__(
        self,
        engine: ReceiptEngine,
        wallet: str,
        cap: Numeric,
        deadline: datetime,
        allowances: Optional[Dict[str, Numeric]] = None,
    ):
        """
        Args:
            engine: Engine the pooled reserve is converted through
            wallet: Pool wallet id (registered if missing)
            cap: Maximum total reserve accepted
            deadline: Contributions close and conversion opens at this time
            allowances: Optional per-account cumulative contribution limits;
                accounts not listed may not contribute when given
        """
        self.engine = engine
        self.ledger = engine.ledger
        self.wallet = self.ledger.ensure_wallet(wallet)
        self.cap = to_amount(cap)
        if self.cap <= 0:
            raise PoolError("Pool cap must be positive")
        self.deadline = deadline
        self.allowances = (
            {account: to_amount(limit) for account, limit in allowances.items()}
            if allowances is not None else None
        )
        self.contributions: Dict[str, Decimal] = {}
        self.total_contributed: Decimal = ZERO
        self.receipts_received: Decimal = ZERO
        self.converted = False
        self.claimed: Dict[str, Decimal] = {}

    def _transfer(self, unit_symbol: str, quantity: Decimal, source: str, dest: str, action: str) -> None:
        tx = build_transaction(
            self.ledger,
            [Move(quantity, unit_symbol, source, dest, f"{self.wallet}:{action}:{dest}")],
            TransactionOrigin(OriginType.USER_ACTION, self.wallet, action),
        )
        if self.ledger.execute(tx) != ExecuteResult.APPLIED:
            raise TransferFailed(f"{action}: ledger rejected transfer from {source} to {dest}")

    def contribute(self, account: str, amount: Numeric) -> Decimal:
        """
        Move reserve from `account` into the pool.

        Returns:
            The account's cumulative contribution
        """
        amount = to_amount(amount)
        if self.ledger.current_time >= self.deadline:
            raise PoolError("Contribution window has closed")
        if amount <= 0:
            raise PoolError("Contribution must be greater than zero")
        if self.total_contributed + amount > self.cap:
            raise PoolError(
                f"Contribution of {amount} exceeds remaining capacity "
                f"{self.cap - self.total_contributed}"
            )
        cumulative = self.contributions.get(account, ZERO) + amount
        if self.allowances is not None and cumulative > self.allowances.get(account, ZERO):
            raise PoolError(f"{account} would exceed its allowance")

        self._transfer(self.engine.reserve_symbol, amount, account, self.wallet, "contribute")
        self.contributions[account] = cumulative
        self.total_contributed += amount
        return cumulative

    def convert(self, account: str) -> Decimal:
        """
        Buy receipts with everything pooled. Anyone may trigger it, once,
        after the deadline.

        Returns:
            Receipts received by the pool
        """
        if self.ledger.current_time < self.deadline:
            raise PoolError("Contribution window is still open")
        if self.converted:
            raise PoolError("Pool already converted")
        if self.total_contributed <= 0:
            raise PoolError("Nothing to convert")

        self.receipts_received = self.engine.buy(self.wallet, self.wallet, self.total_contributed)
        self.converted = True
        if self.engine.verbose:
            print(f"{self.wallet}: converted {self.total_contributed} for "
                  f"{self.receipts_received} receipts (triggered by {account})")
        return self.receipts_received

    def claimable(self, account: str) -> Decimal:
        if not self.converted or account in self.claimed:
            return ZERO
        contributed = self.contributions.get(account, ZERO)
        if contributed <= 0:
            return ZERO
        return mul_div_floor(contributed, self.receipts_received, self.total_contributed)

    def claim(self, account: str) -> Decimal:
        """Send the account its share of receipts. Each account claims once."""
        if not self.converted:
            raise PoolError("Pool has not been converted yet")
        if account in self.claimed:
            raise PoolError(f"{account} already claimed")
        share = self.claimable(account)
        if share <= 0:
            raise PoolError(f"{account} has nothing to claim")

        self._transfer(self.engine.receipt_symbol, share, self.wallet, account, "claim")
        self.claimed[account] = share
        return share
