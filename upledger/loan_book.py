"""
loan_book.py - Fixed-Term Loan Records and Day-Bucketed Maturity Ledger

=== LOAN MODEL ===

Every account holds at most one loan:

    Loan(collateral, borrowed, maturity, tenure_days)

    collateral  - receipts locked in engine custody
    borrowed    - reserve owed (already net of the LTV haircut)
    maturity    - midnight at which the loan becomes sweepable
    tenure_days - day counter carried with the loan

A loan whose maturity is in the past is EXPIRED. Expired records are inert:
nothing reads them as active, and they are only deleted lazily, the next
time the owning account opens a new position. The sweep never touches them.

=== DAY BUCKETS ===

Loans maturing on the same midnight are aggregated into one DayBucket.
Buckets are never deleted; swept days stay in the map for audit.

Conservation (checked by outstanding_from_cursor()):

    Σ bucket[d] for d >= sweep_cursor == (total_collateral, total_borrowed)

=== SWEEP ===

collect_due(now) walks the cursor forward one day at a time while
cursor < now and returns the summed bucket values it passed. Applying the
result (burn, forgive debt, lower totals) is left to the engine.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from .core import ZERO, InvariantViolation
from .fixed_point import ONE_DAY


# =============================================================================
# DATA TYPES
# =============================================================================

@dataclass(frozen=True, slots=True)
class Loan:
    """Immutable snapshot of one account's loan."""
    collateral: Decimal = ZERO
    borrowed: Decimal = ZERO
    maturity: Optional[datetime] = None
    tenure_days: int = 0

    @property
    def is_empty(self) -> bool:
        return self.borrowed == 0 and self.collateral == 0

    def is_expired(self, now: datetime) -> bool:
        """True once the maturity midnight has passed."""
        return self.maturity is not None and self.maturity < now


EMPTY_LOAN = Loan()


@dataclass(frozen=True, slots=True)
class DayBucket:
    """Collateral and debt of every loan maturing on one day."""
    collateral: Decimal = ZERO
    borrowed: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class SweepResult:
    """
    Outcome of one sweep pass.

    Attributes:
        collateral: Receipts to burn from custody
        borrowed: Debt to forgive
        last_day: Final bucket day visited (None if nothing was visited)
        days_processed: Number of days the cursor advanced
    """
    collateral: Decimal
    borrowed: Decimal
    last_day: Optional[datetime]
    days_processed: int

    @property
    def is_noop(self) -> bool:
        return self.days_processed == 0


# =============================================================================
# LOAN BOOK
# =============================================================================

class LoanBook:
    """
    Per-account loans plus the day-bucket ledger and global totals.

    Owned by a single engine; every mutation of totals goes through the
    bucket helpers so the two can never drift apart.
    """

    def __init__(self, sweep_cursor: datetime):
        """
        Args:
            sweep_cursor: First day-aligned midnight still to be swept
        """
        self.loans: Dict[str, Loan] = {}
        self.buckets: Dict[datetime, DayBucket] = {}
        self.total_collateral: Decimal = ZERO
        self.total_borrowed: Decimal = ZERO
        self.sweep_cursor: datetime = sweep_cursor

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------

    def get_loan(self, account: str) -> Loan:
        """Stored loan for an account, expired or not (EMPTY_LOAN if none)."""
        return self.loans.get(account, EMPTY_LOAN)

    def active_loan(self, account: str, now: datetime) -> Optional[Loan]:
        """The account's loan if it exists and has not expired."""
        loan = self.loans.get(account)
        if loan is None or loan.is_empty or loan.is_expired(now):
            return None
        return loan

    def put_loan(self, account: str, loan: Loan) -> None:
        self.loans[account] = loan

    def delete_loan(self, account: str) -> None:
        self.loans.pop(account, None)

    def prune_expired(self, account: str, now: datetime) -> bool:
        """
        Delete the account's loan record if it has expired.

        Buckets are left untouched: the expired loan's day has already been
        swept, or will be by the sweep that precedes every operation.

        Returns:
            True if a record was removed
        """
        loan = self.loans.get(account)
        if loan is not None and loan.is_expired(now):
            del self.loans[account]
            return True
        return False

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def expiring_on(self, day: datetime) -> DayBucket:
        """Bucket for one maturity day (zero bucket if none)."""
        return self.buckets.get(day, DayBucket())

    def add_to_bucket(self, maturity: datetime, borrowed: Decimal, collateral: Decimal) -> None:
        bucket = self.expiring_on(maturity)
        self.buckets[maturity] = DayBucket(
            collateral=bucket.collateral + collateral,
            borrowed=bucket.borrowed + borrowed,
        )
        self.total_collateral += collateral
        self.total_borrowed += borrowed

    def sub_from_bucket(self, maturity: datetime, borrowed: Decimal, collateral: Decimal) -> None:
        """
        Remove loan amounts from a maturity day and the global totals.

        Raises:
            InvariantViolation: If the bucket or the totals would go negative
        """
        bucket = self.expiring_on(maturity)
        if bucket.collateral < collateral or bucket.borrowed < borrowed:
            raise InvariantViolation(
                f"Bucket {maturity:%Y-%m-%d} holds {bucket.collateral} collateral / "
                f"{bucket.borrowed} debt, cannot remove {collateral} / {borrowed}"
            )
        if self.total_collateral < collateral or self.total_borrowed < borrowed:
            raise InvariantViolation("Loan totals would go negative")
        self.buckets[maturity] = DayBucket(
            collateral=bucket.collateral - collateral,
            borrowed=bucket.borrowed - borrowed,
        )
        self.total_collateral -= collateral
        self.total_borrowed -= borrowed

    def move_bucket(
        self,
        old_maturity: datetime,
        new_maturity: datetime,
        borrowed: Decimal,
        collateral: Decimal,
    ) -> None:
        """Re-file a loan under a new maturity: remove at old, then add at new."""
        self.sub_from_bucket(old_maturity, borrowed, collateral)
        self.add_to_bucket(new_maturity, borrowed, collateral)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def collect_due(self, now: datetime) -> SweepResult:
        """
        Advance the sweep cursor past every day strictly before `now`.

        Returns the summed bucket values passed over. Buckets themselves are
        retained. With nothing due the cursor does not move and the result
        is all zeros.
        """
        collateral = ZERO
        borrowed = ZERO
        last_day = None
        days = 0
        while self.sweep_cursor < now:
            bucket = self.expiring_on(self.sweep_cursor)
            collateral += bucket.collateral
            borrowed += bucket.borrowed
            last_day = self.sweep_cursor
            self.sweep_cursor += ONE_DAY
            days += 1
        return SweepResult(collateral, borrowed, last_day, days)

    def retire(self, result: SweepResult) -> None:
        """
        Drop swept amounts from the global totals.

        Raises:
            InvariantViolation: If the totals are smaller than the swept sums
        """
        if self.total_collateral < result.collateral or self.total_borrowed < result.borrowed:
            raise InvariantViolation(
                f"Sweep of {result.collateral} collateral / {result.borrowed} debt "
                f"exceeds totals {self.total_collateral} / {self.total_borrowed}"
            )
        self.total_collateral -= result.collateral
        self.total_borrowed -= result.borrowed

    def outstanding_from_cursor(self) -> DayBucket:
        """Sum of every bucket at or after the sweep cursor."""
        collateral = ZERO
        borrowed = ZERO
        for day in sorted(self.buckets):
            if day >= self.sweep_cursor:
                collateral += self.buckets[day].collateral
                borrowed += self.buckets[day].borrowed
        return DayBucket(collateral, borrowed)

    def copy(self) -> LoanBook:
        """Independent copy; Loan and DayBucket values are immutable and shared."""
        cloned = LoanBook(self.sweep_cursor)
        cloned.loans = dict(self.loans)
        cloned.buckets = dict(self.buckets)
        cloned.total_collateral = self.total_collateral
        cloned.total_borrowed = self.total_borrowed
        return cloned


def with_maturity(loan: Loan, maturity: datetime, tenure_days: int) -> Loan:
    """Copy of a loan moved to a new maturity."""
    return replace(loan, maturity=maturity, tenure_days=tenure_days)
