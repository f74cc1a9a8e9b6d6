"""
test_loan_book.py - Unit tests for loan records and day buckets

Tests:
- Loan expiry
- Active loan lookup and lazy pruning
- Bucket add/subtract/move and underflow protection
- Sweep collection and retirement
- Copy independence
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from upledger import Loan, DayBucket, LoanBook, EMPTY_LOAN, InvariantViolation


DAY1 = datetime(2025, 1, 2)
DAY2 = datetime(2025, 1, 3)
DAY5 = datetime(2025, 1, 6)


def make_book() -> LoanBook:
    return LoanBook(sweep_cursor=DAY1)


# ============================================================================
# LOANS
# ============================================================================

class TestLoan:
    """Tests for the Loan record."""

    def test_empty_loan(self):
        assert EMPTY_LOAN.is_empty
        assert not EMPTY_LOAN.is_expired(datetime(2030, 1, 1))

    def test_expired_strictly_after_maturity(self):
        """A loan is not expired at its maturity instant, only after."""
        loan = Loan(Decimal("10"), Decimal("9"), DAY2, 1)
        assert not loan.is_expired(DAY2)
        assert loan.is_expired(DAY2 + timedelta(seconds=1))


class TestLoanLookup:
    """Tests for per-account loan storage."""

    def test_active_loan(self):
        book = make_book()
        loan = Loan(Decimal("10"), Decimal("9"), DAY2, 1)
        book.put_loan("alice", loan)
        assert book.active_loan("alice", DAY1) == loan
        assert book.active_loan("bob", DAY1) is None

    def test_expired_loan_is_not_active_but_kept(self):
        """Expired records stay readable until pruned."""
        book = make_book()
        book.put_loan("alice", Loan(Decimal("10"), Decimal("9"), DAY1, 1))
        later = DAY2
        assert book.active_loan("alice", later) is None
        assert book.get_loan("alice").borrowed == Decimal("9")

    def test_prune_expired(self):
        """Only expired records are pruned."""
        book = make_book()
        book.put_loan("alice", Loan(Decimal("10"), Decimal("9"), DAY1, 1))
        book.put_loan("bob", Loan(Decimal("10"), Decimal("9"), DAY5, 4))
        assert book.prune_expired("alice", DAY2)
        assert not book.prune_expired("bob", DAY2)
        assert book.get_loan("alice") == EMPTY_LOAN
        assert book.get_loan("bob").maturity == DAY5


# ============================================================================
# BUCKETS
# ============================================================================

class TestBuckets:
    """Tests for day-bucket bookkeeping."""

    def test_add_updates_bucket_and_totals(self):
        book = make_book()
        book.add_to_bucket(DAY2, Decimal("99"), Decimal("100"))
        book.add_to_bucket(DAY2, Decimal("1"), Decimal("2"))
        assert book.expiring_on(DAY2) == DayBucket(Decimal("102"), Decimal("100"))
        assert book.total_collateral == Decimal("102")
        assert book.total_borrowed == Decimal("100")

    def test_unknown_day_is_zero(self):
        assert make_book().expiring_on(DAY5) == DayBucket()

    def test_sub_underflow_raises(self):
        """Removing more than a bucket holds is an invariant failure."""
        book = make_book()
        book.add_to_bucket(DAY2, Decimal("5"), Decimal("5"))
        with pytest.raises(InvariantViolation):
            book.sub_from_bucket(DAY2, Decimal("6"), Decimal("0"))

    def test_move_bucket(self):
        """Moving re-files the amounts without touching totals."""
        book = make_book()
        book.add_to_bucket(DAY2, Decimal("9"), Decimal("10"))
        book.move_bucket(DAY2, DAY5, Decimal("9"), Decimal("10"))
        assert book.expiring_on(DAY2) == DayBucket(Decimal("0"), Decimal("0"))
        assert book.expiring_on(DAY5) == DayBucket(Decimal("10"), Decimal("9"))
        assert book.total_borrowed == Decimal("9")


# ============================================================================
# SWEEP
# ============================================================================

class TestSweep:
    """Tests for collect_due and retire."""

    def test_nothing_due(self):
        """With now at the cursor nothing moves."""
        book = make_book()
        result = book.collect_due(DAY1)
        assert result.is_noop
        assert book.sweep_cursor == DAY1

    def test_collects_days_strictly_before_now(self):
        book = make_book()
        book.add_to_bucket(DAY1, Decimal("1"), Decimal("2"))
        book.add_to_bucket(DAY2, Decimal("3"), Decimal("4"))
        book.add_to_bucket(DAY5, Decimal("5"), Decimal("6"))

        result = book.collect_due(DAY2 + timedelta(hours=1))

        assert result.days_processed == 2
        assert result.borrowed == Decimal("4")
        assert result.collateral == Decimal("6")
        assert result.last_day == DAY2
        assert book.sweep_cursor == DAY2 + timedelta(days=1)

    def test_retire_lowers_totals_and_keeps_buckets(self):
        """Swept buckets stay for audit; totals drop."""
        book = make_book()
        book.add_to_bucket(DAY1, Decimal("1"), Decimal("2"))
        book.add_to_bucket(DAY5, Decimal("5"), Decimal("6"))
        book.retire(book.collect_due(DAY2))
        assert book.total_borrowed == Decimal("5")
        assert book.total_collateral == Decimal("6")
        assert book.expiring_on(DAY1) == DayBucket(Decimal("2"), Decimal("1"))
        assert book.outstanding_from_cursor() == DayBucket(Decimal("6"), Decimal("5"))

    def test_second_collect_is_noop(self):
        book = make_book()
        book.add_to_bucket(DAY1, Decimal("1"), Decimal("2"))
        book.retire(book.collect_due(DAY2))
        assert book.collect_due(DAY2).is_noop


class TestCopy:
    """Tests for LoanBook.copy."""

    def test_copy_is_independent(self):
        book = make_book()
        book.add_to_bucket(DAY2, Decimal("1"), Decimal("1"))
        clone = book.copy()
        clone.add_to_bucket(DAY2, Decimal("1"), Decimal("1"))
        clone.put_loan("alice", Loan(Decimal("1"), Decimal("1"), DAY2, 1))
        clone.collect_due(DAY5)

        assert book.total_borrowed == Decimal("1")
        assert book.get_loan("alice") == EMPTY_LOAN
        assert book.sweep_cursor == DAY1
