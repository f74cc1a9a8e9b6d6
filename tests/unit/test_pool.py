"""
test_pool.py - Unit tests for the pre-launch contribution pool

Tests:
- Contributions: window, cap and allowances
- Conversion: once, after the deadline, through engine.buy
- Pro-rata claims rounded down, one per account
"""

import pytest
from datetime import datetime
from decimal import Decimal

from upledger import ContributionPool, PoolError, TransferFailed


DEADLINE = datetime(2025, 1, 10)


@pytest.fixture
def pool(engine):
    return ContributionPool(engine, "presale", cap=Decimal("1000"), deadline=DEADLINE)


@pytest.fixture
def converted(pool, ledger):
    pool.contribute("alice", Decimal("600"))
    pool.contribute("bob", Decimal("300"))
    ledger.advance_time(DEADLINE)
    pool.convert("carol")
    return pool


class TestContribute:
    """Tests for contribute()."""

    def test_contributions_accumulate(self, pool, ledger):
        pool.contribute("alice", Decimal("100"))
        assert pool.contribute("alice", Decimal("50")) == Decimal("150")
        assert pool.total_contributed == Decimal("150")
        assert ledger.get_balance("presale", "wS") == Decimal("150")

    def test_cap_enforced(self, pool):
        pool.contribute("alice", Decimal("900"))
        with pytest.raises(PoolError, match="capacity"):
            pool.contribute("bob", Decimal("200"))
        assert pool.total_contributed == Decimal("900")

    def test_window_closes_at_deadline(self, pool, ledger):
        ledger.advance_time(DEADLINE)
        with pytest.raises(PoolError, match="closed"):
            pool.contribute("alice", Decimal("10"))

    def test_zero_rejected(self, pool):
        with pytest.raises(PoolError):
            pool.contribute("alice", Decimal("0"))

    def test_insufficient_funds(self, pool):
        with pytest.raises(TransferFailed):
            pool.contribute("treasury", Decimal("1"))

    def test_allowances(self, engine):
        pool = ContributionPool(engine, "whitelist", cap=Decimal("1000"), deadline=DEADLINE,
                                allowances={"alice": Decimal("100")})
        pool.contribute("alice", Decimal("60"))
        with pytest.raises(PoolError, match="allowance"):
            pool.contribute("alice", Decimal("50"))
        with pytest.raises(PoolError, match="allowance"):
            pool.contribute("bob", Decimal("1"))


class TestConvert:
    """Tests for convert()."""

    def test_convert_buys_receipts(self, converted, ledger):
        """900 pooled at par buys 877.5 receipts after the 2.5% fee."""
        assert converted.converted
        assert converted.receipts_received == Decimal("877.5")
        assert ledger.get_balance("presale", "RCPT") == Decimal("877.5")
        assert ledger.get_balance("presale", "wS") == Decimal("0")

    def test_convert_before_deadline(self, pool):
        pool.contribute("alice", Decimal("10"))
        with pytest.raises(PoolError, match="still open"):
            pool.convert("alice")

    def test_convert_once(self, converted):
        with pytest.raises(PoolError, match="already converted"):
            converted.convert("alice")

    def test_convert_empty(self, pool, ledger):
        ledger.advance_time(DEADLINE)
        with pytest.raises(PoolError, match="Nothing"):
            pool.convert("alice")


class TestClaim:
    """Tests for claimable() and claim()."""

    def test_pro_rata_shares(self, converted):
        assert converted.claimable("alice") == Decimal("585")
        assert converted.claimable("bob") == Decimal("292.5")
        assert converted.claimable("carol") == Decimal("0")

    def test_claim_transfers_share(self, converted, ledger):
        assert converted.claim("alice") == Decimal("585")
        assert ledger.get_balance("alice", "RCPT") == Decimal("585")
        assert converted.claimable("alice") == Decimal("0")

    def test_claim_once(self, converted):
        converted.claim("bob")
        with pytest.raises(PoolError, match="already claimed"):
            converted.claim("bob")

    def test_claim_before_convert(self, pool):
        pool.contribute("alice", Decimal("10"))
        with pytest.raises(PoolError, match="not been converted"):
            pool.claim("alice")

    def test_non_contributor_cannot_claim(self, converted):
        with pytest.raises(PoolError, match="nothing to claim"):
            converted.claim("carol")

    def test_all_claims_fit_in_pool(self, converted, ledger):
        converted.claim("alice")
        converted.claim("bob")
        assert ledger.get_balance("presale", "RCPT") >= Decimal("0")
