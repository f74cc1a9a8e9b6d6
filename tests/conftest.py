"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit, conformance and functional tests:
- A funded ledger holding the reserve (wS) and receipt (RCPT) tokens
- A rate provider at 365 bps, so interest is amount * days / 10_000 exactly
- Engines before and after start()
"""

import pytest
from decimal import Decimal

from upledger import FixedRateProvider

from tests.helpers import make_ledger, make_engine


@pytest.fixture
def ledger():
    """Funded ledger at 2025-01-01 00:00."""
    return make_ledger()


@pytest.fixture
def rates():
    """365 bps for everyone."""
    return FixedRateProvider(365)


@pytest.fixture
def unstarted_engine(ledger, rates):
    """Engine with treasury set but trading not yet open."""
    return make_engine(ledger, rates, start=False)


@pytest.fixture
def engine(ledger, rates):
    """Engine started with a 10,000 deposit at price 1 (1 receipt burned)."""
    return make_engine(ledger, rates)


@pytest.fixture
def alice_receipts(engine):
    """Alice buys 1,000 reserve worth of receipts; returns receipts minted."""
    return engine.buy("alice", "alice", Decimal("1000"))
