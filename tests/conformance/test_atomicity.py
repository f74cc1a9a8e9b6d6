"""
Atomicity Conformance Tests

INVARIANT: Engine operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every balance, loan, bucket and counter change is applied
        O fails    ⟹ ledger, loan book, protocol state and event log are
                     exactly as before O, including any sweep O performed

INVARIANT: Operations do not nest.

    An operation entered while another is running raises ReentrancyError
    and the outer operation fails as a whole.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from upledger import (
    PreconditionViolation, TransferFailed, ReentrancyError, InvariantViolation,
)
from tests.helpers import (
    make_ledger, make_engine, engine_snapshot, apply_operation, advance,
    ACCOUNTS, OPERATIONS,
)


amounts = st.decimals(min_value=Decimal("1"), max_value=Decimal("3000"), places=4)
operations = st.lists(
    st.tuples(st.sampled_from(OPERATIONS), st.sampled_from(ACCOUNTS), amounts, st.integers(1, 60)),
    min_size=1, max_size=25,
)


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(operations)
    @settings(max_examples=50, deadline=None)
    def test_failed_operations_leave_no_trace(self, ops):
        """
        PROPERTY: Whenever an operation raises, the engine snapshot is unchanged.
        """
        engine = make_engine(make_ledger())
        for kind, account, amount, days in ops:
            if kind == "advance":
                apply_operation(engine, kind, account, amount, days)
                continue
            before = engine_snapshot(engine)
            try:
                apply_operation(engine, kind, account, amount, days)
            except (PreconditionViolation, TransferFailed):
                assert engine_snapshot(engine) == before

    @given(operations)
    @settings(max_examples=30, deadline=None)
    def test_double_entry_always_balances(self, ops):
        """
        PROPERTY: Every unit nets to zero across all wallets after any sequence.
        """
        engine = make_engine(make_ledger())
        for kind, account, amount, days in ops:
            try:
                apply_operation(engine, kind, account, amount, days)
            except (PreconditionViolation, TransferFailed):
                pass
        assert engine.ledger.verify_double_entry()['valid']


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_failure_after_sweep_rolls_back_sweep(self):
        """A late failure undoes the liquidation performed at entry."""
        engine = make_engine(make_ledger())
        engine.borrow("team", Decimal("100"), 1)
        advance(engine.ledger, days=5)
        before = engine_snapshot(engine)

        with pytest.raises(TransferFailed):
            engine.buy("alice", "alice", Decimal("999999"))

        assert engine_snapshot(engine) == before
        assert engine.total_borrowed == Decimal("99")

    def test_bad_rate_rolls_back(self):
        """An invalid rate from the provider aborts the whole borrow."""

        class BrokenRates:
            def get_rate_bps(self, account):
                return -5

        engine = make_engine(make_ledger())
        engine.buy("alice", "alice", Decimal("1000"))
        engine.rates = BrokenRates()
        before = engine_snapshot(engine)

        with pytest.raises(InvariantViolation):
            engine.borrow("alice", Decimal("100"), 30)

        assert engine_snapshot(engine) == before


class TestReentrancy:
    """Nested entry into a mutating operation is refused."""

    class ReentrantRates:
        """Rate provider that calls back into the engine."""

        def __init__(self):
            self.engine = None
            self.calls = 0

        def get_rate_bps(self, account):
            self.calls += 1
            self.engine.buy("bob", "bob", Decimal("10"))
            return 365

    def test_callback_into_engine_rejected(self):
        rates = self.ReentrantRates()
        engine = make_engine(make_ledger(), rates=rates)
        rates.engine = engine
        before = engine_snapshot(engine)

        with pytest.raises(ReentrancyError):
            engine.borrow("team", Decimal("100"), 30)

        assert rates.calls == 1
        assert engine_snapshot(engine) == before

    def test_lock_released_after_failure(self):
        """A refused nested call does not leave the engine locked."""
        rates = self.ReentrantRates()
        engine = make_engine(make_ledger(), rates=rates)
        rates.engine = engine
        with pytest.raises(ReentrancyError):
            engine.borrow("team", Decimal("100"), 30)

        assert engine.buy("alice", "alice", Decimal("10")) == Decimal("9.75")
