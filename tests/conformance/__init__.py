"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the receipt engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_price_monotonicity.py - Unit price never decreases
2. test_atomicity.py - Failed operations leave ledger, state and loan book untouched
3. test_conservation.py - Day buckets match loan totals; supply and reserve conserved
4. test_idempotency.py - Each maturity day is swept exactly once
5. test_rounding.py - Every rounding direction favors the protocol
6. test_temporal.py - Day-aligned maturities and expiry timing
7. test_determinism.py - Identical operation sequences give identical results

These tests use hypothesis for property-based testing.
"""
