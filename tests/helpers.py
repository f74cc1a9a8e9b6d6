"""
helpers.py - Shared builders and comparison utilities for engine tests

Importable from any test module (fixtures live in conftest.py):
- make_ledger / make_engine: funded ledger and started engine
- advance: move the logical clock forward
- engine_snapshot / bucket_conservation_holds: state comparison
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from upledger import (
    Ledger, ReceiptEngine, FixedRateProvider, EngineConfig,
    reserve_token, receipt_token, mul_div_floor,
)


START = datetime(2025, 1, 1)
RESERVE = "wS"
RECEIPT = "RCPT"
OWNER = "team"
TREASURY = "treasury"
INITIAL_DEPOSIT = Decimal("10000")
INITIAL_BURN = Decimal("1")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_ledger(initial_time: datetime = START) -> Ledger:
    """Ledger with both tokens, the usual wallets, and reserve funding."""
    ledger = Ledger("test", initial_time, verbose=False, test_mode=True)
    ledger.register_unit(reserve_token(RESERVE, "Wrapped Sonic"))
    ledger.register_unit(receipt_token(RECEIPT, "Receipt"))
    for wallet in (OWNER, TREASURY, "alice", "bob", "carol"):
        ledger.register_wallet(wallet)
    ledger.mint(OWNER, RESERVE, Decimal("100000"))
    ledger.mint("alice", RESERVE, Decimal("10000"))
    ledger.mint("bob", RESERVE, Decimal("10000"))
    ledger.mint("carol", RESERVE, Decimal("10000"))
    return ledger


def make_engine(
    ledger: Ledger,
    rates: FixedRateProvider = None,
    config: EngineConfig = None,
    start: bool = True,
) -> ReceiptEngine:
    """Engine owned by OWNER with TREASURY set, started unless start=False."""
    engine = ReceiptEngine(
        ledger, RESERVE, RECEIPT,
        owner=OWNER,
        rates=rates or FixedRateProvider(365),
        config=config,
        verbose=False,
    )
    engine.set_treasury(OWNER, TREASURY)
    if start:
        engine.start(OWNER, INITIAL_DEPOSIT, burn_amount=INITIAL_BURN)
    return engine


def advance(ledger: Ledger, **delta) -> datetime:
    """Move the ledger clock forward by a timedelta(**delta)."""
    ledger.advance_time(ledger.current_time + timedelta(**delta))
    return ledger.current_time


def engine_snapshot(engine: ReceiptEngine) -> Dict[str, Any]:
    """Everything an engine operation may touch, for before/after comparison."""
    ledger = engine.ledger
    return {
        'balances': {
            wallet: {
                unit: qty for unit, qty in ledger.get_wallet_balances(wallet).items()
                if qty != 0
            }
            for wallet in sorted(ledger.list_wallets())
        },
        'log_length': len(ledger.transaction_log),
        'state': engine.state.__dict__.copy(),
        'loans': dict(engine.book.loans),
        'buckets': dict(engine.book.buckets),
        'totals': (engine.book.total_collateral, engine.book.total_borrowed),
        'cursor': engine.book.sweep_cursor,
        'events': len(engine.events),
    }


def bucket_conservation_holds(engine: ReceiptEngine) -> bool:
    """Buckets from the sweep cursor on add up to the global loan totals."""
    outstanding = engine.book.outstanding_from_cursor()
    return (
        outstanding.collateral == engine.book.total_collateral
        and outstanding.borrowed == engine.book.total_borrowed
    )


# =============================================================================
# RANDOM OPERATION SEQUENCES
# =============================================================================

ACCOUNTS = ("alice", "bob", "carol")

OPERATIONS = (
    "buy", "sell", "borrow", "borrow_more", "remove_collateral", "repay",
    "close_position", "flash_close_position", "extend_loan", "leverage",
    "liquidate", "advance",
)


def apply_operation(engine: ReceiptEngine, kind: str, account: str, amount: Decimal, days: int) -> None:
    """
    Run one engine operation derived from random inputs.

    Amounts are scaled to what the account can plausibly afford; the call
    may still raise PreconditionViolation or TransferFailed, which callers
    treat as an ordinary refusal.
    """
    ledger = engine.ledger
    loan = engine.get_loan(account)
    if kind == "advance":
        advance(ledger, hours=days * 6)
    elif kind == "buy":
        engine.buy(account, account, amount)
    elif kind == "sell":
        engine.sell(account, min(amount, ledger.get_balance(account, RECEIPT)))
    elif kind == "borrow":
        engine.borrow(account, amount / 4, days)
    elif kind == "borrow_more":
        engine.borrow_more(account, amount / 10)
    elif kind == "remove_collateral":
        engine.remove_collateral(account, mul_div_floor(loan.collateral, Decimal(1), Decimal(100)))
    elif kind == "repay":
        engine.repay(account, mul_div_floor(loan.borrowed, Decimal(1), Decimal(2)))
    elif kind == "close_position":
        engine.close_position(account)
    elif kind == "flash_close_position":
        engine.flash_close_position(account)
    elif kind == "extend_loan":
        engine.extend_loan(account, days)
    elif kind == "leverage":
        engine.leverage(account, amount, days)
    elif kind == "liquidate":
        engine.liquidate()
    else:
        raise ValueError(f"Unknown operation {kind}")
