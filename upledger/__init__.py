"""
upledger - Receipt Issuance and Fixed-Term Lending on a Double-Entry Ledger

A receipt token minted against a reserve asset at a floating rate that can
only rise, with fixed-term loans, one-step leverage and day-bucketed expiry
sweeps. All balances settle on the ledger.

Usage:
    from upledger import (
        Ledger, ReceiptEngine, FixedRateProvider,
        reserve_token, receipt_token,
    )

    ledger = Ledger("main", datetime(2025, 1, 1))
    ledger.register_unit(reserve_token("wS", "Wrapped Sonic"))
    ledger.register_unit(receipt_token("RCPT", "Receipt"))
    for wallet in ("team", "treasury", "alice"):
        ledger.register_wallet(wallet)
    ledger.mint("team", "wS", Decimal("1000"))
    ledger.mint("alice", "wS", Decimal("500"))

    engine = ReceiptEngine(ledger, "wS", "RCPT", owner="team",
                           rates=FixedRateProvider(500))
    engine.set_treasury("team", "treasury")
    engine.start("team", Decimal("1000"), burn_amount=Decimal("1"))

    minted = engine.buy("alice", "alice", Decimal("100"))
    payout = engine.borrow("alice", Decimal("50"), days=30)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    ExecuteResult,
    reserve_token,
    receipt_token,
    SYSTEM_WALLET,
    DEAD_WALLET,
    UNIT_TYPE_RESERVE,
    UNIT_TYPE_RECEIPT,
    TOKEN_DECIMALS,
    BPS_BASE,
    DAYS_PER_YEAR,
    # Errors
    LedgerError,
    UnitNotRegistered,
    WalletNotRegistered,
    EngineError,
    PreconditionViolation,
    DustFeeError,
    MintCapExceeded,
    Unauthorized,
    InvariantViolation,
    ReentrancyError,
    TransferFailed,
)

# Ledger
from .ledger import Ledger

# Arithmetic and calendar
from .fixed_point import (
    to_amount,
    mul_div,
    mul_div_floor,
    mul_div_ceil,
    bps_floor,
    bps_ceil,
    floor_to_midnight,
    next_day_boundary,
    maturity_for,
    whole_days_between,
)

# Pricing
from .pricing import (
    compute_backing,
    unit_price,
    reserve_to_receipt_floor,
    reserve_to_receipt_ceil,
    receipt_to_reserve_floor,
    receipt_to_reserve_ceil,
)

# Loans and interest
from .loan_book import Loan, DayBucket, LoanBook, SweepResult, EMPTY_LOAN
from .interest import InterestRateProvider, FixedRateProvider, compute_interest

# Engine
from .config import EngineConfig, FeeBounds
from .events import (
    EngineEvent,
    Started,
    PriceUpdated,
    Liquidated,
    LoanDataUpdated,
    ParameterChanged,
)
from .engine import ReceiptEngine, ProtocolState
from .pool import ContributionPool, PoolError


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'ExecuteResult', 'reserve_token', 'receipt_token',
    'SYSTEM_WALLET', 'DEAD_WALLET', 'UNIT_TYPE_RESERVE', 'UNIT_TYPE_RECEIPT',
    'TOKEN_DECIMALS', 'BPS_BASE', 'DAYS_PER_YEAR',
    # Errors
    'LedgerError', 'UnitNotRegistered', 'WalletNotRegistered', 'EngineError', 'PreconditionViolation',
    'DustFeeError', 'MintCapExceeded', 'Unauthorized', 'InvariantViolation',
    'ReentrancyError', 'TransferFailed',
    # Ledger
    'Ledger',
    # Arithmetic
    'to_amount', 'mul_div', 'mul_div_floor', 'mul_div_ceil', 'bps_floor', 'bps_ceil',
    'floor_to_midnight', 'next_day_boundary', 'maturity_for', 'whole_days_between',
    # Pricing
    'compute_backing', 'unit_price',
    'reserve_to_receipt_floor', 'reserve_to_receipt_ceil',
    'receipt_to_reserve_floor', 'receipt_to_reserve_ceil',
    # Loans
    'Loan', 'DayBucket', 'LoanBook', 'SweepResult', 'EMPTY_LOAN',
    'InterestRateProvider', 'FixedRateProvider', 'compute_interest',
    # Engine
    'EngineConfig', 'FeeBounds', 'ReceiptEngine', 'ProtocolState',
    'EngineEvent', 'Started', 'PriceUpdated', 'Liquidated', 'LoanDataUpdated', 'ParameterChanged',
    'ContributionPool', 'PoolError',
]
