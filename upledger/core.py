"""
Core types and pure functions for the receipt/reserve settlement ledger.

This module provides the foundational data structures shared by the ledger
and the issuance engine:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the engine's error hierarchy
4. Type aliases: Positions, BalanceMap
5. Unit factories: reserve_token() and receipt_token()

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, getcontext
from enum import Enum
from typing import Dict, List, Set, Optional, Protocol, Tuple, FrozenSet, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Token quantities carry up to 18 fractional digits and balances can reach
# well past 1e12 whole tokens, so the default 28-digit context is too small
# for exact sums. Conversions that multiply and divide do their own exact
# integer arithmetic (see fixed_point.py) and do not depend on this context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 78


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Sink for the permanent burn performed at launch. Balances parked here
# still count towards receipt supply.
DEAD_WALLET = "dead"

UNIT_TYPE_RESERVE = "RESERVE"
UNIT_TYPE_RECEIPT = "RECEIPT"

# Fractional digits carried by every token amount.
TOKEN_DECIMALS = 18

# Denominator for every basis-point parameter.
BPS_BASE = 10_000

DAYS_PER_YEAR = 365

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pricing and quoting functions accept a LedgerView to declare that they
    only read balances and time. The Ledger class implements this protocol
    and additionally exposes mutation methods.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Return the amount of a unit held outside the system wallet."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (registration, balance limits,
              or timestamp) and nothing was applied.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"     # Direct transfer between wallets
    ENGINE = "engine"               # Settlement of an engine operation
    LIQUIDATION = "liquidation"     # Sweep of matured loan buckets
    SYSTEM = "system"               # Issuance, launch and funding


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class EngineError(LedgerError):
    """Base exception for failures raised by the issuance engine."""
    pass


class PreconditionViolation(EngineError):
    """
    Raised when an operation's inputs or the caller's position do not allow it.

    Raised before any mutation; the caller may retry with corrected input.
    """
    pass


class DustFeeError(PreconditionViolation):
    """Raised when the protocol's fee share does not clear the minimum fee."""
    pass


class MintCapExceeded(PreconditionViolation):
    """Raised when a mint would push cumulative issuance past the mint cap."""
    pass


class Unauthorized(PreconditionViolation):
    """Raised when a non-owner calls an administrative setter."""
    pass


class InvariantViolation(EngineError):
    """
    Raised when the post-operation guard fails.

    Signals a rounding defect or an attempted exploit, never a bad input.
    The whole operation is rolled back.
    """
    pass


class ReentrancyError(EngineError):
    """Raised when a mutating entry point is entered while another is running."""
    pass


class TransferFailed(EngineError):
    """Raised when the ledger rejects an operation's settlement transaction."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (engine name, wallet, ...)
        event_type: Operation within the source (e.g., "buy", "liquidate")
    """
    origin_type: OriginType
    source_id: str
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The symbol of the unit being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.

    Minting is a move out of SYSTEM_WALLET, burning a move into it.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: Moves to include in the transaction
        origin: Transaction origin (defaults to a USER_ACTION origin)

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "wS", "alice", "bob", "payment_001")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.USER_ACTION, "user")
    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger balance changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [f"Transaction {self.exec_id} [{self.origin}]"]
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a token (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "wS", "RCPT").
        name: Human-readable name for the unit.
        unit_type: Category of the unit (RESERVE or RECEIPT).
        min_balance: Minimum allowed balance in any wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of fractional digits kept on every balance.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: int = TOKEN_DECIMALS

    def round(self, value: Decimal) -> Decimal:
        """
        Truncate a value to this unit's decimal precision.

        Engine amounts are already quantized, so this only guards against
        raw Decimals handed in from outside.
        """
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(1).scaleb(-self.decimal_places)
        return value.quantize(quantizer, rounding=ROUND_DOWN)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def reserve_token(symbol: str, name: str) -> Unit:
    """
    Create the reserve asset that backs receipts.

    Args:
        symbol: Token symbol (e.g., "wS").
        name: Full name of the token.

    Returns:
        A non-negative, 18-decimal Unit.
    """
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_RESERVE)


def receipt_token(symbol: str, name: str) -> Unit:
    """Create the yield-bearing receipt token minted and burned by the engine."""
    return Unit(symbol=symbol, name=name, unit_type=UNIT_TYPE_RECEIPT)
