"""
ledger.py - Stateful Double-Entry Token Ledger

The Ledger class holds every token balance the issuance engine settles
against: the reserve asset, the receipt token, and the wallets that hold
them. It is the only module that mutates balances.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes transactions atomically (all moves succeed or all fail)
    - Maintains wallet balances and unit (token) definitions
    - Tracks logical time (forward only)
    - Provides whole-state snapshots (clone/restore) for engine rollback
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any

from .core import (
    # Types
    Move, Transaction, Unit, PendingTransaction,
    ExecuteResult, TransactionOrigin, OriginType,
    Positions, BalanceMap,
    # Constants
    SYSTEM_WALLET, ZERO,
    # Exceptions
    LedgerError, UnitNotRegistered, WalletNotRegistered,
    # Helpers
    build_transaction,
)


class Ledger:
    """
    Double-entry token ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    pure functions that access only read-only methods.

    Design Principles:
        - Always validates: every transaction is checked against registration,
          balance limits and timestamp before anything is applied.
        - Always logs: every applied transaction lands in transaction_log.

    Thread Safety:
        Not thread-safe. The engine serializes all calls.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_unit(reserve_token("wS", "Wrapped Sonic"))
        ledger.register_wallet("alice")
        ledger.mint("alice", "wS", Decimal("1000"))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print registration and execution results (default: True)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_positions(self, unit_symbol: str) -> Positions:
        """Get all non-zero positions for a unit, system wallet included."""
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return {
            wallet: bals[unit_symbol]
            for wallet, bals in self.balances.items()
            if bals.get(unit_symbol, ZERO) != 0
        }

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """Get all balances for a wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Amount of a unit held outside the system wallet.

        The system wallet carries the negative counterpart of everything
        minted, so this is exactly minted minus burned. Wallets are summed
        in sorted order for deterministic accumulation.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, ZERO)
             for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            ZERO,
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every unit's balances sum to zero across all wallets.

        Issuance debits the system wallet, so the signed sum of a unit over
        every wallet (system included) stays at zero as long as balances only
        change through execute(). set_balance() in test mode breaks this.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all units balance
            - 'discrepancies': List[Dict] - unit and non-zero net for each failure
        """
        discrepancies = []
        for unit_symbol in sorted(self.units):
            net = sum(
                (self.balances[w].get(unit_symbol, ZERO) for w in sorted(self.registered_wallets)),
                ZERO,
            )
            if net != 0:
                discrepancies.append({'unit': unit_symbol, 'net': net})
        return {
            'valid': len(discrepancies) == 0,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered or the id is blank
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit (token) in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance for a unit directly.

        WARNING: bypasses double-entry accounting and is only available in
        test mode. Use mint() or execute() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use build_transaction() and execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity

    def mint(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> ExecuteResult:
        """
        Issue new units into a wallet from the system wallet.

        Used to fund wallets with the reserve asset. Receipt issuance goes
        through the engine, which enforces its mint cap.
        """
        tx = build_transaction(
            self,
            [Move(quantity, unit_symbol, SYSTEM_WALLET, wallet_id, f"issue:{wallet_id}")],
            TransactionOrigin(OriginType.SYSTEM, self.name, "issue"),
        )
        return self.execute(tx)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together. Validation covers
        unit and wallet registration, balance constraints and timestamp.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (nothing applied)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)
        self.transaction_log.append(tx)

        if self.verbose:
            print(f"APPLIED: {tx!r}")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Balance constraint validation (min/max balance limits)

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        # Net balance changes per (wallet, unit)
        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, ZERO) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, ZERO) + move.quantity)

        # SYSTEM_WALLET is exempt: it carries the issuance counterpart
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[unit_sym]
            proposed = unit.round(self.balances[wallet][unit_sym] + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        """Apply moves to wallet balances with unit-specific rounding."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            self.balances[move.source][move.unit_symbol] = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        Balances, registrations, the transaction log and the clock are all
        independent of the original. Units and transactions are immutable and
        are shared.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.units = dict(self.units)
        cloned.registered_wallets = self.registered_wallets.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        cloned.balances = {
            wallet: defaultdict(lambda: Decimal("0"), bals)
            for wallet, bals in self.balances.items()
        }
        return cloned

    def restore(self, snapshot: Ledger) -> None:
        """
        Reset this ledger in place to a snapshot taken with clone().

        Callers keep their reference to this ledger; only its contents are
        replaced. The logical clock is left alone since time never rewinds.

        Raises:
            LedgerError: If the snapshot belongs to a different ledger
        """
        if snapshot.name != self.name:
            raise LedgerError(
                f"Cannot restore {self.name} from a snapshot of {snapshot.name}"
            )
        restored = snapshot.clone()
        self.units = restored.units
        self.registered_wallets = restored.registered_wallets
        self.transaction_log = restored.transaction_log
        self._next_sequence = restored._next_sequence
        self.balances = restored.balances
