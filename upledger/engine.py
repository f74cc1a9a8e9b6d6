"""
engine.py - Receipt Issuance and Fixed-Term Lending Engine

ReceiptEngine issues a yield-bearing receipt token against a reserve token
at a floating exchange rate, and lends reserve against receipt collateral
on fixed day-aligned terms. All balances settle on a Ledger.

Every mutating entry point follows the same shape:

    1. enter the operation scope (non-reentrant, snapshot for rollback)
    2. sweep matured loan buckets
    3. compute amounts with pinned rounding and update the loan book
    4. settle all token moves in one ledger transaction
    5. run the guard: custody >= tracked collateral, price never decreases

Any exception inside the scope restores the ledger, the protocol state,
the loan book and the event log to their values at entry.

Example:
    ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
    ledger.register_unit(reserve_token("wS", "Wrapped Sonic"))
    ledger.register_unit(receipt_token("RCPT", "Receipt"))
    for w in ("team", "treasury", "alice"):
        ledger.register_wallet(w)
    ledger.mint("team", "wS", Decimal("1000"))

    engine = ReceiptEngine(ledger, "wS", "RCPT", owner="team",
                           rates=FixedRateProvider(500))
    engine.set_treasury("team", "treasury")
    engine.start("team", Decimal("1000"), burn_amount=Decimal("1"))
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple

from .config import EngineConfig, FeeBounds
from .core import (
    Move, TransactionOrigin, OriginType, ExecuteResult, build_transaction,
    SYSTEM_WALLET, DEAD_WALLET, BPS_BASE, ZERO,
    WalletNotRegistered, PreconditionViolation, DustFeeError, MintCapExceeded,
    Unauthorized, InvariantViolation, ReentrancyError, TransferFailed,
)
from .events import (
    EngineEvent, Started, PriceUpdated, Liquidated, LoanDataUpdated, ParameterChanged,
)
from .fixed_point import (
    Numeric, to_amount, bps_floor, bps_ceil,
    maturity_for, next_day_boundary, whole_days_between,
)
from .interest import InterestRateProvider, compute_interest
from .ledger import Ledger
from .loan_book import Loan, DayBucket, LoanBook, SweepResult, with_maturity
from .pricing import (
    compute_backing, unit_price,
    reserve_to_receipt_floor, reserve_to_receipt_ceil,
    receipt_to_reserve_floor, receipt_to_reserve_ceil,
)


# (quantity, unit_symbol, source, dest)
Leg = Tuple[Decimal, str, str, str]


@dataclass
class ProtocolState:
    """Mutable protocol-wide counters and parameters owned by one engine."""
    owner: str
    mint_cap: Decimal
    buy_fee_bps: int
    sell_fee_bps: int
    leverage_fee_bps: int
    flash_close_fee_bps: int
    treasury: Optional[str] = None
    master_minter: Optional[str] = None
    started: bool = False
    total_minted: Decimal = ZERO
    last_price: Decimal = ZERO


class ReceiptEngine:
    """
    Pricing and loan-accounting engine for one receipt/reserve pair.

    The engine owns a custody wallet on the ledger holding the reserve
    (backing) and the receipts locked as loan collateral. It is the only
    minter and burner of the receipt token.

    Thread Safety:
        Not thread-safe. Calls are expected to be serialized by the host;
        nested calls into a mutating entry point raise ReentrancyError.
    """

    def __init__(
        self,
        ledger: Ledger,
        reserve_symbol: str,
        receipt_symbol: str,
        owner: str,
        rates: InterestRateProvider,
        config: Optional[EngineConfig] = None,
        wallet: str = "engine",
        name: str = "engine",
        verbose: Optional[bool] = None,
    ):
        """
        Args:
            ledger: Ledger holding both tokens
            reserve_symbol: Registered reserve unit
            receipt_symbol: Registered receipt unit
            owner: Wallet allowed to call administrative setters
            rates: Interest-rate collaborator
            config: Engine parameters (defaults to EngineConfig())
            wallet: Custody wallet id (registered if missing)
            name: Identifier used in transaction origins and contract ids
            verbose: Print audit records (defaults to ledger.verbose)
        """
        ledger.get_unit(reserve_symbol)
        ledger.get_unit(receipt_symbol)
        self.ledger = ledger
        self.reserve_symbol = reserve_symbol
        self.receipt_symbol = receipt_symbol
        self.rates = rates
        self.config = config or EngineConfig()
        self.wallet = ledger.ensure_wallet(wallet)
        ledger.ensure_wallet(DEAD_WALLET)
        self.name = name
        self.verbose = ledger.verbose if verbose is None else verbose

        self.state = ProtocolState(
            owner=owner,
            mint_cap=self.config.initial_mint_cap,
            buy_fee_bps=self.config.buy_fee_bps,
            sell_fee_bps=self.config.sell_fee_bps,
            leverage_fee_bps=self.config.leverage_fee_bps,
            flash_close_fee_bps=self.config.flash_close_fee_bps,
        )
        self.book = LoanBook(next_day_boundary(ledger.current_time))
        self.events: List[EngineEvent] = []

        self._locked = False
        self._op_counter = 0
        self._op_id = f"{self.name}:init"

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    @property
    def now(self) -> datetime:
        return self.ledger.current_time

    @property
    def total_borrowed(self) -> Decimal:
        return self.book.total_borrowed

    @property
    def total_collateral(self) -> Decimal:
        return self.book.total_collateral

    def reserve_held(self) -> Decimal:
        """Reserve in engine custody."""
        return self.ledger.get_balance(self.wallet, self.reserve_symbol)

    def receipt_supply(self) -> Decimal:
        return self.ledger.total_supply(self.receipt_symbol)

    def backing(self) -> Decimal:
        return compute_backing(self.reserve_held(), self.book.total_borrowed)

    def price(self) -> Decimal:
        """Reserve value of one receipt, rounded down."""
        return unit_price(self.receipt_supply(), self.backing())

    def get_loan(self, account: str) -> Loan:
        """Stored loan record, including an expired one not yet pruned."""
        return self.book.get_loan(account)

    def is_loan_expired(self, account: str) -> bool:
        return self.book.get_loan(account).is_expired(self.now)

    def get_loans_expiring_by_date(self, day: datetime) -> DayBucket:
        return self.book.expiring_on(day)

    def interest_fee(self, account: str, amount: Numeric, days: int) -> Decimal:
        """Up-front interest `account` would pay to borrow `amount` for `days`."""
        return self._interest(account, to_amount(amount), days)

    def leverage_fee(self, account: str, exposure: Numeric, days: int) -> Decimal:
        """Mint fee plus full-tenor interest charged by leverage()."""
        exposure = to_amount(exposure)
        return bps_ceil(exposure, self.state.leverage_fee_bps) + self._interest(account, exposure, days)

    def quote_buy(self, reserve_in: Numeric) -> Decimal:
        """Receipts buy() would mint for `reserve_in`, ignoring any pending sweep."""
        gross = reserve_to_receipt_floor(to_amount(reserve_in), self.receipt_supply(), self.backing())
        return bps_floor(gross, BPS_BASE - self.state.buy_fee_bps)

    def quote_sell(self, receipt_in: Numeric) -> Decimal:
        """Reserve sell() would pay for `receipt_in`, ignoring any pending sweep."""
        gross = receipt_to_reserve_floor(to_amount(receipt_in), self.receipt_supply(), self.backing())
        return gross - bps_ceil(gross, self.state.sell_fee_bps)

    # ========================================================================
    # OPERATION SCOPE
    # ========================================================================

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        """
        Non-reentrant, all-or-nothing scope around one mutating entry point.

        Raises:
            ReentrancyError: If another operation is already running
        """
        if self._locked:
            raise ReentrancyError(f"{name}: another engine operation is in progress")
        self._locked = True
        ledger_snapshot = self.ledger.clone()
        state_snapshot = replace(self.state)
        book_snapshot = self.book.copy()
        events_mark = len(self.events)
        self._op_counter += 1
        self._op_id = f"{self.name}:{name}:{self._op_counter}"
        try:
            yield
        except BaseException:
            self.ledger.restore(ledger_snapshot)
            self.state = state_snapshot
            self.book = book_snapshot
            del self.events[events_mark:]
            if self.verbose:
                print(f"REVERTED: {self._op_id}")
            raise
        finally:
            self._locked = False
        if self.verbose:
            for event in self.events[events_mark:]:
                print(f"[{self._op_id}] {event.summary()}")

    def _emit(self, event: EngineEvent) -> None:
        self.events.append(event)

    def _reserve(self, quantity: Decimal, source: str, dest: str) -> Leg:
        return (quantity, self.reserve_symbol, source, dest)

    def _receipt(self, quantity: Decimal, source: str, dest: str) -> Leg:
        return (quantity, self.receipt_symbol, source, dest)

    def _settle(
        self,
        legs: List[Leg],
        event_type: str,
        origin_type: OriginType = OriginType.ENGINE,
    ) -> None:
        """
        Execute an operation's token legs as one ledger transaction.

        Zero-quantity legs are dropped.

        Raises:
            TransferFailed: If the ledger rejects the transaction
        """
        moves = [
            Move(quantity, unit, source, dest, self._op_id)
            for quantity, unit, source, dest in legs
            if quantity > 0
        ]
        if not moves:
            return
        tx = build_transaction(
            self.ledger, moves,
            TransactionOrigin(origin_type, self.name, event_type),
        )
        if self.ledger.execute(tx) != ExecuteResult.APPLIED:
            raise TransferFailed(f"{event_type}: ledger rejected settlement {self._op_id}")

    # ========================================================================
    # PRECONDITIONS AND SHARED CALCULATIONS
    # ========================================================================

    def _require_started(self) -> None:
        if not self.state.started:
            raise PreconditionViolation("Trading has not started")

    def _require_wallet(self, account: str) -> None:
        if not account or not account.strip():
            raise PreconditionViolation("Account cannot be empty")
        if account in (SYSTEM_WALLET, DEAD_WALLET, self.wallet):
            raise PreconditionViolation(f"{account} is a reserved wallet")
        if not self.ledger.is_registered(account):
            raise WalletNotRegistered(f"Wallet {account} not registered")

    @staticmethod
    def _require_positive(amount: Decimal, what: str) -> None:
        if amount <= 0:
            raise PreconditionViolation(f"{what} must be greater than zero")

    def _require_tenure(self, days: int) -> None:
        if not isinstance(days, int) or isinstance(days, bool):
            raise PreconditionViolation(f"Tenure must be a whole number of days, got {days!r}")
        if not 1 <= days <= self.config.max_tenure_days:
            raise PreconditionViolation(
                f"Tenure must be between 1 and {self.config.max_tenure_days} days, got {days}"
            )

    def _require_owner(self, account: str) -> None:
        if account != self.state.owner:
            raise Unauthorized(f"{account} is not the owner")

    def _require_active_loan(self, account: str) -> Loan:
        loan = self.book.active_loan(account, self.now)
        if loan is None:
            raise PreconditionViolation(f"{account} has no active loan")
        return loan

    def _claim_loan_slot(self, account: str) -> None:
        """Lazily delete an expired loan, then require that none is active."""
        self.book.prune_expired(account, self.now)
        if self.book.active_loan(account, self.now) is not None:
            raise PreconditionViolation(f"{account} already has an active loan")

    def _treasury_cut(self, fee: Decimal) -> Decimal:
        """
        Treasury's share of a fee, rounded down.

        Raises:
            DustFeeError: If the share does not exceed the dust floor
        """
        cut = bps_floor(fee, self.config.treasury_share_bps)
        if cut <= self.config.min_fee:
            raise DustFeeError(f"Fee share {cut} must exceed minimum {self.config.min_fee}")
        return cut

    def _interest(self, account: str, principal: Decimal, days: int) -> Decimal:
        rate = self.rates.get_rate_bps(account)
        if not isinstance(rate, int) or isinstance(rate, bool) or rate < 0:
            raise InvariantViolation(f"Rate provider returned invalid rate {rate!r} for {account}")
        return compute_interest(principal, rate, days)

    def _record_mint(self, amount: Decimal, account: Optional[str] = None) -> None:
        """
        Count `amount` against the mint cap.

        The master minter never fails the cap check; the cap is raised to
        fit its mint instead.

        Raises:
            MintCapExceeded: If cumulative issuance would pass the cap
        """
        minted = self.state.total_minted + amount
        if minted > self.state.mint_cap:
            if account is None or account != self.state.master_minter:
                raise MintCapExceeded(
                    f"Minting {amount} would exceed cap {self.state.mint_cap} "
                    f"({self.state.total_minted} already minted)"
                )
            self.state.mint_cap = minted
        self.state.total_minted = minted

    def _add_loan(self, maturity: datetime, borrowed: Decimal, collateral: Decimal) -> None:
        self.book.add_to_bucket(maturity, borrowed, collateral)
        self._emit_loan_data(maturity)

    def _sub_loan(self, maturity: datetime, borrowed: Decimal, collateral: Decimal) -> None:
        self.book.sub_from_bucket(maturity, borrowed, collateral)
        self._emit_loan_data(maturity)

    def _emit_loan_data(self, maturity: datetime) -> None:
        bucket = self.book.expiring_on(maturity)
        self._emit(LoanDataUpdated(
            timestamp=self.now,
            collateral_by_date=bucket.collateral,
            borrowed_by_date=bucket.borrowed,
            total_borrowed=self.book.total_borrowed,
            total_collateral=self.book.total_collateral,
        ))

    # ========================================================================
    # LIQUIDATION SWEEP AND GUARD
    # ========================================================================

    def _sweep(self) -> SweepResult:
        """Retire every bucket that matured before now."""
        result = self.book.collect_due(self.now)
        if result.is_noop:
            return result
        self.book.retire(result)
        self._settle(
            [self._receipt(result.collateral, self.wallet, SYSTEM_WALLET)],
            "liquidate",
            OriginType.LIQUIDATION,
        )
        if result.borrowed > 0:
            self._emit(Liquidated(result.last_day, result.borrowed, result.collateral))
        return result

    def _guard(self, captured_value: Decimal) -> None:
        """
        Post-operation invariants, in order:
            custody receipts >= tracked collateral
            unit price >= last recorded price

        Raises:
            InvariantViolation: If either check fails
        """
        custody = self.ledger.get_balance(self.wallet, self.receipt_symbol)
        if custody < self.book.total_collateral:
            raise InvariantViolation(
                f"Custody {custody} below tracked collateral {self.book.total_collateral}"
            )
        new_price = self.price()
        if new_price < self.state.last_price:
            raise InvariantViolation(
                f"Price would decrease from {self.state.last_price} to {new_price}"
            )
        self.state.last_price = new_price
        self._emit(PriceUpdated(self.now, new_price, captured_value))

    def liquidate(self) -> SweepResult:
        """
        Sweep matured loan buckets. Safe to call at any time by anyone.

        With nothing due this changes nothing, not even the price record.
        """
        with self._operation("liquidate"):
            result = self._sweep()
            if not result.is_noop and self.state.started:
                self._guard(ZERO)
            return result

    # ========================================================================
    # MINT / REDEEM
    # ========================================================================

    def buy(self, account: str, receiver: str, reserve_in: Numeric) -> Decimal:
        """
        Deposit reserve from `account` and mint receipts to `receiver`.

        Returns:
            Receipts minted, net of the buy fee
        """
        reserve_in = to_amount(reserve_in)
        with self._operation("buy"):
            self._require_started()
            self._require_wallet(receiver)
            self._require_wallet(account)
            self._require_positive(reserve_in, "Buy amount")
            self._sweep()

            gross = reserve_to_receipt_floor(reserve_in, self.receipt_supply(), self.backing())
            minted = bps_floor(gross, BPS_BASE - self.state.buy_fee_bps)
            fee = bps_ceil(reserve_in, self.state.buy_fee_bps)
            treasury_fee = self._treasury_cut(fee)
            self._require_positive(minted, "Receipts minted")
            self._record_mint(minted, account)

            self._settle([
                self._reserve(reserve_in, account, self.wallet),
                self._receipt(minted, SYSTEM_WALLET, receiver),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "buy")
            self._guard(reserve_in)
            return minted

    def sell(self, account: str, receipt_in: Numeric) -> Decimal:
        """
        Burn `receipt_in` receipts from `account` and pay out reserve.

        Returns:
            Reserve paid to the account, net of the sell fee
        """
        receipt_in = to_amount(receipt_in)
        with self._operation("sell"):
            self._require_started()
            self._require_wallet(account)
            self._require_positive(receipt_in, "Sell amount")
            self._sweep()

            gross = receipt_to_reserve_floor(receipt_in, self.receipt_supply(), self.backing())
            fee = bps_ceil(gross, self.state.sell_fee_bps)
            treasury_fee = self._treasury_cut(fee)
            payout = gross - fee

            self._settle([
                self._receipt(receipt_in, account, SYSTEM_WALLET),
                self._reserve(payout, self.wallet, account),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "sell")
            self._guard(gross)
            return payout

    # ========================================================================
    # LOANS
    # ========================================================================

    def borrow(self, account: str, amount: Numeric, days: int) -> Decimal:
        """
        Open a loan of `amount` reserve for `days`, locking receipt collateral.

        Collateral is the receipt value of the full amount, rounded up; the
        posted debt is the amount after the LTV haircut; interest for the
        whole tenure is withheld from the payout.

        Returns:
            Reserve paid to the account (posted debt minus interest)
        """
        amount = to_amount(amount)
        with self._operation("borrow"):
            self._require_started()
            self._require_wallet(account)
            self._require_tenure(days)
            self._require_positive(amount, "Borrow amount")
            self._sweep()
            self._claim_loan_slot(account)

            maturity = maturity_for(self.now, days)
            interest = self._interest(account, amount, days)
            treasury_fee = self._treasury_cut(interest)
            collateral = reserve_to_receipt_ceil(amount, self.receipt_supply(), self.backing())
            borrowed = bps_floor(amount, self.config.ltv_bps)
            payout = borrowed - interest
            self._require_positive(payout, "Borrow payout")

            self.book.put_loan(account, Loan(collateral, borrowed, maturity, days))
            self._add_loan(maturity, borrowed, collateral)

            self._settle([
                self._receipt(collateral, account, self.wallet),
                self._reserve(payout, self.wallet, account),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "borrow")
            self._guard(interest)
            return payout

    def borrow_more(self, account: str, amount: Numeric) -> Decimal:
        """
        Add `amount` to an active loan, keeping its maturity.

        Free collateral (value at LTV above the current debt) is consumed
        first; only the deficit is pulled from the account. Interest covers
        the remaining whole days only, and the loan's tenure counter is set
        to that remainder.

        Returns:
            Reserve paid to the account
        """
        amount = to_amount(amount)
        with self._operation("borrow_more"):
            self._require_started()
            self._require_wallet(account)
            self._require_positive(amount, "Borrow amount")
            self._sweep()
            loan = self._require_active_loan(account)

            remaining_days = whole_days_between(next_day_boundary(self.now), loan.maturity)
            interest = self._interest(account, amount, remaining_days)
            treasury_fee = self._treasury_cut(interest)

            supply, backing = self.receipt_supply(), self.backing()
            required = reserve_to_receipt_ceil(amount, supply, backing)
            debt_in_receipts = reserve_to_receipt_floor(loan.borrowed, supply, backing)
            headroom = bps_floor(loan.collateral, self.config.ltv_bps) - debt_in_receipts
            deficit = max(ZERO, required - headroom)

            new_debt = bps_floor(amount, self.config.ltv_bps)
            payout = new_debt - interest
            self._require_positive(payout, "Borrow payout")

            self.book.put_loan(account, Loan(
                collateral=loan.collateral + deficit,
                borrowed=loan.borrowed + new_debt,
                maturity=loan.maturity,
                tenure_days=remaining_days,
            ))
            self._add_loan(loan.maturity, new_debt, deficit)

            self._settle([
                self._receipt(deficit, account, self.wallet),
                self._reserve(payout, self.wallet, account),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "borrow_more")
            self._guard(interest)
            return payout

    def remove_collateral(self, account: str, amount: Numeric) -> None:
        """Withdraw collateral the loan does not need at the LTV ratio."""
        amount = to_amount(amount)
        with self._operation("remove_collateral"):
            self._require_wallet(account)
            self._require_positive(amount, "Collateral amount")
            self._sweep()
            loan = self._require_active_loan(account)
            if amount > loan.collateral:
                raise PreconditionViolation(
                    f"Cannot remove {amount}, loan holds {loan.collateral} collateral"
                )

            remaining = loan.collateral - amount
            remaining_value = (
                receipt_to_reserve_floor(remaining, self.receipt_supply(), self.backing())
                if remaining > 0 else ZERO
            )
            if loan.borrowed > bps_floor(remaining_value, self.config.ltv_bps):
                raise PreconditionViolation(
                    f"Remaining collateral worth {remaining_value} does not cover "
                    f"debt {loan.borrowed} at LTV"
                )

            self.book.put_loan(account, replace(loan, collateral=remaining))
            self._sub_loan(loan.maturity, ZERO, amount)

            self._settle([self._receipt(amount, self.wallet, account)], "remove_collateral")
            self._guard(ZERO)

    def repay(self, account: str, amount: Numeric) -> None:
        """
        Pay down part of an active loan's debt.

        Full repayment goes through close_position().
        """
        amount = to_amount(amount)
        with self._operation("repay"):
            self._require_wallet(account)
            self._require_positive(amount, "Repay amount")
            self._sweep()
            loan = self._require_active_loan(account)
            if amount >= loan.borrowed:
                raise PreconditionViolation(
                    f"Repay amount {amount} must be less than debt {loan.borrowed}; "
                    f"use close_position to repay in full"
                )

            self.book.put_loan(account, replace(loan, borrowed=loan.borrowed - amount))
            self._sub_loan(loan.maturity, amount, ZERO)

            self._settle([self._reserve(amount, account, self.wallet)], "repay")
            self._guard(ZERO)

    def close_position(self, account: str) -> Decimal:
        """
        Repay the full debt and take back all collateral.

        Returns:
            Collateral returned to the account
        """
        with self._operation("close_position"):
            self._require_wallet(account)
            self._sweep()
            loan = self._require_active_loan(account)

            self.book.delete_loan(account)
            self._sub_loan(loan.maturity, loan.borrowed, loan.collateral)

            self._settle([
                self._reserve(loan.borrowed, account, self.wallet),
                self._receipt(loan.collateral, self.wallet, account),
            ], "close_position")
            self._guard(ZERO)
            return loan.collateral

    def flash_close_position(self, account: str) -> Decimal:
        """
        Close a loan by burning its collateral against the debt.

        The collateral is valued at the current rate (rounded up) less the
        flash-close fee; whatever exceeds the debt is paid to the account.
        If the net value falls short of the debt nothing happens.

        Returns:
            Reserve surplus paid to the account
        """
        with self._operation("flash_close_position"):
            self._require_wallet(account)
            self._sweep()
            loan = self._require_active_loan(account)

            value = receipt_to_reserve_ceil(loan.collateral, self.receipt_supply(), self.backing())
            fee = bps_ceil(value, self.state.flash_close_fee_bps)
            net = value - fee
            if net < loan.borrowed:
                raise PreconditionViolation(
                    f"Collateral worth {net} after fee does not cover debt {loan.borrowed}"
                )
            surplus = net - loan.borrowed
            treasury_fee = self._treasury_cut(fee)

            self.book.delete_loan(account)
            self._sub_loan(loan.maturity, loan.borrowed, loan.collateral)

            self._settle([
                self._receipt(loan.collateral, self.wallet, SYSTEM_WALLET),
                self._reserve(surplus, self.wallet, account),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "flash_close_position")
            self._guard(loan.borrowed)
            return surplus

    def extend_loan(self, account: str, days: int) -> Decimal:
        """
        Push an active loan's maturity out by `days`, paying interest up front.

        The new maturity may not sit 366 or more whole days from now.

        Returns:
            Interest fee charged
        """
        with self._operation("extend_loan"):
            self._require_wallet(account)
            if not isinstance(days, int) or isinstance(days, bool) or days < 1:
                raise PreconditionViolation(f"Extension must be at least one whole day, got {days!r}")
            self._sweep()
            loan = self._require_active_loan(account)

            new_maturity = loan.maturity + timedelta(days=days)
            if whole_days_between(self.now, new_maturity) > self.config.max_tenure_days:
                raise PreconditionViolation(
                    f"Loan must end within {self.config.max_tenure_days} days"
                )
            fee = self._interest(account, loan.borrowed, days)
            treasury_fee = self._treasury_cut(fee)

            self.book.move_bucket(loan.maturity, new_maturity, loan.borrowed, loan.collateral)
            self._emit_loan_data(loan.maturity)
            self._emit_loan_data(new_maturity)
            self.book.put_loan(
                account, with_maturity(loan, new_maturity, loan.tenure_days + days)
            )

            self._settle([
                self._reserve(fee, account, self.wallet),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "extend_loan")
            self._guard(fee)
            return fee

    # ========================================================================
    # LEVERAGE
    # ========================================================================

    def leverage(self, account: str, exposure: Numeric, days: int) -> Loan:
        """
        Open a leveraged position of `exposure` reserve in one step.

        The mint fee and full-tenor interest come off the exposure first.
        The remaining deposit is split into debt (at LTV) and the
        over-collateral sliver; the account pays only the fees plus that
        sliver. Receipts worth the deposit are minted straight into custody
        as collateral.

        Returns:
            The new loan
        """
        exposure = to_amount(exposure)
        with self._operation("leverage"):
            self._require_started()
            self._require_wallet(account)
            self._require_tenure(days)
            self._require_positive(exposure, "Exposure")
            self._sweep()
            self._claim_loan_slot(account)

            supply, backing = self.receipt_supply(), self.backing()
            mint_fee = bps_ceil(exposure, self.state.leverage_fee_bps)
            interest = self._interest(account, exposure, days)
            fee = mint_fee + interest
            if fee >= exposure:
                raise PreconditionViolation(f"Fees {fee} consume the whole exposure {exposure}")
            deposit = exposure - fee
            treasury_fee = self._treasury_cut(fee)
            borrowed = bps_floor(deposit, self.config.ltv_bps)
            over_collateral = deposit - borrowed
            paid = fee + over_collateral

            # The fee stays behind as backing, less the treasury cut
            collateral = reserve_to_receipt_floor(deposit, supply, backing + fee - treasury_fee)
            self._require_positive(collateral, "Collateral minted")
            self._record_mint(collateral, account)

            maturity = maturity_for(self.now, days)
            loan = Loan(collateral, borrowed, maturity, days)
            self.book.put_loan(account, loan)
            self._add_loan(maturity, borrowed, collateral)

            self._settle([
                self._reserve(paid, account, self.wallet),
                self._receipt(collateral, SYSTEM_WALLET, self.wallet),
                self._reserve(treasury_fee, self.wallet, self.state.treasury),
            ], "leverage")
            self._guard(exposure)
            return loan

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def start(self, account: str, reserve_amount: Numeric, burn_amount: Numeric) -> Decimal:
        """
        Open trading with a 1:1 initial deposit from the owner.

        `burn_amount` of the minted receipts is parked in DEAD_WALLET for
        good, so the supply can never be redeemed down to zero.

        Returns:
            Receipts left with the owner
        """
        reserve_amount = to_amount(reserve_amount)
        burn_amount = to_amount(burn_amount)
        with self._operation("start"):
            self._require_owner(account)
            if self.state.started:
                raise PreconditionViolation("Trading already started")
            if self.state.treasury is None:
                raise PreconditionViolation("Treasury must be set before start")
            self._require_positive(reserve_amount, "Initial deposit")
            self._require_positive(burn_amount, "Burn amount")
            if burn_amount >= reserve_amount:
                raise PreconditionViolation("Burn amount must be below the initial deposit")

            self._record_mint(reserve_amount)
            self._settle([
                self._reserve(reserve_amount, account, self.wallet),
                self._receipt(reserve_amount, SYSTEM_WALLET, account),
                self._receipt(burn_amount, account, DEAD_WALLET),
            ], "start", OriginType.SYSTEM)
            self.state.started = True
            self._emit(Started(self.now, account, reserve_amount, burn_amount))
            self._guard(reserve_amount)
            return reserve_amount - burn_amount

    def _set_parameter(self, account: str, name: str, value: object) -> None:
        with self._operation(f"set_{name}"):
            self._require_owner(account)
            old = getattr(self.state, name)
            setattr(self.state, name, value)
            self._emit(ParameterChanged(self.now, name, old, value))

    def _set_fee(self, account: str, name: str, bps: int, bounds: FeeBounds) -> None:
        if not isinstance(bps, int) or isinstance(bps, bool) or not bounds.contains(bps):
            raise PreconditionViolation(
                f"{name} must be within [{bounds.min_bps}, {bounds.max_bps}] bps, got {bps!r}"
            )
        self._set_parameter(account, name, bps)

    def set_buy_fee(self, account: str, bps: int) -> None:
        self._set_fee(account, "buy_fee_bps", bps, self.config.buy_fee_bounds)

    def set_sell_fee(self, account: str, bps: int) -> None:
        self._set_fee(account, "sell_fee_bps", bps, self.config.sell_fee_bounds)

    def set_leverage_fee(self, account: str, bps: int) -> None:
        self._set_fee(account, "leverage_fee_bps", bps, self.config.leverage_fee_bounds)

    def set_flash_close_fee(self, account: str, bps: int) -> None:
        self._set_fee(account, "flash_close_fee_bps", bps, self.config.flash_close_fee_bounds)

    def set_treasury(self, account: str, treasury: str) -> None:
        self._require_wallet(treasury)
        self._set_parameter(account, "treasury", treasury)

    def set_master_minter(self, account: str, minter: Optional[str]) -> None:
        self._set_parameter(account, "master_minter", minter)

    def raise_mint_cap(self, account: str, new_cap: Numeric) -> None:
        """The mint cap only ever goes up."""
        new_cap = to_amount(new_cap)
        if new_cap <= self.state.mint_cap:
            raise PreconditionViolation(
                f"Mint cap can only increase (current {self.state.mint_cap}, got {new_cap})"
            )
        self._set_parameter(account, "mint_cap", new_cap)

    def transfer_ownership(self, account: str, new_owner: str) -> None:
        if not new_owner or not new_owner.strip():
            raise PreconditionViolation("New owner cannot be empty")
        self._set_parameter(account, "owner", new_owner)
