"""
market.py - LendingMarket: the five public loan operations.

The market is the only component that mutates the LoanRegistry, and the only
caller of Ledger.settle() for loan settlements. Each public operation:

    1. Takes the operation lock (a second entry raises ReentrantCall)
    2. Snapshots admin.config and the clock
    3. Builds the next loan record with the pure engine functions
    4. Commits the record to the registry
    5. Settles every value leg as one ledger transaction
    6. On any failure in 4-5, restores the previous record and re-raises
    7. Publishes its events only after the commit

Token transfer rules and price feeds run foreign code while the lock is held;
any attempt by them to call back into a public operation fails.

Example:
    market = LendingMarket(ledger, owner="owner")
    loan_id = market.request_loan("alice", encode_loan(terms))
    market.fill_request("bob", loan_id)
    market.repay_loan("alice", loan_id)
"""

from __future__ import annotations
from contextlib import contextmanager
import logging
import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .core import (
    LedgerError, ReentrantCall, PendingTransaction,
    unix_time,
)
from .config import MarketAdmin, MarketConfig
from .events import (
    Event, EventLog,
    LoanRequested, LoanCanceled, LoanFilled, LoanRepaid, LoanLiquidated, ProtocolRevenue,
)
from .fill import prepare_fill, check_not_instantly_liquidatable, compute_fill_settlement
from .ledger import Ledger
from .liquidation import (
    is_liquidatable, prepare_liquidation,
    compute_liquidation_split_for, compute_liquidation_settlement,
)
from .loan import Loan
from .oracle import PriceFeed
from .registry import LoanRegistry
from .repayment import prepare_repay, compute_repayment_split_for, compute_repayment_settlement
from .requests import prepare_request, prepare_cancel


logger = logging.getLogger(__name__)


class LendingMarket:
    """
    Isolated peer-to-peer lending market over a Ledger.

    Args:
        ledger: Value-transfer medium; the market's own wallet is its escrow
        owner: Administrator of the market parameters
        address: Wallet id of the market (registered if missing)
        fee_collector: Protocol fee recipient (defaults to owner)
        price_feeds: Feeds by id, referenced from loan liquidation terms
        events: Shared event log (a fresh one if omitted)
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        address: str = "lending_market",
        fee_collector: Optional[str] = None,
        price_feeds: Optional[Mapping[str, PriceFeed]] = None,
        events: Optional[EventLog] = None,
    ):
        self.ledger = ledger
        self.address = address
        if not ledger.is_registered(address):
            ledger.register_wallet(address)
        self.events = events if events is not None else EventLog()
        self.admin = MarketAdmin(owner, fee_collector, self.events)
        self.registry = LoanRegistry()
        self.price_feeds: Dict[str, PriceFeed] = dict(price_feeds or {})
        self._lock = threading.Lock()

    # ========================================================================
    # SETUP
    # ========================================================================

    def register_price_feed(self, feed_id: str, feed: PriceFeed) -> None:
        if feed_id in self.price_feeds:
            raise ValueError(f"Price feed {feed_id} already registered")
        self.price_feeds[feed_id] = feed

    # ========================================================================
    # READ ACCESSORS
    # ========================================================================

    @property
    def config(self) -> MarketConfig:
        return self.admin.config

    def now(self) -> int:
        """Ledger clock as UNIX seconds."""
        return unix_time(self.ledger.current_time)

    def loans(self, loan_id: int) -> Loan:
        """Stored record for a loan id (raises UnknownLoan)."""
        return self.registry.get(loan_id)

    def loan_length(self) -> int:
        return self.registry.loan_length()

    def is_loan_liquidatable(self, loan_id: int) -> bool:
        """Liquidation predicate for a stored loan. Oracle faults propagate."""
        return is_liquidatable(
            self.registry.find(loan_id), self.now(), self.admin.config,
            self.ledger, self.price_feeds,
        )

    def escrow_balance(self, unit_symbol: str) -> int:
        return self.ledger.get_balance(self.address, unit_symbol)

    # ========================================================================
    # OPERATION PLUMBING
    # ========================================================================

    @contextmanager
    def _operation(self, name: str, caller: str, loan_id: Any = None) -> Iterator[MarketConfig]:
        """Hold the operation lock for one public call and log aborts."""
        if not self._lock.acquire(blocking=False):
            raise ReentrantCall(f"{name}: another market operation is in flight")
        try:
            yield self.admin.config
        except LedgerError as e:
            logger.warning("%s(loan=%s) by %s aborted: %s: %s",
                           name, loan_id, caller, type(e).__name__, e)
            raise
        finally:
            self._lock.release()

    def _commit(self, loan_id: int, new: Loan, pending: Optional[PendingTransaction] = None) -> None:
        """Replace the record, then settle; restore the record if settling fails."""
        previous = self.registry.replace(loan_id, new)
        if pending is None or pending.is_empty():
            return
        try:
            self.ledger.settle(pending)
        except Exception:
            self.registry.restore(loan_id, previous)
            raise

    def _publish(self, events: List[Event]) -> None:
        self.events.publish(events)

    # ========================================================================
    # PUBLIC OPERATIONS
    # ========================================================================

    def request_loan(self, caller: str, raw: Union[bytes, str, Mapping[str, Any], Loan]) -> int:
        """
        Create a PENDING loan from a caller-supplied record.

        Returns:
            The new loan id

        Raises:
            MalformedLoan, Unauthorized, InvalidLoanTerms, OracleDecimalsMismatch
        """
        with self._operation("request_loan", caller):
            loan = prepare_request(raw, caller, self.now(), self.price_feeds)
            loan_id = self.registry.append(loan)
            self._publish([LoanRequested(loan_id, loan.borrower)])
            return loan_id

    def cancel_loan(self, caller: str, loan_id: int) -> None:
        """
        Withdraw an unfilled request.

        Raises:
            InvalidStatus, RequestExpired, Unauthorized
        """
        with self._operation("cancel_loan", caller, loan_id) as config:
            canceled = prepare_cancel(
                self.registry.find(loan_id), caller, self.now(),
                config.request_expiration_duration,
            )
            self._commit(loan_id, canceled)
            self._publish([LoanCanceled(loan_id, canceled.borrower)])

    def fill_request(self, caller: str, loan_id: int) -> None:
        """
        Lend into a PENDING request: escrow collateral, forward the principal.

        The ACTIVE record is committed first; the insolvency guard then reads
        the committed record, and the value legs settle last.

        Raises:
            InvalidStatus, RequestExpired, InstantlyLiquidatable, OracleError,
            InsufficientFunds, InsufficientAllowance, TransferRuleViolation
        """
        with self._operation("fill_request", caller, loan_id) as config:
            now = self.now()
            filled = prepare_fill(
                self.registry.find(loan_id), caller, now, config.request_expiration_duration,
            )
            previous = self.registry.replace(loan_id, filled)
            try:
                check_not_instantly_liquidatable(
                    self.registry.get(loan_id), now, config, self.ledger, self.price_feeds,
                )
                self.ledger.settle(
                    compute_fill_settlement(self.ledger, loan_id, filled, self.address)
                )
            except Exception:
                self.registry.restore(loan_id, previous)
                raise
            self._publish([LoanFilled(loan_id, filled.borrower, filled.lender)])

    def repay_loan(self, caller: str, loan_id: int) -> None:
        """
        Settle an ACTIVE loan from the borrower's funds and release the collateral.

        Raises:
            InvalidStatus, InsufficientFunds, InsufficientAllowance, TransferRuleViolation
        """
        with self._operation("repay_loan", caller, loan_id) as config:
            repaid = prepare_repay(self.registry.find(loan_id))
            split = compute_repayment_split_for(repaid, config)
            pending = compute_repayment_settlement(
                self.ledger, loan_id, repaid, split, self.address, config.fee_collector,
            )
            self._commit(loan_id, repaid, pending)
            self._publish([
                LoanRepaid(loan_id, repaid.borrower, repaid.lender),
                ProtocolRevenue(loan_id, repaid.asset, split.protocol_fee),
            ])

    def liquidate_loan(self, caller: str, loan_id: int) -> bool:
        """
        Liquidate a defaulted or insolvent loan. Anyone may call.

        Returns:
            True if the loan was liquidated, False if it is not eligible

        Raises:
            OracleError: If the price test cannot be evaluated
            InsufficientFunds, TransferRuleViolation: From the collateral payout
        """
        with self._operation("liquidate_loan", caller, loan_id) as config:
            loan = self.registry.find(loan_id)
            if not is_liquidatable(loan, self.now(), config, self.ledger, self.price_feeds):
                logger.debug("liquidate_loan(loan=%s) by %s: not liquidatable", loan_id, caller)
                return False

            liquidated = prepare_liquidation(loan)
            split = compute_liquidation_split_for(liquidated, config)
            pending = compute_liquidation_settlement(
                self.ledger, loan_id, liquidated, split,
                self.address, caller, config.fee_collector,
            )
            self._commit(loan_id, liquidated, pending)
            self._publish([
                LoanLiquidated(loan_id),
                ProtocolRevenue(loan_id, liquidated.collateral, split.protocol_fee),
            ])
            return True

    def __repr__(self) -> str:
        return f"LendingMarket({self.address}, {len(self.registry)} loans)"
