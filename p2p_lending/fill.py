"""
fill.py - Matching a lender to a pending request.

A fill does two things atomically:
    1. borrower -> escrow   collateral_amount of collateral (pulled by the market)
    2. lender   -> borrower asset_amount of asset           (pulled by the market)

Both legs are one PendingTransaction, so the ledger applies both or neither.

The insolvency guard reads the ACTIVE record the fill is about to produce
(lender and start_timestamp already set). Evaluated against the still
PENDING record, the liquidation predicate would always answer False.
"""

from __future__ import annotations
from typing import Mapping, Optional

from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    InstantlyLiquidatable, Unauthorized, ZERO_ADDRESS,
    build_transaction, settlement_leg,
)
from .config import MarketConfig
from .liquidation import is_liquidatable
from .loan import Loan, LoanStatus
from .oracle import PriceFeed
from .requests import check_fillable_window


def prepare_fill(
    loan: Optional[Loan],
    lender: str,
    now: int,
    expiration_duration: int,
) -> Loan:
    """
    Next record for a lender filling a request.

    Raises:
        InvalidStatus: If the loan is not PENDING
        RequestExpired: If the request window has closed
    """
    loan = check_fillable_window(loan, now, expiration_duration)
    if not lender or lender == ZERO_ADDRESS:
        raise Unauthorized("lender == address(0)")
    return loan.with_changes(
        lender=lender,
        start_timestamp=now,
        status=LoanStatus.ACTIVE,
    )


def check_not_instantly_liquidatable(
    filled: Loan,
    now: int,
    config: MarketConfig,
    view: LedgerView,
    feeds: Mapping[str, PriceFeed],
) -> None:
    """
    Refuse a fill that would create a loan already eligible for liquidation.

    Args:
        filled: The ACTIVE record produced by prepare_fill()

    Raises:
        InstantlyLiquidatable: If the predicate holds for the filled record
        OracleError: If the price feeds cannot be read
    """
    if not filled.liquidation.is_liquidatable:
        return
    if is_liquidatable(filled, now, config, view, feeds):
        raise InstantlyLiquidatable("instantly liquidatable")


def compute_fill_settlement(
    view: LedgerView,
    loan_id: int,
    loan: Loan,
    escrow: str,
) -> PendingTransaction:
    """
    Escrow the collateral and forward the principal.

    Args:
        loan: The filled (ACTIVE) record
        escrow: The market's wallet; it pulls both legs using allowances

    Returns:
        PendingTransaction with the collateral intake and principal legs
    """
    contract_id = f"loan:{loan_id}"
    legs = [
        settlement_leg(
            loan.collateral_amount, loan.collateral, loan.borrower, escrow,
            contract_id, spender=escrow,
        ),
        settlement_leg(
            loan.asset_amount, loan.asset, loan.lender, loan.borrower,
            contract_id, spender=escrow,
        ),
    ]
    origin = TransactionOrigin(OriginType.MARKET, escrow, loan_id=loan_id, event_type="FILL")
    return build_transaction(view, [m for m in legs if m is not None], origin)
