"""
repayment.py - Settling an active loan.

Repayment is allowed at any time while the loan is ACTIVE, including after
maturity, as long as nobody has liquidated it first.

Legs (one transaction):
    borrower -> lender         repayment_amount - protocol_fee of asset
    borrower -> fee collector  protocol_fee of asset
    escrow   -> borrower       collateral_amount of collateral

The two asset legs are pulled from the borrower with the market's allowance.
"""

from __future__ import annotations
from typing import Optional

from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    InvalidStatus,
    build_transaction, settlement_leg,
)
from .config import MarketConfig
from .fees import RepaymentSplit, compute_repayment_split
from .loan import Loan, LoanStatus


def prepare_repay(loan: Optional[Loan]) -> Loan:
    """
    Next record for a repaid loan.

    Raises:
        InvalidStatus: If the loan is not ACTIVE (or does not exist)
    """
    if loan is None or loan.status is not LoanStatus.ACTIVE:
        raise InvalidStatus("invalid status")
    return loan.with_changes(status=LoanStatus.REPAID)


def compute_repayment_split_for(loan: Loan, config: MarketConfig) -> RepaymentSplit:
    return compute_repayment_split(
        loan.asset_amount, loan.repayment_amount, config.protocol_fee_bps
    )


def compute_repayment_settlement(
    view: LedgerView,
    loan_id: int,
    loan: Loan,
    split: RepaymentSplit,
    escrow: str,
    fee_collector: str,
) -> PendingTransaction:
    """Pay the lender and the fee collector, and release the collateral."""
    contract_id = f"loan:{loan_id}"
    legs = [
        settlement_leg(
            split.lender_amount, loan.asset, loan.borrower, loan.lender,
            contract_id, spender=escrow,
        ),
        settlement_leg(
            split.protocol_fee, loan.asset, loan.borrower, fee_collector,
            contract_id, spender=escrow,
        ),
        settlement_leg(
            loan.collateral_amount, loan.collateral, escrow, loan.borrower, contract_id,
        ),
    ]
    origin = TransactionOrigin(OriginType.MARKET, escrow, loan_id=loan_id, event_type="REPAY")
    return build_transaction(view, [m for m in legs if m is not None], origin)
