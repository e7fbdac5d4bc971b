"""
requests.py - Loan request creation and cancellation.

Pure functions: each takes the current record (or raw input), the caller and
the clock, and returns the next record or raises a LoanValidationError.
Neither operation moves value.

    prepare_request(raw, caller, now, feeds) -> Loan      (new PENDING record)
    prepare_cancel(loan, caller, now, expiration) -> Loan (CANCELED record)
"""

from __future__ import annotations
from typing import Any, Mapping, Optional, Union

from .core import (
    BPS_DENOMINATOR, ZERO_ADDRESS,
    Unauthorized, InvalidLoanTerms, InvalidStatus, RequestExpired,
    OracleDecimalsMismatch,
)
from .loan import Loan, LoanStatus, decode_loan
from .oracle import PriceFeed, resolve_feed


def validate_terms(loan: Loan, feeds: Mapping[str, PriceFeed]) -> None:
    """
    Check the creation invariants of a loan's terms.

    Raises:
        InvalidLoanTerms: On repayment <= principal, asset == collateral,
            or threshold > 100%
        OracleDecimalsMismatch: If a liquidatable loan's feeds disagree on decimals
        UnknownPriceFeed: If a liquidatable loan references an unknown feed
    """
    if loan.asset_amount >= loan.repayment_amount:
        raise InvalidLoanTerms("amount >= repayment")
    if loan.asset == loan.collateral:
        raise InvalidLoanTerms("asset == collateral")
    if loan.liquidation.liquidation_threshold > BPS_DENOMINATOR:
        raise InvalidLoanTerms("liquidationThreshold > 10000 bps")

    if loan.liquidation.is_liquidatable:
        asset_feed = resolve_feed(feeds, loan.liquidation.asset_oracle)
        collateral_feed = resolve_feed(feeds, loan.liquidation.collateral_oracle)
        if asset_feed.decimals() != collateral_feed.decimals():
            raise OracleDecimalsMismatch("oracle decimals mismatch")


def prepare_request(
    raw: Union[bytes, str, Mapping[str, Any], Loan],
    caller: str,
    now: int,
    feeds: Mapping[str, PriceFeed],
) -> Loan:
    """
    Decode and validate a caller-supplied loan record.

    The returned record has created_timestamp = now, no lender, no start
    time and PENDING status, whatever the caller supplied for those fields.

    Raises:
        MalformedLoan: If raw does not decode or a field has the wrong type
        Unauthorized: If caller is not the borrower
        InvalidLoanTerms: See validate_terms()
    """
    loan = decode_loan(raw)

    if loan.borrower != caller:
        raise Unauthorized("borrower != msg.sender")
    if not loan.borrower or loan.borrower == ZERO_ADDRESS:
        raise Unauthorized("borrower == address(0)")
    validate_terms(loan, feeds)

    return loan.with_changes(
        lender=ZERO_ADDRESS,
        created_timestamp=now,
        start_timestamp=0,
        status=LoanStatus.PENDING,
    )


def check_fillable_window(loan: Optional[Loan], now: int, expiration_duration: int) -> Loan:
    """
    Require a PENDING loan whose request window is still open.

    A loan id that was never created reads as an all-zero record: status
    PENDING with created_timestamp 0, so it fails as expired.

    Raises:
        InvalidStatus: If the loan is not PENDING
        RequestExpired: If now >= created_timestamp + expiration_duration
    """
    if loan is None:
        raise RequestExpired("already expired")
    if loan.status is not LoanStatus.PENDING:
        raise InvalidStatus("invalid status")
    if now >= loan.request_expires_at(expiration_duration):
        raise RequestExpired("already expired")
    return loan


def prepare_cancel(
    loan: Optional[Loan],
    caller: str,
    now: int,
    expiration_duration: int,
) -> Loan:
    """
    Next record for a borrower withdrawing an unfilled request.

    Checks, in order: status, expiry window, caller.

    Raises:
        InvalidStatus, RequestExpired: See check_fillable_window()
        Unauthorized: If caller is not the borrower
    """
    loan = check_fillable_window(loan, now, expiration_duration)
    if caller != loan.borrower:
        raise Unauthorized("sender != borrower")
    return loan.with_changes(status=LoanStatus.CANCELED)
