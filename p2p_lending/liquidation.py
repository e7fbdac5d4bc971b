"""
liquidation.py - Liquidation decision and collateral distribution.

=== TRIGGERS ===

An ACTIVE loan is liquidatable when either holds:
    1. Default: now > start_timestamp + duration (no oracle is consulted)
    2. Insolvency (opt-in): loan_value_usd > collateral_value_usd * threshold / 10000

Both values are normalised with usd_value(), which divides out each token's
own decimals, so a 6-decimal asset compares correctly with an 18-decimal
collateral. Ties are not liquidatable.

Oracle faults (non-positive or stale price, failing feed) propagate. They
are never read as "not liquidatable".

=== DISTRIBUTION ===

Seized collateral leaves escrow in three legs:
    escrow -> liquidator     floor(collateral * bonus_bps / 10000)
    escrow -> fee collector  floor(collateral * fee_bps / 10000)
    escrow -> lender         remainder
"""

from __future__ import annotations
from typing import Mapping, Optional

from .core import (
    BPS_DENOMINATOR,
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    InvalidStatus, OracleDecimalsMismatch,
    build_transaction, settlement_leg,
)
from .config import MarketConfig
from .fees import LiquidationSplit, compute_liquidation_split
from .loan import Loan, LoanStatus
from .oracle import PriceFeed, read_price, resolve_feed, usd_value


def is_defaulted(loan: Loan, now: int) -> bool:
    """True once an ACTIVE loan is past its maturity."""
    return loan.status is LoanStatus.ACTIVE and now > loan.start_timestamp + loan.duration


def is_insolvent(
    loan: Loan,
    now: int,
    max_oracle_price_age: int,
    view: LedgerView,
    feeds: Mapping[str, PriceFeed],
) -> bool:
    """
    Price test: debt value strictly above the threshold share of collateral value.

    Raises:
        InvalidOraclePrice, StaleOraclePrice, OracleUnavailable, UnknownPriceFeed
        OracleDecimalsMismatch: If the two feeds no longer agree on decimals
    """
    terms = loan.liquidation
    asset_quote = read_price(resolve_feed(feeds, terms.asset_oracle), now, max_oracle_price_age)
    collateral_quote = read_price(resolve_feed(feeds, terms.collateral_oracle), now, max_oracle_price_age)
    if asset_quote.decimals != collateral_quote.decimals:
        raise OracleDecimalsMismatch("oracle decimals mismatch")

    loan_value = usd_value(
        loan.asset_amount, asset_quote.value, view.get_unit(loan.asset).decimals
    )
    collateral_value = usd_value(
        loan.collateral_amount, collateral_quote.value, view.get_unit(loan.collateral).decimals
    )
    return loan_value > collateral_value * terms.liquidation_threshold // BPS_DENOMINATOR


def is_liquidatable(
    loan: Optional[Loan],
    now: int,
    config: MarketConfig,
    view: LedgerView,
    feeds: Mapping[str, PriceFeed],
) -> bool:
    """
    Whether a loan may be liquidated right now. Reads only; changes nothing.

    Args:
        loan: The loan record (None for an id that was never created)
        now: Current UNIX time in seconds
        config: Market parameters (max oracle price age)
        view: Ledger view for token decimals
        feeds: Price feeds by id

    Returns:
        False for any loan that is not ACTIVE, True once defaulted, otherwise
        the price test for loans that opted in to it.
    """
    if loan is None or loan.status is not LoanStatus.ACTIVE:
        return False
    if is_defaulted(loan, now):
        return True
    if not loan.liquidation.is_liquidatable:
        return False
    return is_insolvent(loan, now, config.max_oracle_price_age, view, feeds)


def prepare_liquidation(loan: Loan) -> Loan:
    """Next record for a liquidated loan."""
    if loan.status is not LoanStatus.ACTIVE:
        raise InvalidStatus("invalid status")
    return loan.with_changes(status=LoanStatus.LIQUIDATED)


def compute_liquidation_split_for(loan: Loan, config: MarketConfig) -> LiquidationSplit:
    return compute_liquidation_split(
        loan.collateral_amount,
        config.liquidator_bonus_bps,
        config.protocol_liquidation_fee_bps,
    )


def compute_liquidation_settlement(
    view: LedgerView,
    loan_id: int,
    loan: Loan,
    split: LiquidationSplit,
    escrow: str,
    liquidator: str,
    fee_collector: str,
) -> PendingTransaction:
    """
    Pay the seized collateral out of escrow.

    Returns:
        PendingTransaction moving exactly loan.collateral_amount out of escrow
    """
    contract_id = f"loan:{loan_id}"
    legs = [
        settlement_leg(split.lender_amount, loan.collateral, escrow, loan.lender, contract_id),
        settlement_leg(split.liquidator_bonus, loan.collateral, escrow, liquidator, contract_id),
        settlement_leg(split.protocol_fee, loan.collateral, escrow, fee_collector, contract_id),
    ]
    origin = TransactionOrigin(OriginType.MARKET, escrow, loan_id=loan_id, event_type="LIQUIDATE")
    return build_transaction(view, [m for m in legs if m is not None], origin)
