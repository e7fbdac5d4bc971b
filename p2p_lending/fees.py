"""
fees.py - Basis-point fee arithmetic.

Pure integer splits for repayment and liquidation. Every division floors,
and each split's parts sum exactly to the amount being split, so settlement
never leaves a residue in escrow.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import BPS_DENOMINATOR


@dataclass(frozen=True, slots=True)
class RepaymentSplit:
    """How a repayment is divided. lender_amount + protocol_fee == repayment."""
    interest: int
    protocol_fee: int
    lender_amount: int


@dataclass(frozen=True, slots=True)
class LiquidationSplit:
    """How seized collateral is divided. The three parts sum to the collateral."""
    liquidator_bonus: int
    protocol_fee: int
    lender_amount: int

    @property
    def total(self) -> int:
        return self.liquidator_bonus + self.protocol_fee + self.lender_amount


def _check_amount(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def bps_of(amount: int, bps: int) -> int:
    """
    floor(amount * bps / 10000).

    Raises:
        ValueError: If either operand is negative or bps exceeds 10000
    """
    _check_amount("amount", amount)
    _check_amount("bps", bps)
    if bps > BPS_DENOMINATOR:
        raise ValueError(f"bps must be <= {BPS_DENOMINATOR}, got {bps}")
    return amount * bps // BPS_DENOMINATOR


def compute_repayment_split(
    asset_amount: int,
    repayment_amount: int,
    protocol_fee_bps: int,
) -> RepaymentSplit:
    """
    Split a repayment between lender and fee collector.

    The protocol fee is charged on the interest only:
        protocol_fee = floor((repayment - principal) * bps / 10000)

    Example:
        >>> compute_repayment_split(10 * 10**18, 11 * 10**18, 2000)
        RepaymentSplit(interest=1000000000000000000, protocol_fee=200000000000000000, lender_amount=10800000000000000000)
    """
    _check_amount("asset_amount", asset_amount)
    _check_amount("repayment_amount", repayment_amount)
    if repayment_amount <= asset_amount:
        raise ValueError("repayment_amount must exceed asset_amount")

    interest = repayment_amount - asset_amount
    protocol_fee = bps_of(interest, protocol_fee_bps)
    return RepaymentSplit(
        interest=interest,
        protocol_fee=protocol_fee,
        lender_amount=repayment_amount - protocol_fee,
    )


def compute_liquidation_split(
    collateral_amount: int,
    liquidator_bonus_bps: int,
    protocol_fee_bps: int,
) -> LiquidationSplit:
    """
    Split seized collateral between liquidator, protocol and lender.

    The lender receives the remainder, which absorbs both floor roundings.
    """
    _check_amount("collateral_amount", collateral_amount)
    if liquidator_bonus_bps + protocol_fee_bps > BPS_DENOMINATOR:
        raise ValueError("liquidation incentives exceed 100%")

    bonus = bps_of(collateral_amount, liquidator_bonus_bps)
    fee = bps_of(collateral_amount, protocol_fee_bps)
    return LiquidationSplit(
        liquidator_bonus=bonus,
        protocol_fee=fee,
        lender_amount=collateral_amount - bonus - fee,
    )
