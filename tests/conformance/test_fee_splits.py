"""
Fee Split Conformance Tests

INVARIANT: Splits are exact integer partitions.

    repayment:   lender_amount + protocol_fee = repayment_amount
                 protocol_fee = floor(interest * fee_bps / 10000)

    liquidation: lender_amount + liquidator_bonus + protocol_fee = collateral_amount
                 each share = floor(collateral_amount * bps / 10000)

Rounding always favours the lender; nothing is lost to rounding.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from p2p_lending import (
    LedgerToken, compute_repayment_split, compute_liquidation_split,
)
from tests.scenario import (
    build_funded_market, make_loan, open_loan, advance,
    E18, ASSET, COLLATERAL, OWNER, BORROWER, LENDER, LIQUIDATOR, LOAN_DURATION,
)


token_amount = st.integers(min_value=1, max_value=10 ** 30)


class TestRepaymentSplitProperties:

    @given(principal=token_amount, interest=token_amount,
           fee_bps=st.integers(min_value=0, max_value=2000))
    @settings(max_examples=50)
    def test_exact_partition(self, principal, interest, fee_bps):
        """
        PROPERTY: Lender share and protocol fee sum to the repayment.
        """
        split = compute_repayment_split(principal, principal + interest, fee_bps)
        assert split.interest == interest
        assert split.protocol_fee == interest * fee_bps // 10_000
        assert split.lender_amount + split.protocol_fee == principal + interest
        assert split.lender_amount > principal

    @given(interest=st.integers(min_value=1, max_value=10 * E18),
           fee_bps=st.integers(min_value=0, max_value=2000))
    @settings(max_examples=50, deadline=None)
    def test_market_pays_the_split(self, interest, fee_bps):
        """
        PROPERTY: A repayment through the market moves exactly the split.
        """
        market, _, _ = build_funded_market()
        ledger = market.ledger
        market.admin.set_protocol_fee(OWNER, fee_bps)
        loan = make_loan(repayment_amount=10 * E18 + interest)
        loan_id = open_loan(market, loan)
        LedgerToken(ledger, ASSET).approve(BORROWER, market.address, loan.repayment_amount)

        lender_before = ledger.get_balance(LENDER, ASSET)
        market.repay_loan(BORROWER, loan_id)

        fee = interest * fee_bps // 10_000
        assert ledger.get_balance(OWNER, ASSET) == fee
        assert ledger.get_balance(LENDER, ASSET) - lender_before == loan.repayment_amount - fee


class TestLiquidationSplitProperties:

    @given(collateral=st.integers(min_value=0, max_value=10 ** 30),
           bonus_bps=st.integers(min_value=0, max_value=1000),
           fee_bps=st.integers(min_value=0, max_value=500))
    @settings(max_examples=50)
    def test_exact_partition(self, collateral, bonus_bps, fee_bps):
        """
        PROPERTY: Liquidator bonus, protocol fee and lender share sum to the collateral.
        """
        split = compute_liquidation_split(collateral, bonus_bps, fee_bps)
        assert split.total == collateral
        assert split.liquidator_bonus == collateral * bonus_bps // 10_000
        assert split.protocol_fee == collateral * fee_bps // 10_000
        assert split.lender_amount >= 0

    @given(collateral=st.integers(min_value=1, max_value=10 * E18),
           bonus_bps=st.integers(min_value=0, max_value=1000),
           fee_bps=st.integers(min_value=0, max_value=500))
    @settings(max_examples=50, deadline=None)
    def test_market_pays_the_split(self, collateral, bonus_bps, fee_bps):
        """
        PROPERTY: A liquidation through the market empties the escrow into the split.
        """
        market, _, _ = build_funded_market()
        ledger = market.ledger
        market.admin.set_liquidation_config(OWNER, bonus_bps, fee_bps)
        loan_id = open_loan(market, make_loan(collateral_amount=collateral))
        advance(ledger, LOAN_DURATION + 1)

        assert market.liquidate_loan(LIQUIDATOR, loan_id)
        split = compute_liquidation_split(collateral, bonus_bps, fee_bps)
        assert ledger.get_balance(LIQUIDATOR, COLLATERAL) == split.liquidator_bonus
        assert ledger.get_balance(OWNER, COLLATERAL) == split.protocol_fee
        assert ledger.get_balance(LENDER, COLLATERAL) == split.lender_amount
        assert market.escrow_balance(COLLATERAL) == 0
