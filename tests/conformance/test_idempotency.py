"""
Idempotency Conformance Tests

INVARIANT: Duplicate execution is detected and prevented.

    ∀ transaction T:
        execute(T) = APPLIED ⟹ execute(T) again = ALREADY_APPLIED
        settle(T) again raises DuplicateSettlement
        state after the retry = state after the first execution

    ∀ loan L, operation op that closed L:
        op(L) again is rejected and moves no value

This guarantees safe retries: no double payout, no double escrow.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from p2p_lending import (
    DuplicateSettlement, ExecuteResult, InvalidStatus, Move, TransactionOrigin, OriginType,
    build_transaction,
)
from tests.scenario import (
    build_funded_market, open_loan, approve_repay, advance,
    E18, ASSET, COLLATERAL, BORROWER, LENDER, LIQUIDATOR, LOAN_DURATION,
)


def _transfer(ledger, quantity, memo=""):
    origin = TransactionOrigin(OriginType.USER_ACTION, BORROWER)
    return build_transaction(ledger, [
        Move(quantity, ASSET, BORROWER, LENDER, "transfer"),
    ], origin, memo=memo)


class TestLedgerIdempotency:

    @given(st.integers(min_value=1, max_value=5), st.integers(min_value=1, max_value=10 * E18))
    @settings(max_examples=50, deadline=None)
    def test_repeated_execution(self, repeats, quantity):
        """
        PROPERTY: Executing the same transaction N times applies it once.
        """
        market, _, _ = build_funded_market()
        ledger = market.ledger
        tx = _transfer(ledger, quantity)

        assert ledger.execute(tx) == ExecuteResult.APPLIED
        after_first = ledger.get_wallet_balances(BORROWER)
        for _ in range(repeats):
            assert ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
            with pytest.raises(DuplicateSettlement):
                ledger.settle(tx)
        assert ledger.get_wallet_balances(BORROWER) == after_first

    def test_memo_distinguishes_intents(self):
        market, _, _ = build_funded_market()
        ledger = market.ledger
        first = _transfer(ledger, E18, memo="a")
        second = _transfer(ledger, E18, memo="b")
        assert first.intent_id != second.intent_id
        ledger.settle(first)
        ledger.settle(second)
        assert ledger.get_balance(LENDER, ASSET) == 102 * E18


class TestOperationIdempotency:

    @given(st.integers(min_value=2, max_value=5))
    @settings(max_examples=20, deadline=None)
    def test_repay_retry_pays_once(self, attempts):
        """
        PROPERTY: Retrying a repayment never charges the borrower twice.
        """
        market, _, _ = build_funded_market()
        ledger = market.ledger
        loan_id = open_loan(market)
        approve_repay(market, market.loans(loan_id))

        market.repay_loan(BORROWER, loan_id)
        after_first = ledger.get_balance(BORROWER, ASSET)
        for _ in range(attempts - 1):
            with pytest.raises(InvalidStatus):
                market.repay_loan(BORROWER, loan_id)
        assert ledger.get_balance(BORROWER, ASSET) == after_first

    @given(st.integers(min_value=2, max_value=5))
    @settings(max_examples=20, deadline=None)
    def test_liquidation_retry_pays_once(self, attempts):
        """
        PROPERTY: Only the first liquidation of a loan distributes collateral.
        """
        market, _, _ = build_funded_market()
        ledger = market.ledger
        loan_id = open_loan(market)
        advance(ledger, LOAN_DURATION + 1)

        results = [market.liquidate_loan(LIQUIDATOR, loan_id) for _ in range(attempts)]
        assert results == [True] + [False] * (attempts - 1)
        assert ledger.get_balance(LIQUIDATOR, COLLATERAL) == E18 // 100
