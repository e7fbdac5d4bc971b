"""
test_market.py - Tests for LendingMarket plumbing

Tests:
- Accessors and feed registration
- One operation at a time: callbacks from tokens and feeds are refused
- Records are committed before value moves
- Config snapshot per operation
- Abort logging
"""

import logging
import pytest

from p2p_lending import (
    LedgerToken, LendingMarket, LoanStatus, ManualPriceFeed, LoanFilled, LoanLiquidated,
    ReentrantCall, RequestExpired, UnknownLoan, TransferRuleViolation, token,
)
from tests.scenario import (
    make_loan, open_loan, liquidatable_terms, approve_fill,
    E18, ASSET, COLLATERAL, OWNER, BORROWER, LENDER, LIQUIDATOR, OTHER,
    ASSET_FEED, COLLATERAL_FEED,
)


HOOK = "HOOK"


class CallbackFeed(ManualPriceFeed):
    """Feed that runs a callback on every read."""

    def __init__(self, *args, callback=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.callback = callback

    def latest_round_data(self):
        if self.callback is not None:
            self.callback()
        return super().latest_round_data()


@pytest.fixture
def hooks():
    """Callbacks run by the HOOK token's transfer rule, once armed."""
    return []


@pytest.fixture
def hook_market(funded_market, ledger, hooks):
    """Funded market plus a HOOK collateral token whose rule runs `hooks`."""
    def rule(view, move):
        for callback in hooks:
            callback(move)

    ledger.register_unit(token(HOOK, "Hooked collateral", transfer_rule=rule))
    LedgerToken(ledger, HOOK).mint(BORROWER, 10 * E18)
    return funded_market


def _request_hooked(market):
    loan = make_loan(collateral=HOOK)
    loan_id = market.request_loan(BORROWER, loan)
    approve_fill(market, loan)
    return loan_id


class TestAccessors:

    def test_wallet_registered(self, market, ledger):
        assert ledger.is_registered(market.address)
        assert market.escrow_balance(ASSET) == 0

    def test_existing_wallet_reused(self, ledger):
        ledger.register_wallet("desk")
        market = LendingMarket(ledger, OWNER, address="desk")
        assert market.address == "desk"

    def test_unknown_loan(self, market):
        with pytest.raises(UnknownLoan):
            market.loans(0)
        assert market.loan_length() == 0
        assert not market.is_loan_liquidatable(0)

    def test_register_price_feed(self, market):
        feed = ManualPriceFeed(1)
        market.register_price_feed("extra", feed)
        assert market.price_feeds["extra"] is feed
        with pytest.raises(ValueError):
            market.register_price_feed("extra", feed)

    def test_fee_collector_defaults_to_owner(self, market):
        assert market.config.fee_collector == OWNER

    def test_escrow_aggregates_loans(self, funded_market):
        open_loan(funded_market)
        open_loan(funded_market)
        assert funded_market.escrow_balance(COLLATERAL) == 2 * E18


class TestReentrancy:

    def test_token_callback_is_refused(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)
        hooks.append(lambda move: hook_market.cancel_loan(BORROWER, loan_id))
        with pytest.raises(ReentrantCall):
            hook_market.fill_request(LENDER, loan_id)
        assert hook_market.loans(loan_id).status is LoanStatus.PENDING
        assert hook_market.escrow_balance(HOOK) == 0

    def test_refused_callback_does_not_disturb_outer_call(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)
        refused = []

        def attempt(move):
            try:
                hook_market.liquidate_loan(OTHER, loan_id)
            except ReentrantCall as e:
                refused.append(e)

        hooks.append(attempt)
        hook_market.fill_request(LENDER, loan_id)
        assert len(refused) == 1
        assert hook_market.loans(loan_id).status is LoanStatus.ACTIVE

    def test_lock_released_after_failure(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)
        hooks.append(lambda move: hook_market.request_loan(BORROWER, make_loan()))
        with pytest.raises(ReentrantCall):
            hook_market.fill_request(LENDER, loan_id)
        hooks.clear()
        hook_market.fill_request(LENDER, loan_id)
        assert hook_market.loan_length() == 1

    def test_feed_callback_is_refused(self, funded_market, ledger):
        loan_id = open_loan(funded_market, make_loan(liquidation=liquidatable_terms()))
        feed = CallbackFeed(2_000 * 10 ** 8, clock=ledger,
                            callback=lambda: funded_market.repay_loan(BORROWER, loan_id))
        funded_market.price_feeds[ASSET_FEED] = feed
        with pytest.raises(ReentrantCall):
            funded_market.liquidate_loan(LIQUIDATOR, loan_id)
        assert funded_market.loans(loan_id).status is LoanStatus.ACTIVE

    def test_lock_held_elsewhere(self, market):
        market._lock.acquire()
        try:
            with pytest.raises(ReentrantCall):
                market.request_loan(BORROWER, make_loan())
        finally:
            market._lock.release()
        assert market.request_loan(BORROWER, make_loan()) == 0

    def test_rule_violation_rolls_back(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)

        def block(move):
            raise TransferRuleViolation("frozen")

        hooks.append(block)
        with pytest.raises(TransferRuleViolation):
            hook_market.fill_request(LENDER, loan_id)
        assert hook_market.loans(loan_id).status is LoanStatus.PENDING


class TestCommitOrder:

    def test_record_visible_to_transfer_callbacks(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)
        seen = []
        hooks.append(lambda move: seen.append(hook_market.loans(loan_id).status))
        hook_market.fill_request(LENDER, loan_id)
        assert seen == [LoanStatus.ACTIVE]

    def test_events_follow_commit(self, hook_market, hooks):
        loan_id = _request_hooked(hook_market)
        seen = []
        hooks.append(lambda move: seen.append(len(hook_market.events.of_type(LoanFilled))))
        hook_market.fill_request(LENDER, loan_id)
        assert seen == [0]
        assert len(hook_market.events.of_type(LoanFilled)) == 1


class TestConfigSnapshot:

    def test_admin_change_during_liquidation(self, funded_market, ledger, asset_feed):
        loan_id = open_loan(funded_market, make_loan(
            collateral_amount=6 * E18 // 10, liquidation=liquidatable_terms(),
        ))
        changed = []

        def change_terms():
            if not changed:
                changed.append(funded_market.admin.set_liquidation_config(OWNER, 1000, 500))

        funded_market.price_feeds[COLLATERAL_FEED] = CallbackFeed(
            50_000 * 10 ** 8, clock=ledger, callback=change_terms,
        )
        asset_feed.set_answer(2_500 * 10 ** 8)
        assert funded_market.liquidate_loan(LIQUIDATOR, loan_id)

        # paid with the 1% / 0.2% in force when the call started
        assert ledger.get_balance(LIQUIDATOR, COLLATERAL) == 6 * E18 // 1000
        assert ledger.get_balance(OWNER, COLLATERAL) == 12 * E18 // 10000
        assert funded_market.config.liquidator_bonus_bps == 1000
        assert funded_market.events.of_type(LoanLiquidated) == [LoanLiquidated(loan_id)]


class TestLogging:

    def test_abort_logged(self, funded_market, caplog):
        with caplog.at_level(logging.WARNING, logger="p2p_lending.market"):
            with pytest.raises(RequestExpired):
                funded_market.cancel_loan(OTHER, 0)
        assert "cancel_loan" in caplog.text
        assert "RequestExpired" in caplog.text

    def test_events_logged(self, funded_market, caplog):
        with caplog.at_level(logging.INFO, logger="p2p_lending.events"):
            funded_market.request_loan(BORROWER, make_loan())
        assert "LoanRequested" in caplog.text
