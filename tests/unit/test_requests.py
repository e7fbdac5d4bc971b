"""
test_requests.py - Tests for loan requests and cancellation

Tests:
- request_loan: validation, stamping, events
- cancel_loan: status, expiry window, caller, unknown ids
"""

import pytest

from p2p_lending import (
    LiquidationTerms, LoanStatus, ManualPriceFeed, ZERO_ADDRESS,
    LoanRequested, LoanCanceled,
    MalformedLoan, Unauthorized, InvalidLoanTerms, InvalidStatus, RequestExpired,
    OracleDecimalsMismatch, UnknownPriceFeed,
    encode_loan, loan_to_dict, prepare_cancel, unix_time,
)
from tests.scenario import (
    make_loan, liquidatable_terms, advance,
    START, BORROWER, LENDER, OTHER, ASSET, ASSET_FEED,
)

DAY = 24 * 60 * 60


class TestRequestLoan:

    def test_creates_pending_record(self, market):
        loan_id = market.request_loan(BORROWER, encode_loan(make_loan()))
        assert loan_id == 0
        stored = market.loans(0)
        assert stored.status is LoanStatus.PENDING
        assert stored.created_timestamp == unix_time(START)
        assert stored.start_timestamp == 0
        assert stored.lender == ZERO_ADDRESS
        assert market.loan_length() == 1

    def test_emits_requested(self, market):
        market.request_loan(BORROWER, make_loan())
        market.request_loan(BORROWER, make_loan())
        assert market.events.of_type(LoanRequested) == [
            LoanRequested(0, BORROWER), LoanRequested(1, BORROWER),
        ]

    def test_caller_lifecycle_fields_overwritten(self, market):
        data = loan_to_dict(make_loan(
            lender=OTHER, status=LoanStatus.ACTIVE, created_timestamp=5, start_timestamp=9,
        ))
        market.request_loan(BORROWER, data)
        stored = market.loans(0)
        assert stored.lender == ZERO_ADDRESS
        assert stored.status is LoanStatus.PENDING
        assert stored.start_timestamp == 0
        assert stored.created_timestamp == unix_time(START)

    def test_liquidatable_request(self, market):
        market.request_loan(BORROWER, make_loan(liquidation=liquidatable_terms()))
        assert market.loans(0).liquidation.is_liquidatable

    def test_caller_must_be_borrower(self, market):
        with pytest.raises(Unauthorized, match="borrower != msg.sender"):
            market.request_loan(LENDER, make_loan())

    def test_repayment_must_exceed_amount(self, market):
        with pytest.raises(InvalidLoanTerms, match="amount >= repayment"):
            market.request_loan(BORROWER, make_loan(asset_amount=100, repayment_amount=99))
        with pytest.raises(InvalidLoanTerms):
            market.request_loan(BORROWER, make_loan(asset_amount=100, repayment_amount=100))

    def test_asset_differs_from_collateral(self, market):
        with pytest.raises(InvalidLoanTerms, match="asset == collateral"):
            market.request_loan(BORROWER, make_loan(collateral=ASSET))

    def test_threshold_bound(self, market):
        market.request_loan(BORROWER, make_loan(liquidation=liquidatable_terms(10_000)))
        with pytest.raises(InvalidLoanTerms):
            market.request_loan(BORROWER, make_loan(liquidation=liquidatable_terms(10_001)))

    def test_oracle_decimals_must_match(self, market, ledger):
        market.price_feeds[ASSET_FEED] = ManualPriceFeed(10 ** 18, decimals=18, clock=ledger)
        with pytest.raises(OracleDecimalsMismatch):
            market.request_loan(BORROWER, make_loan(liquidation=liquidatable_terms()))

    def test_decimals_ignored_when_not_liquidatable(self, market, ledger):
        market.price_feeds[ASSET_FEED] = ManualPriceFeed(10 ** 18, decimals=18, clock=ledger)
        terms = LiquidationTerms(
            is_liquidatable=False, liquidation_threshold=0,
            asset_oracle=ASSET_FEED, collateral_oracle="unregistered",
        )
        assert market.request_loan(BORROWER, make_loan(liquidation=terms)) == 0

    def test_unknown_feed(self, market):
        terms = LiquidationTerms(True, 8000, ASSET_FEED, "nope")
        with pytest.raises(UnknownPriceFeed):
            market.request_loan(BORROWER, make_loan(liquidation=terms))

    def test_malformed_encoding(self, market):
        with pytest.raises(MalformedLoan):
            market.request_loan(BORROWER, b"\x00garbage")

    @pytest.mark.parametrize("overrides", [
        dict(asset_amount=-5, repayment_amount=1, collateral_amount=-3),
        dict(asset_amount=1.5),
        dict(duration=True),
        dict(collateral_amount=None),
        dict(asset=7),
        dict(liquidation=None),
    ])
    def test_loan_object_fields_checked(self, market, overrides):
        """A Loan built in code is checked like a decoded one."""
        with pytest.raises(MalformedLoan):
            market.request_loan(BORROWER, make_loan(**overrides))
        assert market.loan_length() == 0
        assert len(market.events) == 0

    def test_failed_request_leaves_no_trace(self, market):
        with pytest.raises(InvalidLoanTerms):
            market.request_loan(BORROWER, make_loan(collateral=ASSET))
        assert market.loan_length() == 0
        assert len(market.events) == 0


class TestCancelLoan:

    def test_cancel(self, market):
        market.request_loan(BORROWER, make_loan())
        market.cancel_loan(BORROWER, 0)
        assert market.loans(0).status is LoanStatus.CANCELED
        assert market.events.of_type(LoanCanceled) == [LoanCanceled(0, BORROWER)]

    def test_cancel_twice(self, market):
        market.request_loan(BORROWER, make_loan())
        market.cancel_loan(BORROWER, 0)
        with pytest.raises(InvalidStatus, match="invalid status"):
            market.cancel_loan(BORROWER, 0)
        assert len(market.events.of_type(LoanCanceled)) == 1

    def test_only_borrower(self, market):
        market.request_loan(BORROWER, make_loan())
        with pytest.raises(Unauthorized, match="sender != borrower"):
            market.cancel_loan(OTHER, 0)
        assert market.loans(0).status is LoanStatus.PENDING

    def test_last_second_of_window(self, ledger, market):
        market.request_loan(BORROWER, make_loan())
        advance(ledger, 7 * DAY - 1)
        market.cancel_loan(BORROWER, 0)

    def test_expired(self, ledger, market):
        market.request_loan(BORROWER, make_loan())
        advance(ledger, 7 * DAY)
        with pytest.raises(RequestExpired, match="already expired"):
            market.cancel_loan(BORROWER, 0)

    def test_unknown_id_reads_as_expired(self, market):
        market.request_loan(BORROWER, make_loan())
        with pytest.raises(RequestExpired, match="already expired"):
            market.cancel_loan(BORROWER, 1)

    def test_expiry_checked_before_caller(self, ledger, market):
        market.request_loan(BORROWER, make_loan())
        advance(ledger, 8 * DAY)
        with pytest.raises(RequestExpired):
            market.cancel_loan(OTHER, 0)

    def test_expiration_follows_config(self, ledger, market):
        market.admin.set_request_expiration_duration(market.admin.owner, DAY)
        market.request_loan(BORROWER, make_loan())
        advance(ledger, DAY)
        with pytest.raises(RequestExpired):
            market.cancel_loan(BORROWER, 0)


class TestPrepareCancel:
    """Pure checks, in order: status, expiry, caller."""

    def test_status_checked_first(self):
        loan = make_loan(status=LoanStatus.ACTIVE, created_timestamp=0)
        with pytest.raises(InvalidStatus):
            prepare_cancel(loan, OTHER, 10 ** 9, DAY)

    def test_missing_loan(self):
        with pytest.raises(RequestExpired):
            prepare_cancel(None, BORROWER, 0, DAY)

    def test_result(self):
        loan = make_loan(created_timestamp=100)
        assert prepare_cancel(loan, BORROWER, 100, DAY).status is LoanStatus.CANCELED
