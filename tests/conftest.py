"""
conftest.py - Shared pytest fixtures for lending market tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the two scenario tokens and the scenario wallets
- Token handles and manual price feeds
- A market wired to the feeds, with funded borrower and lender
"""

import pytest

from p2p_lending import (
    Ledger, LedgerToken, LendingMarket, ManualPriceFeed, token,
)

from tests.scenario import (
    START, E18, ASSET, COLLATERAL,
    OWNER, BORROWER, LENDER, LIQUIDATOR, OTHER,
    ASSET_FEED, COLLATERAL_FEED, ASSET_PRICE, COLLATERAL_PRICE,
)


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Empty ledger at the scenario start time."""
    return Ledger("test", START, verbose=False)


@pytest.fixture
def ledger():
    """Ledger with ASSET and COLLAT registered and the scenario wallets."""
    ledger = Ledger("test", START, verbose=False)
    ledger.register_unit(token(ASSET, "Asset"))
    ledger.register_unit(token(COLLATERAL, "Collateral"))
    for wallet in (OWNER, BORROWER, LENDER, LIQUIDATOR, OTHER):
        ledger.register_wallet(wallet)
    return ledger


@pytest.fixture
def asset_token(ledger):
    return LedgerToken(ledger, ASSET)


@pytest.fixture
def collateral_token(ledger):
    return LedgerToken(ledger, COLLATERAL)


@pytest.fixture
def asset_feed(ledger):
    return ManualPriceFeed(ASSET_PRICE, decimals=8, clock=ledger)


@pytest.fixture
def collateral_feed(ledger):
    return ManualPriceFeed(COLLATERAL_PRICE, decimals=8, clock=ledger)


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market(ledger, asset_feed, collateral_feed):
    """Market owned by OWNER (also the fee collector) with both feeds registered."""
    return LendingMarket(
        ledger,
        owner=OWNER,
        price_feeds={ASSET_FEED: asset_feed, COLLATERAL_FEED: collateral_feed},
    )


@pytest.fixture
def funded_market(market, asset_token, collateral_token):
    """
    Market whose participants hold:
        borrower: 100 ASSET (to pay interest), 100 COLLAT
        lender:   100 ASSET
    """
    asset_token.mint(BORROWER, 100 * E18)
    asset_token.mint(LENDER, 100 * E18)
    collateral_token.mint(BORROWER, 100 * E18)
    return market
