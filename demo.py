#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Loan from Request to Liquidation

A step-by-step walk through the lending market. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3: Setup        - Tokens, wallets, price feeds, the market
  4-6: Lifecycle    - Request, fill, repay, and where every token goes
  7-8: Liquidation  - Price-based and time-based default
  9:   Safety       - A failed operation changes nothing

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from p2p_lending import (
    Ledger, LedgerToken, LendingMarket, LiquidationTerms, Loan, ManualPriceFeed,
    LedgerError, encode_loan, token,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # 6-decimal stablecoin borrowed against 18-decimal ether
    usdc_decimals: int = 6
    weth_decimals: int = 18

    # Prices with 8 feed decimals
    usdc_price: int = 1 * 10 ** 8
    weth_price: int = 2_000 * 10 ** 8
    weth_crash_price: int = 1_100 * 10 ** 8

    # Loan terms
    principal_usdc: int = 1_000
    repayment_usdc: int = 1_050
    collateral_weth_tenths: int = 7       # 0.7 WETH
    duration_days: int = 30
    threshold_bps: int = 8000


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def usdc(amount: int) -> int:
    return amount * 10 ** CONFIG.usdc_decimals


def show_balances(ledger: Ledger, wallets):
    for wallet in wallets:
        bal = ledger.get_wallet_balances(wallet)
        usdc_bal = bal.get("USDC", 0) / 10 ** CONFIG.usdc_decimals
        weth_bal = bal.get("WETH", 0) / 10 ** CONFIG.weth_decimals
        print(f"  {wallet:<16} {usdc_bal:>12,.2f} USDC {weth_bal:>10.4f} WETH")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_tokens():
    step_header(1, "Tokens and Wallets",
        "Register two tokens with different decimals and fund the participants.")

    ledger = Ledger("lending_demo", CONFIG.start_time, verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimals=CONFIG.usdc_decimals))
    ledger.register_unit(token("WETH", "Wrapped Ether", decimals=CONFIG.weth_decimals))
    for wallet in ("alice", "bob", "keeper", "treasury"):
        ledger.register_wallet(wallet)

    LedgerToken(ledger, "USDC").mint("bob", usdc(10_000))
    LedgerToken(ledger, "USDC").mint("alice", usdc(100))
    LedgerToken(ledger, "WETH").mint("alice", 5 * 10 ** 18)

    print("alice will borrow; bob will lend.\n")
    show_balances(ledger, ("alice", "bob"))
    return ledger


def step_02_market(ledger: Ledger):
    step_header(2, "The Market",
        "A market is a wallet that escrows collateral, plus a loan registry.")

    usdc_feed = ManualPriceFeed(CONFIG.usdc_price, clock=ledger)
    weth_feed = ManualPriceFeed(CONFIG.weth_price, clock=ledger)
    market = LendingMarket(
        ledger, owner="treasury",
        price_feeds={"usdc_usd": usdc_feed, "weth_usd": weth_feed},
    )
    config = market.config
    print(f"Owner / fee collector: {config.owner} / {config.fee_collector}")
    print(f"Protocol fee:          {config.protocol_fee_bps} bps of interest")
    print(f"Liquidator bonus:      {config.liquidator_bonus_bps} bps of collateral")
    print(f"Protocol liq. fee:     {config.protocol_liquidation_fee_bps} bps of collateral")
    print(f"Request window:        {config.request_expiration_duration // 86400} days")
    return market, weth_feed


def build_loan() -> Loan:
    return Loan(
        borrower="alice",
        asset="USDC",
        collateral="WETH",
        asset_amount=usdc(CONFIG.principal_usdc),
        repayment_amount=usdc(CONFIG.repayment_usdc),
        collateral_amount=CONFIG.collateral_weth_tenths * 10 ** 17,
        duration=CONFIG.duration_days * 86400,
        liquidation=LiquidationTerms(True, CONFIG.threshold_bps, "usdc_usd", "weth_usd"),
    )


def step_03_request(market: LendingMarket):
    step_header(3, "Requesting a Loan",
        "The borrower publishes terms. Nothing moves yet.")

    loan = build_loan()
    print(encode_loan(loan).decode())
    loan_id = market.request_loan("alice", encode_loan(loan))
    print(f"\nLoan {loan_id}: {market.loans(loan_id).status.name}")
    return loan_id


# ============================================================================
# PHASE 2: LIFECYCLE (Steps 4-6)
# ============================================================================

def open_position(market: LendingMarket, loan_id: int):
    loan = market.loans(loan_id)
    LedgerToken(market.ledger, "WETH").approve("alice", market.address, loan.collateral_amount)
    LedgerToken(market.ledger, "USDC").approve("bob", market.address, loan.asset_amount)
    market.fill_request("bob", loan_id)


def step_04_fill(market: LendingMarket, loan_id: int):
    step_header(4, "Filling the Request",
        "One atomic transaction escrows the collateral and pays the principal.")

    open_position(market, loan_id)
    loan = market.loans(loan_id)
    print(f"Loan {loan_id}: {loan.status.name}, lender={loan.lender}, matures {loan.maturity}")
    show_balances(market.ledger, ("alice", "bob", market.address))


def step_05_repay(market: LendingMarket, loan_id: int):
    step_header(5, "Repaying",
        "The lender gets repayment minus the protocol's share of the interest.")

    ledger = market.ledger
    ledger.advance_time(ledger.current_time + timedelta(days=20))
    loan = market.loans(loan_id)
    LedgerToken(ledger, "USDC").approve("alice", market.address, loan.repayment_amount)
    market.repay_loan("alice", loan_id)
    show_balances(ledger, ("alice", "bob", "treasury", market.address))


def step_06_events(market: LendingMarket):
    step_header(6, "The Event Log",
        "Every state change is published after it is committed.")
    for event in market.events:
        print(f"  {event}")


# ============================================================================
# PHASE 3: LIQUIDATION (Steps 7-8)
# ============================================================================

def step_07_price_liquidation(market: LendingMarket, weth_feed: ManualPriceFeed):
    step_header(7, "Liquidation on Price",
        "When collateral value times the threshold falls below the debt, anyone may liquidate.")

    loan_id = market.request_loan("alice", build_loan())
    open_position(market, loan_id)
    print(f"WETH at 2,000: liquidatable = {market.is_loan_liquidatable(loan_id)}")

    weth_feed.set_answer(CONFIG.weth_crash_price)
    print(f"WETH at 1,100: liquidatable = {market.is_loan_liquidatable(loan_id)}")
    market.liquidate_loan("keeper", loan_id)
    show_balances(market.ledger, ("bob", "keeper", "treasury", market.address))
    weth_feed.set_answer(CONFIG.weth_price)


def step_08_time_liquidation(market: LendingMarket):
    step_header(8, "Liquidation after Maturity",
        "An unpaid loan is in default one second after maturity, whatever the prices.")

    ledger = market.ledger
    loan_id = market.request_loan("alice", build_loan())
    open_position(market, loan_id)
    maturity = ledger.current_time + timedelta(days=CONFIG.duration_days)
    ledger.advance_time(maturity)
    print(f"At maturity:      liquidated = {market.liquidate_loan('keeper', loan_id)}")
    ledger.advance_time(maturity + timedelta(seconds=1))
    print(f"One second later: liquidated = {market.liquidate_loan('keeper', loan_id)}")


# ============================================================================
# PHASE 4: SAFETY (Step 9)
# ============================================================================

def step_09_atomicity(market: LendingMarket):
    step_header(9, "All or Nothing",
        "A fill without the lender's approval fails and leaves no trace.")

    loan_id = market.request_loan("alice", build_loan())
    LedgerToken(market.ledger, "WETH").approve("alice", market.address, 10 ** 18)
    try:
        market.fill_request("bob", loan_id)
    except LedgerError as e:
        print(f"Rejected: {type(e).__name__}: {e}")
    print(f"Loan {loan_id}: {market.loans(loan_id).status.name}")
    print(f"Escrow WETH: {market.escrow_balance('WETH')}")

    check = market.ledger.verify_double_entry()
    print(f"\nConservation holds: {check['valid']}")


def main():
    print("\n" + "=" * 70)
    print("       PEER-TO-PEER LENDING: A GUIDED TOUR")
    print("=" * 70)

    ledger = step_01_tokens()
    wait_for_enter()
    market, weth_feed = step_02_market(ledger)
    wait_for_enter()
    loan_id = step_03_request(market)
    wait_for_enter()

    step_04_fill(market, loan_id)
    wait_for_enter()
    step_05_repay(market, loan_id)
    wait_for_enter()
    step_06_events(market)
    wait_for_enter()

    step_07_price_liquidation(market, weth_feed)
    wait_for_enter()
    step_08_time_liquidation(market)
    wait_for_enter()

    step_09_atomicity(market)

    print("\n" + "=" * 70)
    print("       TOUR COMPLETE")
    print("=" * 70)
    print("""
    Next steps:
      - See p2p_lending/market.py for the five operations
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
