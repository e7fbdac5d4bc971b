"""
p2p_lending - Isolated Peer-to-Peer Lending Market

A borrower posts collateral to borrow an asset from a lender under terms fixed
at request time. Loans end by repayment, or by liquidation after default or
(opt-in) oracle-priced insolvency. Value moves on a double-entry Ledger.

Usage:
    from p2p_lending import (
        Ledger, LedgerToken, LendingMarket, ManualPriceFeed,
        Loan, encode_loan, token,
    )

    ledger = Ledger("main", verbose=False)
    ledger.register_unit(token("USDC", "USD Coin", decimals=6))
    ledger.register_unit(token("WETH", "Wrapped Ether"))
    for wallet in ("owner", "alice", "bob"):
        ledger.register_wallet(wallet)

    market = LendingMarket(ledger, owner="owner")
    usdc, weth = LedgerToken(ledger, "USDC"), LedgerToken(ledger, "WETH")
    weth.mint("alice", 10**18)
    usdc.mint("bob", 1_000 * 10**6)

    loan_id = market.request_loan("alice", encode_loan(Loan(
        borrower="alice", asset="USDC", collateral="WETH",
        asset_amount=1_000 * 10**6, repayment_amount=1_100 * 10**6,
        collateral_amount=10**18, duration=30 * 86_400,
    )))
    weth.approve("alice", market.address, 10**18)
    usdc.approve("bob", market.address, 1_000 * 10**6)
    market.fill_request("bob", loan_id)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    settlement_leg,
    Unit,
    ExecuteResult,
    token,
    unix_time,
    SYSTEM_WALLET,
    ZERO_ADDRESS,
    BPS_DENOMINATOR,
    PRECISION_FACTOR,
    SECONDS_PER_DAY,
    # Exceptions
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    DuplicateSettlement,
    LoanValidationError,
    MalformedLoan,
    Unauthorized,
    InvalidLoanTerms,
    InvalidStatus,
    RequestExpired,
    InstantlyLiquidatable,
    UnknownLoan,
    ConfigurationError,
    OracleError,
    InvalidOraclePrice,
    StaleOraclePrice,
    OracleUnavailable,
    UnknownPriceFeed,
    OracleDecimalsMismatch,
    ReentrantCall,
)

# Value-transfer medium
from .ledger import Ledger
from .erc20 import TransferableAsset, LedgerToken

# Oracle adapter
from .oracle import (
    PriceFeed, PriceQuote, ManualPriceFeed, TimeSeriesPriceFeed,
    read_price, usd_value, resolve_feed,
)

# Fee calculator
from .fees import (
    RepaymentSplit, LiquidationSplit,
    bps_of, compute_repayment_split, compute_liquidation_split,
)

# Loan records
from .loan import (
    Loan, LiquidationTerms, LoanStatus,
    ALLOWED_TRANSITIONS, TERMINAL_STATUSES, can_transition,
    encode_loan, decode_loan, loan_to_dict,
)
from .registry import LoanRegistry

# Configuration and events
from .config import MarketConfig, MarketAdmin
from .events import (
    Event, EventLog,
    LoanRequested, LoanCanceled, LoanFilled, LoanRepaid, LoanLiquidated, ProtocolRevenue,
    FeeCollectorUpdated, ExpirationDurationUpdated, ProtocolFeeUpdated,
    LiquidatorBonusUpdated, ProtocolLiquidationFeeUpdated, MaxOraclePriceAgeUpdated,
)

# Engines
from .requests import prepare_request, prepare_cancel, validate_terms
from .fill import prepare_fill, check_not_instantly_liquidatable, compute_fill_settlement
from .repayment import prepare_repay, compute_repayment_settlement
from .liquidation import (
    is_liquidatable, is_defaulted, is_insolvent,
    prepare_liquidation, compute_liquidation_settlement,
)

# Market
from .market import LendingMarket
from .keeper import LiquidationKeeper

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin',
    'OriginType', 'build_transaction', 'empty_pending_transaction', 'settlement_leg',
    'Unit', 'ExecuteResult', 'token', 'unix_time',
    'SYSTEM_WALLET', 'ZERO_ADDRESS', 'BPS_DENOMINATOR', 'PRECISION_FACTOR', 'SECONDS_PER_DAY',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'InsufficientAllowance',
    'BalanceConstraintViolation', 'TransferRuleViolation', 'UnitNotRegistered',
    'WalletNotRegistered', 'DuplicateSettlement', 'LoanValidationError', 'MalformedLoan',
    'Unauthorized', 'InvalidLoanTerms', 'InvalidStatus', 'RequestExpired',
    'InstantlyLiquidatable', 'UnknownLoan', 'ConfigurationError', 'OracleError',
    'InvalidOraclePrice', 'StaleOraclePrice', 'OracleUnavailable', 'UnknownPriceFeed',
    'OracleDecimalsMismatch', 'ReentrantCall',
    # Ledger and tokens
    'Ledger', 'TransferableAsset', 'LedgerToken',
    # Oracle
    'PriceFeed', 'PriceQuote', 'ManualPriceFeed', 'TimeSeriesPriceFeed',
    'read_price', 'usd_value', 'resolve_feed',
    # Fees
    'RepaymentSplit', 'LiquidationSplit', 'bps_of',
    'compute_repayment_split', 'compute_liquidation_split',
    # Loans
    'Loan', 'LiquidationTerms', 'LoanStatus', 'ALLOWED_TRANSITIONS', 'TERMINAL_STATUSES',
    'can_transition', 'encode_loan', 'decode_loan', 'loan_to_dict', 'LoanRegistry',
    # Config and events
    'MarketConfig', 'MarketAdmin',
    'Event', 'EventLog', 'LoanRequested', 'LoanCanceled', 'LoanFilled', 'LoanRepaid',
    'LoanLiquidated', 'ProtocolRevenue', 'FeeCollectorUpdated', 'ExpirationDurationUpdated',
    'ProtocolFeeUpdated', 'LiquidatorBonusUpdated', 'ProtocolLiquidationFeeUpdated',
    'MaxOraclePriceAgeUpdated',
    # Engines
    'prepare_request', 'prepare_cancel', 'validate_terms',
    'prepare_fill', 'check_not_instantly_liquidatable', 'compute_fill_settlement',
    'prepare_repay', 'compute_repayment_settlement',
    'is_liquidatable', 'is_defaulted', 'is_insolvent',
    'prepare_liquidation', 'compute_liquidation_settlement',
    # Market
    'LendingMarket', 'LiquidationKeeper',
]

__version__ = '1.0.0'
