"""
Core types and pure functions for the peer-to-peer lending market.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending fault taxonomy
4. Type aliases: Positions, BalanceMap
5. Unit factories: token() for fungible token definitions

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.

Amounts are Python ints in native token units (wei-style). Integer arithmetic
is unbounded, so splits and valuations never overflow and never round
except where a floor division says so.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import hashlib
from typing import (
    Dict, List, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Unset counterparty sentinel (a loan's lender before it is filled).
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

UNIT_TYPE_TOKEN = "TOKEN"

# 10000 bps = 100%
BPS_DENOMINATOR = 10_000

# Fixed scale for USD-equivalent valuations.
PRECISION_FACTOR = 10 ** 18

SECONDS_PER_DAY = 24 * 60 * 60

_EPOCH = datetime(1970, 1, 1)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]


def unix_time(moment: datetime) -> int:
    """
    Integer UNIX seconds for a ledger timestamp.

    Naive datetimes are read as UTC, matching the ledger's logical clock.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return int((moment - _EPOCH).total_seconds())


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Engines and oracle adapters accept a LedgerView to declare that they only
    read balances, allowances, token metadata and the clock. The Ledger class
    implements this protocol but also provides mutation methods. For testing,
    FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Return the balance of a specific unit in a wallet.

        Returns 0 if the wallet holds nothing of the unit.
        """
        ...

    def get_allowance(self, owner: str, spender: str, unit_symbol: str) -> int:
        """Return how much of owner's unit the spender may still pull."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """
        Return all non-zero positions for a unit across all wallets.

        Returns a dictionary mapping wallet IDs to quantities.
        """
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was successfully validated and applied to the ledger.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation due to insufficient funds, missing
              allowance, balance constraints, or transfer rule violations.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Direct token transfer by a wallet owner
    MARKET = "market"                     # Loan lifecycle settlement
    SYSTEM = "system"                     # Issuance, initial setup


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and lending errors."""
    pass


# --- value-transfer faults --------------------------------------------------

class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a transferFrom-style move exceeds the spender's allowance."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would cause a wallet balance to exceed the unit's maximum."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    pass


class DuplicateSettlement(LedgerError):
    """Raised when a settlement with an already-applied intent is submitted again."""
    pass


# --- validation faults -------------------------------------------------------

class LoanValidationError(LedgerError):
    """Caller error. The operation is aborted with no state change."""
    pass


class MalformedLoan(LoanValidationError):
    """The loan record could not be decoded."""
    pass


class Unauthorized(LoanValidationError):
    """The caller is not allowed to perform the operation."""
    pass


class InvalidLoanTerms(LoanValidationError):
    """The loan terms violate a creation invariant."""
    pass


class InvalidStatus(LoanValidationError):
    """The loan is not in the status the transition requires."""
    pass


class RequestExpired(LoanValidationError):
    """The request window has closed (or the loan id was never created)."""
    pass


class InstantlyLiquidatable(LoanValidationError):
    """Filling would create a loan that is already insolvent."""
    pass


class UnknownLoan(LoanValidationError):
    """No loan exists under the requested id."""
    pass


class ConfigurationError(LedgerError):
    """An administrative parameter is outside its allowed bounds."""
    pass


# --- oracle faults -----------------------------------------------------------

class OracleError(LedgerError):
    """Base class for price-feed faults. Never interpreted as a business answer."""
    pass


class InvalidOraclePrice(OracleError):
    """The feed reported a zero or negative price."""
    pass


class StaleOraclePrice(OracleError):
    """The feed's last update is older than the allowed age."""
    pass


class OracleUnavailable(OracleError):
    """The feed explicitly failed to answer."""
    pass


class UnknownPriceFeed(OracleError):
    """A loan references a feed id the market does not know."""
    pass


class OracleDecimalsMismatch(InvalidLoanTerms, OracleError):
    """
    The two feeds of a liquidatable loan use different price precision.

    Rejects a request as bad terms; after a fill it is a feed fault like any other.
    """
    pass


# --- concurrency --------------------------------------------------------------

class ReentrantCall(LedgerError):
    """A public operation was entered while another one was still in flight."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source (USER_ACTION, MARKET, SYSTEM)
        source_id: Identifier of the specific source (wallet, market name, ...)
        loan_id: Loan whose transition produced this transaction (if applicable)
        event_type: Specific event within the source (e.g., "FILL", "REPAY", "TRANSFER")
    """
    origin_type: OriginType
    source_id: str
    loan_id: Optional[int] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.loan_id is not None:
            parts.append(f"loan={self.loan_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer in native units (positive int).
        unit_symbol: The symbol of the token being transferred.
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the settlement leg generating this move.
        spender: Wallet pulling the funds on the source's behalf. When set and
            different from source, the move consumes allowance.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    spender: Optional[str] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    @property
    def pulled(self) -> bool:
        """True when a third party moves the source's funds (transferFrom)."""
        return self.spender is not None and self.spender != self.source

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def settlement_leg(
    quantity: int,
    unit_symbol: str,
    source: str,
    dest: str,
    contract_id: str,
    spender: Optional[str] = None,
) -> Optional[Move]:
    """
    Move for one leg of a settlement, or None when the leg transfers nothing.

    Zero-quantity legs and legs whose source is also the destination move no
    value, so they are left out of the transaction rather than rejected.
    """
    if quantity == 0 or source == dest:
        return None
    return Move(quantity, unit_symbol, source, dest, contract_id, spender)


def _compute_intent_id(
    moves: Tuple[Move, ...],
    origin: TransactionOrigin,
    memo: str = "",
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The hash covers moves, origin and memo, never timestamps or ledger
    bookkeeping, so the same business intent always hashes the same way.
    Used for idempotency checking: value moves at most once per intent.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id, m.spender or ""),
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.loan_id is not None:
        content_parts.append(f"loan:{origin.loan_id}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    if memo:
        content_parts.append(f"memo:{memo}")

    for m in sorted_moves:
        content_parts.append(
            f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}|{m.spender or ''}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Created by the settlement engines and submitted to the ledger for execution.

    Lifecycle:
    1. An engine creates PendingTransaction with moves, origin, timestamp
    2. intent_id is auto-computed from content (deterministic hash)
    3. Ledger.execute() validates and executes, creating a Transaction record

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        memo: Free-form discriminator folded into the intent hash
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    memo: str = ""
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(self.moves, self.origin, self.memo)
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
    memo: str = "",
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves.

    This is the standard way to create transactions.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        origin: Transaction origin (defaults to a SYSTEM origin)
        memo: Optional discriminator for otherwise identical intents

    Returns:
        A PendingTransaction ready for execution

    Example:
        tx = build_transaction(view, [
            Move(10**18, "WETH", "alice", "bob", "payment_001")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.SYSTEM,
            source_id="system",
        )

    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        timestamp=view.current_time,
        memo=memo,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """
    Create an empty PendingTransaction (no moves).

    Use this when a settlement has nothing to transfer.
    """
    return PendingTransaction(
        moves=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            via = f" (via {move.spender})" if move.pulled else ""
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}{via}"
            lines.append(f"│{pad(move_str)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Type alias for transfer rule functions.
# Transfer rules validate moves and raise TransferRuleViolation if invalid.
# They are also where a foreign token implementation runs its own code.
TransferRule = Callable[[LedgerView, Move], None]


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a fungible token registered with the ledger.

    Attributes:
        symbol: Short identifier for the token (e.g., "USDC", "WETH").
        name: Human-readable name for the token.
        unit_type: Category of the unit (TOKEN).
        decimals: Number of decimals of the native unit (18 for ETH-style tokens).
        min_balance: Minimum allowed balance in any wallet (0 for tokens).
        max_balance: Maximum allowed balance in any wallet (None = unbounded).
        transfer_rule: Optional hook run against every move of this unit.
    """
    symbol: str
    name: str
    unit_type: str = UNIT_TYPE_TOKEN
    decimals: int = 18
    min_balance: int = 0
    max_balance: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None

    def __post_init__(self):
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int) or self.decimals < 0:
            raise ValueError(f"decimals must be a non-negative int, got {self.decimals!r}")

    @property
    def one(self) -> int:
        """Native units in one whole token."""
        return 10 ** self.decimals


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(
    symbol: str,
    name: str,
    decimals: int = 18,
    transfer_rule: Optional[TransferRule] = None,
) -> Unit:
    """
    Create a fungible token unit.

    Args:
        symbol: Token symbol (e.g., "USDC").
        name: Full name (e.g., "USD Coin").
        decimals: Native-unit decimals (default: 18).
        transfer_rule: Optional hook validating every move of the token.

    Returns:
        A Unit with a zero balance floor, so no wallet can go negative.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimals=decimals,
        min_balance=0,
        transfer_rule=transfer_rule,
    )
