"""
loan.py - The loan record and its wire encoding.

=== LOAN MODEL ===

One Loan per request. Identity and terms are fixed at creation:
    - borrower, asset, collateral
    - asset_amount (principal), repayment_amount (owed at maturity),
      collateral_amount (locked at fill)
    - duration, liquidation terms

Lifecycle fields change only through market transitions:
    - lender: ZERO_ADDRESS until filled, set exactly once
    - start_timestamp: 0 until filled
    - status: forward only

    PENDING ──fill──> ACTIVE ──repay──> REPAID
       │                 └──liquidate──> LIQUIDATED
       └──cancel──> CANCELED

Loans are frozen dataclasses. A transition produces a new record with
dataclasses.replace(); the registry swaps it in.

=== ENCODING ===

encode_loan / decode_loan map a Loan to canonical JSON (sorted keys,
integer status). Anything that does not decode into a well-typed record
raises MalformedLoan.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
import json
from typing import Any, Dict, FrozenSet, Mapping, Union

from .core import ZERO_ADDRESS, MalformedLoan


# =============================================================================
# ENUMS
# =============================================================================

class LoanStatus(int, Enum):
    """Status of a loan. Integer values are part of the encoding."""
    PENDING = 0       # Requested, waiting for a lender
    CANCELED = 1      # Withdrawn by the borrower before a fill
    ACTIVE = 2        # Filled, collateral in escrow
    REPAID = 3        # Settled by the borrower
    LIQUIDATED = 4    # Collateral distributed after default or insolvency

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[LoanStatus] = frozenset({
    LoanStatus.CANCELED, LoanStatus.REPAID, LoanStatus.LIQUIDATED,
})

ALLOWED_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.PENDING: frozenset({LoanStatus.ACTIVE, LoanStatus.CANCELED}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.REPAID, LoanStatus.LIQUIDATED}),
    LoanStatus.CANCELED: frozenset(),
    LoanStatus.REPAID: frozenset(),
    LoanStatus.LIQUIDATED: frozenset(),
}


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    """True if status may move from current to target."""
    return target in ALLOWED_TRANSITIONS[current]


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True, slots=True)
class LiquidationTerms:
    """
    Opt-in price-based liquidation.

    Attributes:
        is_liquidatable: Whether insolvency (not just default) can trigger liquidation
        liquidation_threshold: Fraction of collateral value the debt may reach, in bps
        asset_oracle: Feed id pricing the asset
        collateral_oracle: Feed id pricing the collateral
    """
    is_liquidatable: bool = False
    liquidation_threshold: int = 0
    asset_oracle: str = ""
    collateral_oracle: str = ""


@dataclass(frozen=True, slots=True)
class Loan:
    """A peer-to-peer loan. Amounts are native token units; times are UNIX seconds."""
    borrower: str
    asset: str
    collateral: str
    asset_amount: int
    repayment_amount: int
    collateral_amount: int
    duration: int
    liquidation: LiquidationTerms = LiquidationTerms()
    lender: str = ZERO_ADDRESS
    created_timestamp: int = 0
    start_timestamp: int = 0
    status: LoanStatus = LoanStatus.PENDING

    @property
    def interest(self) -> int:
        """Fixed interest agreed at origination."""
        return self.repayment_amount - self.asset_amount

    @property
    def maturity(self) -> int:
        """Last second at which the loan is not yet in default (0 before a fill)."""
        if self.start_timestamp == 0:
            return 0
        return self.start_timestamp + self.duration

    def request_expires_at(self, expiration_duration: int) -> int:
        """First second at which the request can no longer be filled or canceled."""
        return self.created_timestamp + expiration_duration

    def with_changes(self, **changes: Any) -> Loan:
        return replace(self, **changes)


# =============================================================================
# ENCODING
# =============================================================================

_ADDRESS_FIELDS = ("borrower", "lender", "asset", "collateral")
_INT_FIELDS = (
    "asset_amount", "repayment_amount", "collateral_amount",
    "created_timestamp", "start_timestamp", "duration",
)


def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    """Plain-dict form of a loan (JSON-compatible)."""
    return {
        "borrower": loan.borrower,
        "lender": loan.lender,
        "asset": loan.asset,
        "collateral": loan.collateral,
        "asset_amount": loan.asset_amount,
        "repayment_amount": loan.repayment_amount,
        "collateral_amount": loan.collateral_amount,
        "created_timestamp": loan.created_timestamp,
        "start_timestamp": loan.start_timestamp,
        "duration": loan.duration,
        "liquidation": {
            "is_liquidatable": loan.liquidation.is_liquidatable,
            "liquidation_threshold": loan.liquidation.liquidation_threshold,
            "asset_oracle": loan.liquidation.asset_oracle,
            "collateral_oracle": loan.liquidation.collateral_oracle,
        },
        "status": int(loan.status),
    }


def encode_loan(loan: Loan) -> bytes:
    """Canonical JSON encoding of a loan."""
    return json.dumps(loan_to_dict(loan), sort_keys=True, separators=(",", ":")).encode()


def _field(data: Mapping[str, Any], name: str) -> Any:
    if name not in data:
        raise MalformedLoan(f"missing field: {name}")
    return data[name]


def _uint(data: Mapping[str, Any], name: str) -> int:
    value = _field(data, name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedLoan(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise MalformedLoan(f"{name} must be non-negative, got {value}")
    return value


def _str(data: Mapping[str, Any], name: str) -> str:
    value = _field(data, name)
    if not isinstance(value, str):
        raise MalformedLoan(f"{name} must be a string, got {type(value).__name__}")
    return value


def decode_loan(raw: Union[bytes, str, Mapping[str, Any], Loan]) -> Loan:
    """
    Decode a loan from JSON bytes/str, an already-parsed mapping, or a Loan.

    A Loan built in code gets the same integer and string checks as a
    decoded one.

    Raises:
        MalformedLoan: On undecodable JSON, missing fields or wrong types
    """
    if isinstance(raw, Loan):
        if not isinstance(raw.liquidation, LiquidationTerms):
            raise MalformedLoan("liquidation must be LiquidationTerms")
        if not isinstance(raw.status, LoanStatus):
            raise MalformedLoan("status must be a LoanStatus")
        data = loan_to_dict(raw)
    elif isinstance(raw, (bytes, bytearray, str)):
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedLoan(f"undecodable loan record: {e}") from e
    else:
        data = raw
    if not isinstance(data, Mapping):
        raise MalformedLoan("loan record must be an object")

    liq = _field(data, "liquidation")
    if not isinstance(liq, Mapping):
        raise MalformedLoan("liquidation must be an object")
    is_liquidatable = _field(liq, "is_liquidatable")
    if not isinstance(is_liquidatable, bool):
        raise MalformedLoan("is_liquidatable must be a boolean")

    status_value = _uint(data, "status")
    try:
        status = LoanStatus(status_value)
    except ValueError:
        raise MalformedLoan(f"unknown status: {status_value}") from None

    addresses = {name: _str(data, name) for name in _ADDRESS_FIELDS}
    amounts = {name: _uint(data, name) for name in _INT_FIELDS}

    return Loan(
        liquidation=LiquidationTerms(
            is_liquidatable=is_liquidatable,
            liquidation_threshold=_uint(liq, "liquidation_threshold"),
            asset_oracle=_str(liq, "asset_oracle"),
            collateral_oracle=_str(liq, "collateral_oracle"),
        ),
        status=status,
        **addresses,
        **amounts,
    )
