"""
registry.py - Append-only store of loan records.

The registry exclusively owns loan records. Records are frozen, so readers
can never alias mutable state; a transition replaces the record under its id.

Invariants enforced on every replace():
    - status only moves along ALLOWED_TRANSITIONS
    - terminal records never change
    - identity and terms never change
    - lender is set exactly once, on PENDING -> ACTIVE
"""

from __future__ import annotations
from typing import Iterator, List, Optional, Tuple

from .core import ZERO_ADDRESS, InvalidStatus, UnknownLoan, LedgerError
from .loan import Loan, LoanStatus, can_transition


_IMMUTABLE_FIELDS = (
    "borrower", "asset", "collateral",
    "asset_amount", "repayment_amount", "collateral_amount",
    "duration", "liquidation", "created_timestamp",
)


class LoanRegistry:
    """Loans keyed by sequential integer id starting at 0."""

    def __init__(self):
        self._loans: List[Loan] = []

    def __len__(self) -> int:
        return len(self._loans)

    def loan_length(self) -> int:
        return len(self._loans)

    def find(self, loan_id: int) -> Optional[Loan]:
        """Loan under id, or None if it was never created."""
        if isinstance(loan_id, bool) or not isinstance(loan_id, int):
            return None
        if 0 <= loan_id < len(self._loans):
            return self._loans[loan_id]
        return None

    def get(self, loan_id: int) -> Loan:
        loan = self.find(loan_id)
        if loan is None:
            raise UnknownLoan(f"unknown loan id {loan_id}")
        return loan

    def append(self, loan: Loan) -> int:
        """Store a new PENDING loan and return its id."""
        if loan.status is not LoanStatus.PENDING:
            raise InvalidStatus("invalid status")
        self._loans.append(loan)
        return len(self._loans) - 1

    def replace(self, loan_id: int, new: Loan) -> Loan:
        """
        Swap in the next state of a loan.

        Returns:
            The previous record (the caller keeps it for rollback)

        Raises:
            UnknownLoan: If no loan exists under id
            InvalidStatus: If the transition is not allowed
            LedgerError: If an immutable field would change
        """
        old = self.get(loan_id)
        if not can_transition(old.status, new.status):
            raise InvalidStatus("invalid status")
        for name in _IMMUTABLE_FIELDS:
            if getattr(old, name) != getattr(new, name):
                raise LedgerError(f"loan {loan_id}: {name} is immutable")
        if old.lender != new.lender and old.lender != ZERO_ADDRESS:
            raise LedgerError(f"loan {loan_id}: lender already set")
        if old.start_timestamp != new.start_timestamp and old.status is not LoanStatus.PENDING:
            raise LedgerError(f"loan {loan_id}: start_timestamp already set")
        self._loans[loan_id] = new
        return old

    def restore(self, loan_id: int, previous: Loan) -> None:
        """Undo a replace() whose operation failed."""
        self.get(loan_id)
        self._loans[loan_id] = previous

    def ids_with_status(self, status: LoanStatus) -> Iterator[int]:
        """Ids of loans currently in status, in id order."""
        for loan_id, loan in enumerate(self._loans):
            if loan.status is status:
                yield loan_id

    def snapshot(self) -> Tuple[Loan, ...]:
        return tuple(self._loans)

    def __iter__(self) -> Iterator[Loan]:
        return iter(tuple(self._loans))

    def __repr__(self) -> str:
        return f"LoanRegistry({len(self._loans)} loans)"
