"""
events.py - Market and administration events.

Events are immutable records appended to an EventLog once the operation that
produced them has committed. A failed operation publishes nothing.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Iterable, Iterator, List, Optional, Type, TypeVar


logger = logging.getLogger(__name__)


class Event:
    """Marker base class for all events."""
    __slots__ = ()


# =============================================================================
# LOAN LIFECYCLE
# =============================================================================

@dataclass(frozen=True, slots=True)
class LoanRequested(Event):
    loan_id: int
    borrower: str


@dataclass(frozen=True, slots=True)
class LoanCanceled(Event):
    loan_id: int
    borrower: str


@dataclass(frozen=True, slots=True)
class LoanFilled(Event):
    loan_id: int
    borrower: str
    lender: str


@dataclass(frozen=True, slots=True)
class LoanRepaid(Event):
    loan_id: int
    borrower: str
    lender: str


@dataclass(frozen=True, slots=True)
class LoanLiquidated(Event):
    loan_id: int


@dataclass(frozen=True, slots=True)
class ProtocolRevenue(Event):
    """Fee taken by the protocol, denominated in token."""
    loan_id: int
    token: str
    amount: int


# =============================================================================
# ADMINISTRATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class FeeCollectorUpdated(Event):
    old: str
    new: str


@dataclass(frozen=True, slots=True)
class ExpirationDurationUpdated(Event):
    old: int
    new: int


@dataclass(frozen=True, slots=True)
class ProtocolFeeUpdated(Event):
    old: int
    new: int


@dataclass(frozen=True, slots=True)
class LiquidatorBonusUpdated(Event):
    old: int
    new: int


@dataclass(frozen=True, slots=True)
class ProtocolLiquidationFeeUpdated(Event):
    old: int
    new: int


@dataclass(frozen=True, slots=True)
class MaxOraclePriceAgeUpdated(Event):
    old: int
    new: int


E = TypeVar("E", bound=Event)


class EventLog:
    """Append-only, ordered record of published events."""

    def __init__(self):
        self._events: List[Event] = []

    def publish(self, events: Iterable[Event]) -> None:
        for event in events:
            self._events.append(event)
            logger.info("event %r", event)

    def of_type(self, event_type: Type[E]) -> List[E]:
        """All published events of a given class, oldest first."""
        return [e for e in self._events if isinstance(e, event_type)]

    def last(self) -> Optional[Event]:
        return self._events[-1] if self._events else None

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(tuple(self._events))

    def __repr__(self) -> str:
        return f"EventLog({len(self._events)} events)"
