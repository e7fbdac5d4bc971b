"""
oracle.py - Price feeds and the oracle adapter.

Provides the price-feed capability consumed by the liquidation engine and the
single normalisation path from (amount, price, decimals) to a USD-equivalent.

Classes:
- PriceFeed: Protocol defining the feed interface (latest_round_data, decimals)
- ManualPriceFeed: Settable feed for tests and simulations
- TimeSeriesPriceFeed: Time-varying feed that follows the ledger clock

Functions:
- read_price: Fetch a quote and enforce positivity and freshness
- usd_value: Scale a token amount to PRECISION_FACTOR USD units

Stale or non-positive prices are faults, never clamped and never read as
"not liquidatable".
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    LedgerView, PRECISION_FACTOR, unix_time,
    InvalidOraclePrice, StaleOraclePrice, OracleUnavailable, UnknownPriceFeed,
)


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for price feeds.

    latest_round_data() returns (price, updated_at) where price is a signed
    integer scaled by 10**decimals() and updated_at is UNIX seconds.
    """

    def latest_round_data(self) -> Tuple[int, int]:
        ...

    def decimals(self) -> int:
        ...


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """A validated price: strictly positive and within the allowed age."""
    value: int
    decimals: int
    updated_at: int


class ManualPriceFeed:
    """
    Price feed whose answer is set explicitly.

    With a clock and no explicit updated_at, the feed always reports itself
    as updated at the clock's current time.
    """

    def __init__(
        self,
        answer: int,
        decimals: int = 8,
        updated_at: Optional[int] = None,
        clock: Optional[LedgerView] = None,
    ):
        self._answer = answer
        self._decimals = decimals
        self._updated_at = updated_at
        self._clock = clock
        self._revert_reason: Optional[str] = None

    def set_answer(self, answer: int, updated_at: Optional[int] = None) -> None:
        self._answer = answer
        if updated_at is not None:
            self._updated_at = updated_at

    def set_updated_at(self, updated_at: int) -> None:
        self._updated_at = updated_at

    def set_revert(self, revert: bool = True, reason: str = "oracle unavailable") -> None:
        """Make latest_round_data() fail until cleared."""
        self._revert_reason = reason if revert else None

    def decimals(self) -> int:
        return self._decimals

    def latest_round_data(self) -> Tuple[int, int]:
        if self._revert_reason is not None:
            raise OracleUnavailable(self._revert_reason)
        if self._updated_at is not None:
            return self._answer, self._updated_at
        if self._clock is not None:
            return self._answer, unix_time(self._clock.current_time)
        return self._answer, 0

    def __repr__(self):
        return f"ManualPriceFeed({self._answer}, decimals={self._decimals})"


class TimeSeriesPriceFeed:
    """
    Price feed replaying a historical path against the ledger clock.

    Returns the most recent observation at or before the view's current time,
    reporting the observation time as updated_at.

    Example:
        feed = TimeSeriesPriceFeed(ledger, [
            (datetime(2025, 1, 1), 2_000 * 10**8),
            (datetime(2025, 1, 2), 1_950 * 10**8),
        ])
    """

    def __init__(
        self,
        view: LedgerView,
        history: Iterable[Tuple[datetime, int]] = (),
        decimals: int = 8,
    ):
        self.view = view
        self._decimals = decimals
        # Sort by timestamp to ensure chronological order
        self.history: List[Tuple[datetime, int]] = sorted(history, key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add an observation, keeping the history sorted."""
        self.history.append((timestamp, price))
        self.history.sort(key=lambda x: x[0])

    def decimals(self) -> int:
        return self._decimals

    def latest_round_data(self) -> Tuple[int, int]:
        timestamps = [ts for ts, _ in self.history]
        idx = bisect_right(timestamps, self.view.current_time)
        if idx == 0:
            raise OracleUnavailable(f"no observation at or before {self.view.current_time}")
        observed_at, price = self.history[idx - 1]
        return price, unix_time(observed_at)

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.history)} observations, decimals={self._decimals})"


# ============================================================================
# ORACLE ADAPTER
# ============================================================================

def resolve_feed(feeds: Mapping[str, PriceFeed], feed_id: str) -> PriceFeed:
    """Look up the feed a loan references by id."""
    try:
        return feeds[feed_id]
    except KeyError:
        raise UnknownPriceFeed(f"unknown price feed: {feed_id!r}") from None


def read_price(feed: PriceFeed, now: int, max_age: int) -> PriceQuote:
    """
    Fetch the latest answer of a feed and validate it.

    Args:
        feed: The price feed to query
        now: Current UNIX time in seconds
        max_age: Maximum allowed seconds since the feed's last update

    Returns:
        PriceQuote with value, feed decimals and update time

    Raises:
        InvalidOraclePrice: If the price is zero or negative, or updated_at is after now
        StaleOraclePrice: If now - updated_at exceeds max_age
        Whatever the feed itself raises (e.g. OracleUnavailable)
    """
    price, updated_at = feed.latest_round_data()
    if price <= 0:
        raise InvalidOraclePrice("invalid oracle price")
    if updated_at > now:
        raise InvalidOraclePrice(f"oracle updated in the future: {updated_at} > {now}")
    age = now - updated_at
    if age > max_age:
        raise StaleOraclePrice(f"stale oracle price: age {age}s > {max_age}s")
    return PriceQuote(value=price, decimals=feed.decimals(), updated_at=updated_at)


def usd_value(amount: int, price: int, token_decimals: int) -> int:
    """
    USD-equivalent of a native token amount, scaled by PRECISION_FACTOR.

    Both sides of a comparison must use feeds of the same price decimals.
    """
    return PRECISION_FACTOR * amount * price // 10 ** token_decimals
