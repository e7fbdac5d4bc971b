"""
config.py - Owner-gated market parameters.

MarketConfig is an immutable, versioned snapshot. MarketAdmin owns the
current snapshot and replaces it through bounded setters; every accepted
change bumps the version and publishes an update event with the old and new
values. The market reads admin.config once at the start of each operation.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
import logging
from typing import List, Optional

from .core import (
    ZERO_ADDRESS, SECONDS_PER_DAY,
    Unauthorized, ConfigurationError,
)
from .events import (
    Event, EventLog,
    FeeCollectorUpdated, ExpirationDurationUpdated, ProtocolFeeUpdated,
    LiquidatorBonusUpdated, ProtocolLiquidationFeeUpdated, MaxOraclePriceAgeUpdated,
)


logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULTS AND BOUNDS
# =============================================================================

DEFAULT_REQUEST_EXPIRATION_DURATION = 7 * SECONDS_PER_DAY
DEFAULT_PROTOCOL_FEE_BPS = 2000
DEFAULT_LIQUIDATOR_BONUS_BPS = 100
DEFAULT_PROTOCOL_LIQUIDATION_FEE_BPS = 20
DEFAULT_MAX_ORACLE_PRICE_AGE = 3600

MIN_REQUEST_EXPIRATION_DURATION = SECONDS_PER_DAY
MAX_PROTOCOL_FEE_BPS = 2000
MAX_LIQUIDATOR_BONUS_BPS = 1000
MAX_PROTOCOL_LIQUIDATION_FEE_BPS = 500


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """Market parameters in effect for one operation."""
    owner: str
    fee_collector: str
    request_expiration_duration: int = DEFAULT_REQUEST_EXPIRATION_DURATION
    protocol_fee_bps: int = DEFAULT_PROTOCOL_FEE_BPS
    liquidator_bonus_bps: int = DEFAULT_LIQUIDATOR_BONUS_BPS
    protocol_liquidation_fee_bps: int = DEFAULT_PROTOCOL_LIQUIDATION_FEE_BPS
    max_oracle_price_age: int = DEFAULT_MAX_ORACLE_PRICE_AGE
    version: int = 1


def _require_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ConfigurationError(f"{name} must be non-negative, got {value}")


class MarketAdmin:
    """
    Administrative capability over a MarketConfig.

    Args:
        owner: Wallet allowed to change parameters
        fee_collector: Fee recipient (defaults to owner)
        events: Log receiving update events (a private log if omitted)
    """

    def __init__(
        self,
        owner: str,
        fee_collector: Optional[str] = None,
        events: Optional[EventLog] = None,
    ):
        if not owner or owner == ZERO_ADDRESS:
            raise ConfigurationError("owner == address(0)")
        self._config = MarketConfig(owner=owner, fee_collector=fee_collector or owner)
        self.events = events if events is not None else EventLog()

    @property
    def config(self) -> MarketConfig:
        """Current parameters (an immutable snapshot)."""
        return self._config

    @property
    def owner(self) -> str:
        return self._config.owner

    def _only_owner(self, caller: str) -> None:
        if caller != self._config.owner:
            raise Unauthorized(f"caller {caller} is not the owner")

    def _commit(self, changes: dict, events: List[Event]) -> MarketConfig:
        self._config = replace(self._config, version=self._config.version + 1, **changes)
        logger.info("config v%d: %s", self._config.version, changes)
        self.events.publish(events)
        return self._config

    # =========================================================================
    # SETTERS
    # =========================================================================

    def set_fee_collector(self, caller: str, new_fee_collector: str) -> MarketConfig:
        self._only_owner(caller)
        if not new_fee_collector or new_fee_collector == ZERO_ADDRESS:
            raise ConfigurationError("feeCollector == address(0)")
        old = self._config.fee_collector
        return self._commit(
            {"fee_collector": new_fee_collector},
            [FeeCollectorUpdated(old, new_fee_collector)],
        )

    def set_request_expiration_duration(self, caller: str, new_duration: int) -> MarketConfig:
        self._only_owner(caller)
        _require_int("request_expiration_duration", new_duration)
        if new_duration < MIN_REQUEST_EXPIRATION_DURATION:
            raise ConfigurationError("newExpirationDuration < 1 day")
        old = self._config.request_expiration_duration
        return self._commit(
            {"request_expiration_duration": new_duration},
            [ExpirationDurationUpdated(old, new_duration)],
        )

    def set_protocol_fee(self, caller: str, new_protocol_fee_bps: int) -> MarketConfig:
        self._only_owner(caller)
        _require_int("protocol_fee_bps", new_protocol_fee_bps)
        if new_protocol_fee_bps > MAX_PROTOCOL_FEE_BPS:
            raise ConfigurationError("protocolFee > 2000 bps")
        old = self._config.protocol_fee_bps
        return self._commit(
            {"protocol_fee_bps": new_protocol_fee_bps},
            [ProtocolFeeUpdated(old, new_protocol_fee_bps)],
        )

    def set_liquidation_config(
        self,
        caller: str,
        new_liquidator_bonus_bps: int,
        new_protocol_liquidation_fee_bps: int,
    ) -> MarketConfig:
        self._only_owner(caller)
        _require_int("liquidator_bonus_bps", new_liquidator_bonus_bps)
        _require_int("protocol_liquidation_fee_bps", new_protocol_liquidation_fee_bps)
        if new_liquidator_bonus_bps > MAX_LIQUIDATOR_BONUS_BPS:
            raise ConfigurationError("liquidatorBonus > 1000 bps")
        if new_protocol_liquidation_fee_bps > MAX_PROTOCOL_LIQUIDATION_FEE_BPS:
            raise ConfigurationError("protocolLiquidationFee > 500 bps")
        old_bonus = self._config.liquidator_bonus_bps
        old_fee = self._config.protocol_liquidation_fee_bps
        return self._commit(
            {
                "liquidator_bonus_bps": new_liquidator_bonus_bps,
                "protocol_liquidation_fee_bps": new_protocol_liquidation_fee_bps,
            },
            [
                LiquidatorBonusUpdated(old_bonus, new_liquidator_bonus_bps),
                ProtocolLiquidationFeeUpdated(old_fee, new_protocol_liquidation_fee_bps),
            ],
        )

    def set_max_oracle_price_age(self, caller: str, new_max_age: int) -> MarketConfig:
        self._only_owner(caller)
        _require_int("max_oracle_price_age", new_max_age)
        if new_max_age == 0:
            raise ConfigurationError("maxOraclePriceAge == 0")
        old = self._config.max_oracle_price_age
        return self._commit(
            {"max_oracle_price_age": new_max_age},
            [MaxOraclePriceAgeUpdated(old, new_max_age)],
        )

    def __repr__(self) -> str:
        return f"MarketAdmin(owner={self.owner}, v{self._config.version})"
