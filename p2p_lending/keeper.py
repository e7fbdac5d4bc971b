"""
keeper.py - Liquidation keeper

An external, permissionless caller that polls the market for loans that can
be liquidated. The market itself has no background process; the keeper is
one possible liquidator.

Execution order each step():
1. Advance ledger time
2. Scan ACTIVE loans in id order
3. Call liquidate_loan on each; skip loans whose oracle read fails

Retrying a skipped loan is simply the next step().
"""

from __future__ import annotations
from datetime import datetime
import logging
from typing import Dict, Iterable, List

from .core import OracleError
from .loan import LoanStatus
from .market import LendingMarket


logger = logging.getLogger(__name__)


class LiquidationKeeper:
    """
    Polls a LendingMarket and liquidates eligible loans.

    Attributes:
        market: The market to poll
        liquidator: Wallet receiving the liquidation bonus
        skipped: Loan id -> last oracle fault message, for loans not yet resolved
    """

    def __init__(self, market: LendingMarket, liquidator: str):
        self.market = market
        self.liquidator = liquidator
        self.skipped: Dict[int, str] = {}

    def step(self, timestamp: datetime) -> List[int]:
        """
        Advance time and liquidate every eligible ACTIVE loan.

        Returns:
            Ids liquidated in this step
        """
        self.market.ledger.advance_time(timestamp)
        liquidated: List[int] = []

        for loan_id in list(self.market.registry.ids_with_status(LoanStatus.ACTIVE)):
            try:
                done = self.market.liquidate_loan(self.liquidator, loan_id)
            except OracleError as e:
                logger.warning("keeper skipped loan %d at %s: %s", loan_id, timestamp, e)
                self.skipped[loan_id] = str(e)
                continue
            self.skipped.pop(loan_id, None)
            if done:
                liquidated.append(loan_id)

        if liquidated:
            logger.info("keeper liquidated %s at %s", liquidated, timestamp)
        return liquidated

    def run(self, timestamps: Iterable[datetime]) -> List[int]:
        """Step through a schedule and return all liquidated ids in order."""
        all_liquidated: List[int] = []
        for timestamp in timestamps:
            all_liquidated.extend(self.step(timestamp))
        return all_liquidated
