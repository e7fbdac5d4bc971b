"""
erc20.py - Transferable asset capability backed by the ledger.

A loan record references its asset and collateral by symbol. The market
resolves each symbol to a TransferableAsset: something that can report
balances and decimals and move value with transfer / transfer_from.

LedgerToken is the concrete capability over a Ledger unit. Every call is a
single-move transaction executed with Ledger.settle(), so a failed transfer
raises the ledger's fault (InsufficientFunds, InsufficientAllowance, ...)
and leaves balances untouched.
"""

from __future__ import annotations
from typing import Optional, Protocol, runtime_checkable

from .core import (
    Move, Transaction, TransactionOrigin, OriginType,
    SYSTEM_WALLET, build_transaction,
)
from .ledger import Ledger


@runtime_checkable
class TransferableAsset(Protocol):
    """Fungible token interface consumed by the lending market."""

    symbol: str

    def decimals(self) -> int:
        ...

    def balance_of(self, account: str) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        ...

    def transfer(self, sender: str, to: str, amount: int) -> Optional[Transaction]:
        ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> Optional[Transaction]:
        ...


class LedgerToken:
    """
    ERC-20 style handle on one unit of a Ledger.

    The first argument of every mutating call is the acting wallet
    (the message sender).

    Example:
        usdc = LedgerToken(ledger, "USDC")
        usdc.mint("alice", 1_000 * 10**6)
        usdc.approve("alice", "market", 500 * 10**6)
        usdc.transfer_from("market", "alice", "bob", 200 * 10**6)
    """

    def __init__(self, ledger: Ledger, symbol: str):
        ledger.get_unit(symbol)  # raises UnitNotRegistered
        self.ledger = ledger
        self.symbol = symbol
        self._transfers = 0

    def decimals(self) -> int:
        return self.ledger.get_unit(self.symbol).decimals

    def balance_of(self, account: str) -> int:
        return self.ledger.get_balance(account, self.symbol)

    def allowance(self, owner: str, spender: str) -> int:
        return self.ledger.get_allowance(owner, spender, self.symbol)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        self.ledger.approve(owner, spender, self.symbol, amount)
        return True

    def transfer(self, sender: str, to: str, amount: int) -> Optional[Transaction]:
        """Move amount from sender to to. Zero or self transfers move nothing."""
        return self._settle(sender, to, amount, spender=None, event_type="TRANSFER")

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> Optional[Transaction]:
        """Move amount from owner to to, spending spender's allowance."""
        return self._settle(owner, to, amount, spender=spender, event_type="TRANSFER_FROM")

    def mint(self, to: str, amount: int) -> Optional[Transaction]:
        """Issue new units to a wallet from the system wallet."""
        return self._settle(SYSTEM_WALLET, to, amount, spender=None, event_type="MINT")

    def _settle(
        self,
        source: str,
        dest: str,
        amount: int,
        spender: Optional[str],
        event_type: str,
    ) -> Optional[Transaction]:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"amount must be a non-negative int, got {amount!r}")
        if amount == 0 or source == dest:
            return None

        # Each call is a distinct intent even when the content repeats
        self._transfers += 1
        origin_type = OriginType.SYSTEM if source == SYSTEM_WALLET else OriginType.USER_ACTION
        origin = TransactionOrigin(origin_type, spender or source, event_type=event_type)
        move = Move(
            quantity=amount,
            unit_symbol=self.symbol,
            source=source,
            dest=dest,
            contract_id=f"{self.symbol}:{event_type.lower()}",
            spender=spender,
        )
        pending = build_transaction(
            self.ledger, [move], origin,
            memo=f"{self.symbol}#{self.ledger.next_sequence}.{self._transfers}",
        )
        return self.ledger.settle(pending)

    def __repr__(self) -> str:
        return f"LedgerToken({self.symbol} on {self.ledger.name})"
