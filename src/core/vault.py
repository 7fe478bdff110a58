"""
Collateral vault collaborator.

The clearing engine only reads balances and stages credits/debits; the vault
applies them once an operation commits. Balances are signed 18-decimal quote
amounts: settling a realized loss may take an account below zero.
"""

from __future__ import annotations

from typing import Protocol


class CollateralVault(Protocol):
    def get_balance(self, trader: str) -> int: ...

    def credit(self, trader: str, amount: int) -> None: ...

    def debit(self, trader: str, amount: int) -> None: ...


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise TypeError("amount must be an int")
    if amount < 0:
        raise ValueError(f"amount must be non-negative: {amount}")


class InMemoryVault:
    """Dict-backed vault, for tests and embedding."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = dict(balances or {})

    def get_balance(self, trader: str) -> int:
        return self._balances.get(trader, 0)

    def credit(self, trader: str, amount: int) -> None:
        _check_amount(amount)
        self._balances[trader] = self.get_balance(trader) + amount

    def debit(self, trader: str, amount: int) -> None:
        _check_amount(amount)
        self._balances[trader] = self.get_balance(trader) - amount

    def balances(self) -> dict[str, int]:
        return dict(self._balances)
