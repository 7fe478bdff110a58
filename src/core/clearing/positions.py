"""Per-account, per-market position ledger.

A ``Position`` holds the taker-style balances of one account in one market:

- ``base_balance``: signed base size (long > 0, short < 0),
- ``quote_balance``: open notional (quote paid or received for the open size),
- ``realized_pnl``: owed realized PnL (closed PnL and maker fees) that has not
  been settled into the collateral vault yet.

When a delta reduces the open size, the closed share of ``quote_balance`` is
realized and moved to ``realized_pnl``. A flat position therefore never
carries quote.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .math import ONE, mul_div, signed_mul_div

PositionKey = tuple[str, str]


@dataclass
class Position:
    owner: str
    market: str
    base_balance: int = 0
    quote_balance: int = 0
    realized_pnl: int = 0

    @property
    def is_empty(self) -> bool:
        return self.base_balance == 0 and self.quote_balance == 0 and self.realized_pnl == 0


def realized_pnl_for_delta(base: int, quote: int, base_delta: int, quote_delta: int) -> int:
    """PnL realized when ``(base_delta, quote_delta)`` is applied to ``(base, quote)``.

    Nothing is realized unless the delta reduces the open size. A delta that
    reverses the position realizes the whole open notional and only the part
    of the trade that closed the old size.
    """
    if base == 0 or base_delta == 0 or (base > 0) == (base_delta > 0):
        return 0
    closed_ratio = mul_div(abs(base_delta), ONE, abs(base))
    if closed_ratio <= ONE:
        return quote_delta + signed_mul_div(quote, closed_ratio, ONE)
    closed_notional = signed_mul_div(quote_delta, ONE, closed_ratio)
    return quote + closed_notional


class PositionLedger:
    """Single source of truth for positions, keyed by ``(owner, market)``."""

    def __init__(self) -> None:
        self._positions: dict[PositionKey, Position] = {}

    def __iter__(self) -> Iterator[Position]:
        return iter(sorted(self._positions.values(), key=lambda p: (p.market, p.owner)))

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, owner: str, market: str) -> Position:
        """Return the position, or an empty unsaved one if the account is flat."""
        position = self._positions.get((owner, market))
        if position is None:
            return Position(owner=owner, market=market)
        return position

    def positions_of(self, owner: str) -> list[Position]:
        return sorted(
            (p for p in self._positions.values() if p.owner == owner),
            key=lambda p: p.market,
        )

    def markets_of(self, owner: str) -> list[str]:
        return [p.market for p in self.positions_of(owner)]

    def _get_or_create(self, owner: str, market: str) -> Position:
        key = (owner, market)
        position = self._positions.get(key)
        if position is None:
            position = Position(owner=owner, market=market)
            self._positions[key] = position
        return position

    def _prune(self, position: Position) -> None:
        if position.is_empty:
            self._positions.pop((position.owner, position.market), None)

    def apply_swap_delta(self, owner: str, market: str, base_delta: int, quote_delta: int) -> int:
        """Add signed deltas to the position. Returns the PnL realized by the change."""
        position = self._get_or_create(owner, market)
        realized = realized_pnl_for_delta(
            position.base_balance, position.quote_balance, base_delta, quote_delta,
        )
        position.base_balance += base_delta
        position.quote_balance += quote_delta - realized
        if position.base_balance == 0 and position.quote_balance != 0:
            realized += position.quote_balance
            position.quote_balance = 0
        position.realized_pnl += realized
        self._prune(position)
        return realized

    def settle_maker_crossing(self, owner: str, market: str, base_delta: int, quote_delta: int) -> int:
        """Fold a maker order's amount change at a range crossing into the taker-style balances."""
        return self.apply_swap_delta(owner, market, base_delta, quote_delta)

    def add_realized_pnl(self, owner: str, market: str, amount: int) -> None:
        if amount == 0:
            return
        position = self._get_or_create(owner, market)
        position.realized_pnl += amount
        self._prune(position)

    def realized_pnl_of(self, owner: str) -> int:
        return sum(p.realized_pnl for p in self.positions_of(owner))

    def settle_realized_pnl(self, owner: str) -> int:
        """Zero the owner's owed realized PnL across markets and return the total."""
        total = 0
        for position in self.positions_of(owner):
            total += position.realized_pnl
            position.realized_pnl = 0
            self._prune(position)
        return total
