"""Tick-indexed liquidity book for one market.

The book is an ordered map: a dict of ``Tick`` records keyed by index plus a
sorted list of initialized indices searched with ``bisect``. Each tick keeps
its gross/net liquidity and the quote fee growth accumulated on the side of
the tick opposite to the current price ("outside").
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass

from .errors import ArithmeticOverflow, InsufficientLiquidity, InvalidRange
from .math import UINT128_MAX, add_liquidity_delta
from .sqrt_price_math import MAX_TICK, MIN_TICK


@dataclass
class Tick:
    index: int
    liquidity_gross: int = 0
    liquidity_net: int = 0
    fee_growth_outside_quote_x128: int = 0


def max_liquidity_per_tick(tick_spacing: int) -> int:
    """Cap on gross liquidity per tick so the sum over all ticks fits uint128."""
    min_tick = -((-MIN_TICK) // tick_spacing) * tick_spacing
    max_tick = (MAX_TICK // tick_spacing) * tick_spacing
    num_ticks = (max_tick - min_tick) // tick_spacing + 1
    return UINT128_MAX // num_ticks


class TickLiquidityBook:
    """Sparse, ordered set of ticks for one market."""

    def __init__(self, tick_spacing: int) -> None:
        if tick_spacing <= 0:
            raise ValueError(f"tick_spacing must be positive: {tick_spacing}")
        self.tick_spacing = tick_spacing
        self.max_liquidity_per_tick = max_liquidity_per_tick(tick_spacing)
        self._ticks: dict[int, Tick] = {}
        self._initialized: list[int] = []

    def __len__(self) -> int:
        return len(self._initialized)

    def __contains__(self, tick: int) -> bool:
        return tick in self._ticks

    def get(self, tick: int) -> Tick | None:
        return self._ticks.get(tick)

    def ticks(self) -> list[Tick]:
        """Initialized ticks in ascending index order."""
        return [self._ticks[t] for t in self._initialized]

    def validate_range(self, tick_lower: int, tick_upper: int) -> None:
        if tick_lower >= tick_upper:
            raise InvalidRange(f"tick_lower {tick_lower} must be below tick_upper {tick_upper}")
        if tick_lower < MIN_TICK or tick_upper > MAX_TICK:
            raise InvalidRange(f"ticks out of bounds: [{tick_lower}, {tick_upper}]")
        if tick_lower % self.tick_spacing or tick_upper % self.tick_spacing:
            raise InvalidRange(f"ticks must be multiples of {self.tick_spacing}")

    # -- Mutation ------------------------------------------------------------

    def _update(
        self,
        tick: int,
        current_tick: int,
        liquidity_delta: int,
        fee_growth_global_x128: int,
        upper: bool,
    ) -> bool:
        info = self._ticks.get(tick)
        if info is None:
            info = Tick(index=tick)
        gross_before = info.liquidity_gross
        gross_after = add_liquidity_delta(gross_before, liquidity_delta)
        if gross_after > self.max_liquidity_per_tick:
            raise ArithmeticOverflow(f"tick {tick} liquidity exceeds {self.max_liquidity_per_tick}")

        if gross_before == 0:
            # Fee growth below the current tick is assumed to have happened outside.
            if tick <= current_tick:
                info.fee_growth_outside_quote_x128 = fee_growth_global_x128
            self._ticks[tick] = info
            bisect.insort(self._initialized, tick)

        info.liquidity_gross = gross_after
        info.liquidity_net += -liquidity_delta if upper else liquidity_delta
        return (gross_after == 0) != (gross_before == 0)

    def add_liquidity(
        self,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
        current_tick: int,
        fee_growth_global_x128: int,
    ) -> list[int]:
        """Add liquidity to a range. Returns the ticks that became initialized."""
        self.validate_range(tick_lower, tick_upper)
        if liquidity_delta <= 0:
            raise ValueError(f"liquidity_delta must be positive: {liquidity_delta}")
        flipped = []
        for tick, upper in ((tick_lower, False), (tick_upper, True)):
            if self._update(tick, current_tick, liquidity_delta, fee_growth_global_x128, upper):
                flipped.append(tick)
        return flipped

    def remove_liquidity(
        self,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
        current_tick: int,
        fee_growth_global_x128: int,
    ) -> list[int]:
        """Remove liquidity from a range. Returns the ticks that were pruned."""
        self.validate_range(tick_lower, tick_upper)
        if liquidity_delta <= 0:
            raise ValueError(f"liquidity_delta must be positive: {liquidity_delta}")
        for tick in (tick_lower, tick_upper):
            info = self._ticks.get(tick)
            gross = info.liquidity_gross if info is not None else 0
            if gross < liquidity_delta:
                raise InsufficientLiquidity(
                    f"tick {tick} holds {gross} liquidity, cannot remove {liquidity_delta}"
                )
        pruned = []
        for tick, upper in ((tick_lower, False), (tick_upper, True)):
            if self._update(tick, current_tick, -liquidity_delta, fee_growth_global_x128, upper):
                self._clear(tick)
                pruned.append(tick)
        return pruned

    def _clear(self, tick: int) -> None:
        del self._ticks[tick]
        i = bisect.bisect_left(self._initialized, tick)
        del self._initialized[i]

    def cross_tick(self, tick: int, fee_growth_global_x128: int) -> int:
        """Flip the tick's outside fee growth and return its ``liquidity_net``."""
        info = self._ticks[tick]
        info.fee_growth_outside_quote_x128 = (
            fee_growth_global_x128 - info.fee_growth_outside_quote_x128
        )
        return info.liquidity_net

    # -- Queries -------------------------------------------------------------

    def fee_growth_inside(
        self,
        tick_lower: int,
        tick_upper: int,
        current_tick: int,
        fee_growth_global_x128: int,
    ) -> int:
        """Quote fee growth per unit of liquidity accumulated inside a range.

        Only differences between two readings are meaningful; the absolute
        value carries an offset fixed when the boundary ticks were initialized.
        """
        lower = self._ticks.get(tick_lower) or Tick(index=tick_lower)
        upper = self._ticks.get(tick_upper) or Tick(index=tick_upper)

        if current_tick >= tick_lower:
            below = lower.fee_growth_outside_quote_x128
        else:
            below = fee_growth_global_x128 - lower.fee_growth_outside_quote_x128

        if current_tick < tick_upper:
            above = upper.fee_growth_outside_quote_x128
        else:
            above = fee_growth_global_x128 - upper.fee_growth_outside_quote_x128

        return fee_growth_global_x128 - below - above

    def next_initialized_tick(self, tick: int, lte: bool) -> int | None:
        """Nearest initialized tick at or below ``tick`` (``lte``) or strictly above it."""
        if lte:
            i = bisect.bisect_right(self._initialized, tick)
            return self._initialized[i - 1] if i > 0 else None
        i = bisect.bisect_right(self._initialized, tick)
        return self._initialized[i] if i < len(self._initialized) else None

    def next_initialized_tick_within_one_word(self, tick: int, lte: bool) -> tuple[int, bool]:
        """Next initialized tick bounded to one 256-tick word of compressed ticks.

        Returns ``(tick_next, initialized)``. When nothing is initialized in the
        word the word boundary is returned with ``initialized=False``, which
        keeps swap step boundaries identical to a word-bitmap tick index.
        """
        spacing = self.tick_spacing
        compressed = tick // spacing
        if lte:
            word_start = (compressed >> 8) << 8
            found = self.next_initialized_tick(compressed * spacing, lte=True)
            if found is not None and found // spacing >= word_start:
                return found, True
            return word_start * spacing, False
        word_end = (((compressed + 1) >> 8) << 8) + 255
        found = self.next_initialized_tick(compressed * spacing, lte=False)
        if found is not None and found // spacing <= word_end:
            return found, True
        return word_end * spacing, False
