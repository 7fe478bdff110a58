"""Invariant checkers for the clearing-house state.

Each function returns True when the invariant holds, and ``check_all()``
returns the list of violated invariant IDs (empty = all pass). The engine
runs ``check_all()`` on every post-state before committing it.

``quote_imbalance()`` is the market-wide conservation figure; it is not a
hard invariant because every operation may leave rounding dust behind.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable

from .sqrt_price_math import MAX_TICK, get_sqrt_ratio_at_tick
from .state import ClearingHouseState


def inv_tick_index_sorted(s: ClearingHouseState) -> bool:
    for market in s.markets.values():
        indices = [t.index for t in market.ticks.ticks()]
        if indices != sorted(set(indices)):
            return False
    return True


def inv_tick_gross_covers_net(s: ClearingHouseState) -> bool:
    for market in s.markets.values():
        for tick in market.ticks.ticks():
            if tick.liquidity_gross <= 0 or abs(tick.liquidity_net) > tick.liquidity_gross:
                return False
    return True


def inv_in_range_liquidity(s: ClearingHouseState) -> bool:
    """Pool liquidity equals the net liquidity of all ticks at or below the current tick."""
    for market in s.markets.values():
        active = sum(t.liquidity_net for t in market.ticks.ticks() if t.index <= market.tick)
        if active != market.liquidity:
            return False
    return True


def inv_orders_match_ticks(s: ClearingHouseState) -> bool:
    """Each tick's gross liquidity is exactly the liquidity of orders bounded by it."""
    gross: dict[tuple[str, int], int] = defaultdict(int)
    for order in s.orders:
        gross[(order.market, order.tick_lower)] += order.liquidity
        gross[(order.market, order.tick_upper)] += order.liquidity
    for market in s.markets.values():
        for tick in market.ticks.ticks():
            if gross.pop((market.market_id, tick.index), 0) != tick.liquidity_gross:
                return False
    return not gross


def inv_order_well_formed(s: ClearingHouseState) -> bool:
    for order in s.orders:
        if order.market not in s.markets:
            return False
        if order.tick_lower >= order.tick_upper or order.liquidity <= 0:
            return False
        if order.base_basis < 0 or order.quote_basis < 0:
            return False
    return True


def inv_flat_position_has_no_quote(s: ClearingHouseState) -> bool:
    return all(p.base_balance != 0 or p.quote_balance == 0 for p in s.positions)


def inv_price_matches_tick(s: ClearingHouseState) -> bool:
    for market in s.markets.values():
        if market.sqrt_price_x96 < get_sqrt_ratio_at_tick(market.tick):
            return False
        if market.tick < MAX_TICK and market.sqrt_price_x96 > get_sqrt_ratio_at_tick(market.tick + 1):
            return False
    return True


def inv_fee_accumulators_nonneg(s: ClearingHouseState) -> bool:
    return all(
        m.fee_growth_global_quote_x128 >= 0 and m.insurance_fund_fee >= 0
        for m in s.markets.values()
    )


InvariantFn = Callable[[ClearingHouseState], bool]

INVARIANTS: dict[str, InvariantFn] = {
    "tick_index_sorted": inv_tick_index_sorted,
    "tick_gross_covers_net": inv_tick_gross_covers_net,
    "in_range_liquidity": inv_in_range_liquidity,
    "orders_match_ticks": inv_orders_match_ticks,
    "order_well_formed": inv_order_well_formed,
    "flat_position_has_no_quote": inv_flat_position_has_no_quote,
    "price_matches_tick": inv_price_matches_tick,
    "fee_accumulators_nonneg": inv_fee_accumulators_nonneg,
}


def check_all(s: ClearingHouseState) -> list[str]:
    """Return IDs of all violated invariants (empty list = all pass)."""
    return [name for name, fn in INVARIANTS.items() if not fn(s)]


def quote_imbalance(s: ClearingHouseState, market: str) -> int:
    """``sum(net quote + realized PnL) + insurance fund`` over every account in a market.

    Zero for a perfectly conserving ledger; rounding leaves it at or slightly
    below zero.
    """
    market_state = s.markets[market]
    owners = {p.owner for p in s.positions if p.market == market}
    owners |= {o.owner for o in s.orders.orders_in_market(market)}
    total = market_state.insurance_fund_fee
    for owner in owners:
        position = s.positions.get(owner, market)
        _, maker_quote = s.orders.maker_exposure(owner, market_state)
        total += position.quote_balance + maker_quote + position.realized_pnl
    return total
