"""Liquidity orders layered on a market's tick book.

A ``LiquidityOrder`` is one account's liquidity over one tick range. Besides
the liquidity it keeps:

- the quote fee growth inside its range at the last touch (fee snapshot),
- the base/quote amounts it holds on the account's books (the basis): the
  amounts debited when liquidity was added, refreshed whenever a range
  crossing folds the order's amount change into the taker-style position.

The order's contribution to an account is ``in_pool_amounts - basis`` plus
the pending fee, so a maker shows zero right after adding liquidity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from .errors import InsufficientLiquidity, InvalidAmount, SlippageExceeded
from .math import Q128, add_liquidity_delta, mul_div
from .sqrt_price_math import (
    get_amounts_for_liquidity,
    get_liquidity_for_amounts,
    get_sqrt_ratio_at_tick,
)

if TYPE_CHECKING:
    from .positions import PositionLedger
    from .state import MarketState
    from .swap import TickCrossing

logger = logging.getLogger(__name__)

OrderKey = tuple[str, str, int, int]


@dataclass
class LiquidityOrder:
    owner: str
    market: str
    tick_lower: int
    tick_upper: int
    liquidity: int = 0
    fee_growth_inside_quote_snapshot_x128: int = 0
    base_basis: int = 0
    quote_basis: int = 0

    @property
    def key(self) -> OrderKey:
        return (self.owner, self.market, self.tick_lower, self.tick_upper)


@dataclass(frozen=True)
class AddLiquidityResult:
    base_used: int
    quote_used: int
    liquidity_minted: int
    fee_realized: int = 0


@dataclass(frozen=True)
class RemoveLiquidityResult:
    base_returned: int
    quote_returned: int
    fee_earned: int
    liquidity_removed: int


@dataclass(frozen=True)
class RangeCrossed:
    """Price crossed one boundary of a liquidity order during a swap."""

    owner: str
    market: str
    tick_lower: int
    tick_upper: int
    tick: int
    is_downward: bool
    sqrt_price_x96: int

    @property
    def order_key(self) -> OrderKey:
        return (self.owner, self.market, self.tick_lower, self.tick_upper)


def _range_sqrt_prices(tick_lower: int, tick_upper: int) -> tuple[int, int]:
    return get_sqrt_ratio_at_tick(tick_lower), get_sqrt_ratio_at_tick(tick_upper)


def _in_range(market: MarketState, tick_lower: int, tick_upper: int) -> bool:
    return tick_lower <= market.tick < tick_upper


class LiquidityOrderBook:
    """All liquidity orders across markets, indexed by key and by boundary tick."""

    def __init__(self) -> None:
        self._orders: dict[OrderKey, LiquidityOrder] = {}
        self._by_tick: dict[tuple[str, int], set[OrderKey]] = {}

    def __iter__(self):
        return iter([self._orders[k] for k in sorted(self._orders)])

    def __len__(self) -> int:
        return len(self._orders)

    # -- Queries -------------------------------------------------------------

    def get_order(self, owner: str, market: str, tick_lower: int, tick_upper: int) -> LiquidityOrder | None:
        return self._orders.get((owner, market, tick_lower, tick_upper))

    def orders_of(self, owner: str, market: str | None = None) -> list[LiquidityOrder]:
        return [
            self._orders[k]
            for k in sorted(self._orders)
            if k[0] == owner and (market is None or k[1] == market)
        ]

    def orders_in_market(self, market: str) -> list[LiquidityOrder]:
        return [self._orders[k] for k in sorted(self._orders) if k[1] == market]

    def orders_at_tick(self, market: str, tick: int) -> list[LiquidityOrder]:
        keys = self._by_tick.get((market, tick), ())
        return [self._orders[k] for k in sorted(keys)]

    def markets_of(self, owner: str) -> list[str]:
        return sorted({k[1] for k in self._orders if k[0] == owner})

    def in_pool_amounts(self, order: LiquidityOrder, market: MarketState) -> tuple[int, int]:
        """Base/quote the order would return at the current price, rounded down."""
        sqrt_a, sqrt_b = _range_sqrt_prices(order.tick_lower, order.tick_upper)
        return get_amounts_for_liquidity(market.sqrt_price_x96, sqrt_a, sqrt_b, order.liquidity)

    def pending_fee(self, order: LiquidityOrder, market: MarketState) -> int:
        inside = market.ticks.fee_growth_inside(
            order.tick_lower, order.tick_upper, market.tick, market.fee_growth_global_quote_x128,
        )
        return mul_div(inside - order.fee_growth_inside_quote_snapshot_x128, order.liquidity, Q128)

    def maker_exposure(self, owner: str, market: MarketState) -> tuple[int, int]:
        """Sum of ``in_pool - basis`` over the owner's orders; quote includes pending fees."""
        base = 0
        quote = 0
        for order in self.orders_of(owner, market.market_id):
            in_base, in_quote = self.in_pool_amounts(order, market)
            base += in_base - order.base_basis
            quote += in_quote - order.quote_basis + self.pending_fee(order, market)
        return base, quote

    def maker_basis(self, owner: str, market: str) -> tuple[int, int]:
        orders = self.orders_of(owner, market)
        return sum(o.base_basis for o in orders), sum(o.quote_basis for o in orders)

    # -- Index maintenance ---------------------------------------------------

    def _store(self, order: LiquidityOrder) -> None:
        key = order.key
        self._orders[key] = order
        for tick in (order.tick_lower, order.tick_upper):
            self._by_tick.setdefault((order.market, tick), set()).add(key)

    def _delete(self, order: LiquidityOrder) -> None:
        key = order.key
        del self._orders[key]
        for tick in (order.tick_lower, order.tick_upper):
            keys = self._by_tick[(order.market, tick)]
            keys.discard(key)
            if not keys:
                del self._by_tick[(order.market, tick)]

    # -- Mutation ------------------------------------------------------------

    def add_liquidity(
        self,
        market: MarketState,
        ledger: PositionLedger,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        base: int,
        quote: int,
        min_base: int = 0,
        min_quote: int = 0,
    ) -> AddLiquidityResult:
        """Turn desired base/quote into liquidity over ``[tick_lower, tick_upper)``.

        Amounts used round up. An existing order on the same range has its
        owed fee realized before the new liquidity is merged in.
        """
        market.ticks.validate_range(tick_lower, tick_upper)
        if base < 0 or quote < 0 or (base == 0 and quote == 0):
            raise InvalidAmount(f"invalid liquidity amounts: base={base} quote={quote}")

        sqrt_a, sqrt_b = _range_sqrt_prices(tick_lower, tick_upper)
        liquidity = get_liquidity_for_amounts(market.sqrt_price_x96, sqrt_a, sqrt_b, base, quote)
        if liquidity == 0:
            raise InsufficientLiquidity(
                f"amounts base={base} quote={quote} mint no liquidity in [{tick_lower}, {tick_upper}]"
            )
        base_used, quote_used = get_amounts_for_liquidity(
            market.sqrt_price_x96, sqrt_a, sqrt_b, liquidity, round_up=True,
        )
        if base_used < min_base or quote_used < min_quote:
            raise SlippageExceeded(
                f"used base={base_used} quote={quote_used} below minimum "
                f"base={min_base} quote={min_quote}"
            )

        fee_growth = market.fee_growth_global_quote_x128
        market.ticks.add_liquidity(tick_lower, tick_upper, liquidity, market.tick, fee_growth)
        if _in_range(market, tick_lower, tick_upper):
            market.liquidity = add_liquidity_delta(market.liquidity, liquidity)
        inside = market.ticks.fee_growth_inside(tick_lower, tick_upper, market.tick, fee_growth)

        order = self.get_order(owner, market.market_id, tick_lower, tick_upper)
        fee = 0
        if order is None:
            order = LiquidityOrder(owner, market.market_id, tick_lower, tick_upper)
        else:
            fee = mul_div(inside - order.fee_growth_inside_quote_snapshot_x128, order.liquidity, Q128)
            ledger.add_realized_pnl(owner, market.market_id, fee)
        order.fee_growth_inside_quote_snapshot_x128 = inside
        order.liquidity += liquidity
        order.base_basis += base_used
        order.quote_basis += quote_used
        self._store(order)

        return AddLiquidityResult(
            base_used=base_used,
            quote_used=quote_used,
            liquidity_minted=liquidity,
            fee_realized=fee,
        )

    def remove_liquidity(
        self,
        market: MarketState,
        ledger: PositionLedger,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
        min_base: int = 0,
        min_quote: int = 0,
    ) -> RemoveLiquidityResult:
        """Withdraw ``liquidity`` from an order.

        Returned amounts round down. The owed fee is realized, and the
        difference between the returned amounts and the removed share of the
        basis is folded into the position.
        """
        market.ticks.validate_range(tick_lower, tick_upper)
        if liquidity <= 0:
            raise InvalidAmount(f"liquidity must be positive: {liquidity}")
        order = self.get_order(owner, market.market_id, tick_lower, tick_upper)
        held = order.liquidity if order is not None else 0
        if order is None or held < liquidity:
            raise InsufficientLiquidity(
                f"order [{tick_lower}, {tick_upper}] of {owner} holds {held}, cannot remove {liquidity}"
            )

        sqrt_a, sqrt_b = _range_sqrt_prices(tick_lower, tick_upper)
        base_returned, quote_returned = get_amounts_for_liquidity(
            market.sqrt_price_x96, sqrt_a, sqrt_b, liquidity,
        )
        if base_returned < min_base or quote_returned < min_quote:
            raise SlippageExceeded(
                f"returned base={base_returned} quote={quote_returned} below minimum "
                f"base={min_base} quote={min_quote}"
            )

        fee_growth = market.fee_growth_global_quote_x128
        inside = market.ticks.fee_growth_inside(tick_lower, tick_upper, market.tick, fee_growth)
        fee = mul_div(inside - order.fee_growth_inside_quote_snapshot_x128, order.liquidity, Q128)

        market.ticks.remove_liquidity(tick_lower, tick_upper, liquidity, market.tick, fee_growth)
        if _in_range(market, tick_lower, tick_upper):
            market.liquidity = add_liquidity_delta(market.liquidity, -liquidity)

        if liquidity == order.liquidity:
            base_part, quote_part = order.base_basis, order.quote_basis
        else:
            base_part = mul_div(order.base_basis, liquidity, order.liquidity)
            quote_part = mul_div(order.quote_basis, liquidity, order.liquidity)
        order.liquidity -= liquidity
        order.base_basis -= base_part
        order.quote_basis -= quote_part
        order.fee_growth_inside_quote_snapshot_x128 = inside
        if order.liquidity == 0:
            self._delete(order)

        ledger.add_realized_pnl(owner, market.market_id, fee)
        ledger.apply_swap_delta(
            owner, market.market_id, base_returned - base_part, quote_returned - quote_part,
        )
        return RemoveLiquidityResult(
            base_returned=base_returned,
            quote_returned=quote_returned,
            fee_earned=fee,
            liquidity_removed=liquidity,
        )

    # -- Range crossings -----------------------------------------------------

    def range_crossed_events(self, market: str, crossings: Iterable[TickCrossing]) -> list[RangeCrossed]:
        """Expand tick crossings into per-order events, in crossing order."""
        events = []
        for crossing in crossings:
            for order in self.orders_at_tick(market, crossing.tick):
                events.append(
                    RangeCrossed(
                        owner=order.owner,
                        market=market,
                        tick_lower=order.tick_lower,
                        tick_upper=order.tick_upper,
                        tick=crossing.tick,
                        is_downward=crossing.is_downward,
                        sqrt_price_x96=crossing.sqrt_price_x96,
                    )
                )
        return events

    def settle_range_crossed(self, event: RangeCrossed, ledger: PositionLedger) -> tuple[int, int]:
        """Fold the order's amount change up to the crossing price into its owner's position.

        Returns the ``(base_delta, quote_delta)`` applied to the position.
        """
        order = self._orders[event.order_key]
        sqrt_a, sqrt_b = _range_sqrt_prices(order.tick_lower, order.tick_upper)
        base_at, quote_at = get_amounts_for_liquidity(
            event.sqrt_price_x96, sqrt_a, sqrt_b, order.liquidity,
        )
        base_delta = base_at - order.base_basis
        quote_delta = quote_at - order.quote_basis
        order.base_basis = base_at
        order.quote_basis = quote_at
        ledger.settle_maker_crossing(order.owner, order.market, base_delta, quote_delta)
        logger.debug(
            "Range crossed",
            extra={
                "event": "clearing.range_crossed",
                "owner": order.owner,
                "market": order.market,
                "tick": event.tick,
                "base_delta": base_delta,
                "quote_delta": quote_delta,
            },
        )
        return base_delta, quote_delta
