"""Margin and free-collateral figures for an account.

    collateral          = vault balance + owed realized PnL
    account value       = collateral + sum(position size * index price + net quote)
    margin requirement  = sum(|base balance| * index price + |quote balance|) * initial margin ratio
    free collateral     = min(collateral, account value) - margin requirement

Balances in the margin requirement are the account balances after liquidity
debits: taker-style balances minus the basis of the account's liquidity
orders. Net quote and position size include the orders' unsettled amounts
and report zero at or below the dust threshold.
"""

from __future__ import annotations

from typing import Protocol

from ..oracle import PriceFeed, is_fresh
from .config import ClearingHouseConfig
from .errors import ClearingHouseError, InsufficientMargin, StalePrice, UnknownMarket
from .math import PPM, mul_div_rounding_up, to_quote_value, to_quote_value_rounding_up
from .state import ClearingHouseState, MarketState


class BalanceReader(Protocol):
    def get_balance(self, trader: str) -> int: ...


class MarginCalculator:
    """Read-only view over a clearing-house state, a price feed and collateral balances."""

    def __init__(
        self,
        state: ClearingHouseState,
        price_feed: PriceFeed,
        balances: BalanceReader,
        config: ClearingHouseConfig,
        now: int = 0,
    ) -> None:
        self._state = state
        self._price_feed = price_feed
        self._balances = balances
        self._config = config
        self._now = now

    def _market(self, market: str) -> MarketState:
        state = self._state.markets.get(market)
        if state is None:
            raise UnknownMarket(f"unknown market {market!r}")
        return state

    def _dust(self, value: int) -> int:
        return 0 if abs(value) <= self._config.dust else value

    def markets_of(self, trader: str) -> list[str]:
        return sorted(
            set(self._state.positions.markets_of(trader)) | set(self._state.orders.markets_of(trader))
        )

    def index_price(self, market: str) -> int:
        price, timestamp = self._price_feed.latest_price(market)
        staleness = self._config.max_oracle_staleness_seconds
        if staleness and not is_fresh(timestamp, self._now, staleness):
            raise StalePrice(f"price of {market!r} at {timestamp} is stale at {self._now}")
        return price

    # -- Position figures ----------------------------------------------------

    def total_position_size(self, trader: str, market: str, apply_dust: bool = True) -> int:
        market_state = self._market(market)
        maker_base, _ = self._state.orders.maker_exposure(trader, market_state)
        size = self._state.positions.get(trader, market).base_balance + maker_base
        return self._dust(size) if apply_dust else size

    def net_quote_balance(self, trader: str, market: str, apply_dust: bool = True) -> int:
        market_state = self._market(market)
        _, maker_quote = self._state.orders.maker_exposure(trader, market_state)
        net = self._state.positions.get(trader, market).quote_balance + maker_quote
        return self._dust(net) if apply_dust else net

    def account_balances(self, trader: str, market: str) -> tuple[int, int]:
        """Base/quote balances after the debits of the account's liquidity orders."""
        position = self._state.positions.get(trader, market)
        base_basis, quote_basis = self._state.orders.maker_basis(trader, market)
        return position.base_balance - base_basis, position.quote_balance - quote_basis

    def unrealized_pnl(self, trader: str, market: str) -> int:
        size = self.total_position_size(trader, market)
        net_quote = self.net_quote_balance(trader, market)
        if size == 0:
            return net_quote
        return to_quote_value(size, self.index_price(market)) + net_quote

    # -- Account figures -----------------------------------------------------

    def collateral(self, trader: str) -> int:
        return self._balances.get_balance(trader) + self._state.positions.realized_pnl_of(trader)

    def account_value(self, trader: str) -> int:
        return self.collateral(trader) + sum(
            self.unrealized_pnl(trader, market) for market in self.markets_of(trader)
        )

    def margin_requirement(self, trader: str) -> int:
        total = 0
        for market in self.markets_of(trader):
            base, quote = self.account_balances(trader, market)
            if base:
                total += to_quote_value_rounding_up(abs(base), self.index_price(market))
            total += abs(quote)
        return mul_div_rounding_up(total, self._config.initial_margin_ratio_ppm, PPM)

    def free_collateral_signed(self, trader: str) -> int:
        collateral = self.collateral(trader)
        return min(collateral, self.account_value(trader)) - self.margin_requirement(trader)

    def free_collateral(self, trader: str) -> int:
        return max(0, self.free_collateral_signed(trader))

    def require_free_collateral(
        self,
        trader: str,
        error: type[ClearingHouseError] = InsufficientMargin,
    ) -> int:
        free = self.free_collateral_signed(trader)
        if free < 0:
            raise error(f"free collateral of {trader} would be {free}")
        return free
