"""Tests for src/core/clearing/orders.py: liquidity orders, fees and range crossings."""

import pytest

from src.core.clearing.config import MarketConfig
from src.core.clearing.errors import InsufficientLiquidity, InvalidAmount, InvalidRange, SlippageExceeded
from src.core.clearing.math import mul_div
from src.core.clearing.orders import LiquidityOrderBook
from src.core.clearing.positions import PositionLedger
from src.core.clearing.sqrt_price_math import MAX_TICK, encode_price_sqrt
from src.core.clearing.state import new_market
from src.core.clearing.swap import SwapParams, swap

E18 = 10**18
PRICE_154 = encode_price_sqrt(154, 1)

ALICE_BASE_USED = 647193487820662470
ALICE_QUOTE_USED = 99999999999999999997
ALICE_LIQUIDITY = 8764492579078991239
BOB_FEE = 637442741702908423


@pytest.fixture
def book():
    market = new_market(MarketConfig("ETH"), PRICE_154)
    return market, LiquidityOrderBook(), PositionLedger()


class TestAddLiquidity:
    def test_amounts_round_up(self, book):
        market, orders, ledger = book
        result = orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        assert result.base_used == ALICE_BASE_USED
        assert result.quote_used == ALICE_QUOTE_USED
        assert result.liquidity_minted == ALICE_LIQUIDITY
        assert result.fee_realized == 0
        assert market.liquidity == ALICE_LIQUIDITY
        assert 0 in market.ticks and 100000 in market.ticks

        order = orders.get_order("alice", "ETH", 0, 100000)
        assert (order.base_basis, order.quote_basis) == (ALICE_BASE_USED, ALICE_QUOTE_USED)
        assert len(ledger) == 0

    def test_maker_shows_no_exposure_after_add(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        base, quote = orders.maker_exposure("alice", market)
        assert -1 <= base <= 0
        assert -1 <= quote <= 0

    def test_range_above_price_takes_base_only(self, book):
        market, orders, ledger = book
        result = orders.add_liquidity(market, ledger, "alice", 50400, 50800, 3 * E18, 0)
        assert result.quote_used == 0
        assert 0 < result.base_used <= 3 * E18
        assert market.liquidity == 0

    def test_range_below_price_takes_quote_only(self, book):
        market, orders, ledger = book
        result = orders.add_liquidity(market, ledger, "alice", 50000, 50200, 0, 100 * E18)
        assert result.base_used == 0
        assert 0 < result.quote_used <= 100 * E18
        assert market.liquidity == 0

    def test_rejects_bad_input(self, book):
        market, orders, ledger = book
        with pytest.raises(InvalidRange):
            orders.add_liquidity(market, ledger, "alice", 100000, 0, E18, E18)
        with pytest.raises(InvalidAmount):
            orders.add_liquidity(market, ledger, "alice", 0, 100000, 0, 0)
        with pytest.raises(InvalidAmount):
            orders.add_liquidity(market, ledger, "alice", 0, 100000, -1, E18)

    def test_dust_amounts_mint_nothing(self, book):
        market, orders, ledger = book
        full = (MAX_TICK // 200) * 200
        with pytest.raises(InsufficientLiquidity):
            orders.add_liquidity(market, ledger, "alice", -full, full, 1, 1)

    def test_slippage_leaves_market_untouched(self, book):
        market, orders, ledger = book
        with pytest.raises(SlippageExceeded):
            orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18, min_base=E18)
        assert market.liquidity == 0
        assert len(market.ticks) == 0
        assert len(orders) == 0


class TestRemoveLiquidity:
    def test_round_trip_returns_what_was_added(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        result = orders.remove_liquidity(market, ledger, "alice", 0, 100000, ALICE_LIQUIDITY)
        assert ALICE_BASE_USED - 1 <= result.base_returned <= ALICE_BASE_USED
        assert ALICE_QUOTE_USED - 1 <= result.quote_returned <= ALICE_QUOTE_USED
        assert result.fee_earned == 0
        assert result.liquidity_removed == ALICE_LIQUIDITY

        assert orders.get_order("alice", "ETH", 0, 100000) is None
        assert len(market.ticks) == 0
        assert market.liquidity == 0
        position = ledger.get("alice", "ETH")
        assert abs(position.base_balance) <= 1
        assert abs(position.quote_balance) <= 1
        assert abs(position.realized_pnl) <= 1

    def test_partial_removal_releases_basis_pro_rata(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        half = ALICE_LIQUIDITY // 2
        orders.remove_liquidity(market, ledger, "alice", 0, 100000, half)
        order = orders.get_order("alice", "ETH", 0, 100000)
        assert order.liquidity == ALICE_LIQUIDITY - half
        assert order.base_basis == ALICE_BASE_USED - mul_div(ALICE_BASE_USED, half, ALICE_LIQUIDITY)
        assert order.quote_basis == ALICE_QUOTE_USED - mul_div(ALICE_QUOTE_USED, half, ALICE_LIQUIDITY)
        assert market.liquidity == ALICE_LIQUIDITY - half

    def test_cannot_remove_more_than_held(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        with pytest.raises(InsufficientLiquidity):
            orders.remove_liquidity(market, ledger, "alice", 0, 100000, ALICE_LIQUIDITY + 1)
        with pytest.raises(InsufficientLiquidity):
            orders.remove_liquidity(market, ledger, "bob", 0, 100000, 1)

    def test_min_amounts(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        with pytest.raises(SlippageExceeded):
            orders.remove_liquidity(market, ledger, "alice", 0, 100000, ALICE_LIQUIDITY, min_quote=100 * E18)
        assert orders.get_order("alice", "ETH", 0, 100000).liquidity == ALICE_LIQUIDITY


class TestFees:
    def _traded(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        swap(market, SwapParams(is_base_to_quote=True, is_exact_input=True, amount=E18))
        return market, orders, ledger

    def test_pending_fee_accrues_to_makers_in_range(self, book):
        market, orders, _ = self._traded(book)
        order = orders.get_order("alice", "ETH", 0, 100000)
        assert BOB_FEE - 1 <= orders.pending_fee(order, market) <= BOB_FEE

    def test_remove_realizes_fee(self, book):
        market, orders, ledger = self._traded(book)
        pending = orders.pending_fee(orders.get_order("alice", "ETH", 0, 100000), market)
        result = orders.remove_liquidity(market, ledger, "alice", 0, 100000, ALICE_LIQUIDITY)
        assert result.fee_earned == pending
        position = ledger.get("alice", "ETH")
        assert position.realized_pnl == pending
        # The maker took the other side of the trade.
        assert abs(position.base_balance - E18) <= 2

    def test_adding_to_an_order_realizes_its_fee(self, book):
        market, orders, ledger = self._traded(book)
        order = orders.get_order("alice", "ETH", 0, 100000)
        pending = orders.pending_fee(order, market)
        result = orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        assert result.fee_realized == pending
        assert orders.pending_fee(order, market) == 0
        assert ledger.get("alice", "ETH").realized_pnl == pending

    def test_out_of_range_order_earns_nothing(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        orders.add_liquidity(market, ledger, "dave", 50400, 50800, E18, 0)
        swap(market, SwapParams(True, True, E18))
        order = orders.get_order("dave", "ETH", 50400, 50800)
        assert orders.pending_fee(order, market) == 0


class TestRangeCrossed:
    def _crossed(self, book):
        market, orders, ledger = book
        orders.add_liquidity(market, ledger, "alice", 0, 100000, E18, 100 * E18)
        orders.add_liquidity(market, ledger, "carol", 50000, 50800, E18, 100 * E18)
        result = swap(market, SwapParams(True, True, E18))
        return market, orders, ledger, result

    def test_events_name_orders_bounded_by_crossed_tick(self, book):
        _, orders, _, result = self._crossed(book)
        events = orders.range_crossed_events("ETH", result.crossings)
        assert len(events) == 1
        event = events[0]
        assert (event.owner, event.tick_lower, event.tick_upper) == ("carol", 50000, 50800)
        assert event.tick == 50000
        assert event.is_downward
        assert orders.orders_at_tick("ETH", 50000)[0].owner == "carol"

    def test_settlement_preserves_the_account_totals(self, book):
        market, orders, ledger, result = self._crossed(book)
        (event,) = orders.range_crossed_events("ETH", result.crossings)
        size_before, quote_before = orders.maker_exposure("carol", market)

        base_delta, quote_delta = orders.settle_range_crossed(event, ledger)

        position = ledger.get("carol", "ETH")
        size_after, quote_after = orders.maker_exposure("carol", market)
        assert (position.base_balance, position.quote_balance) == (base_delta, quote_delta)
        assert base_delta > 0 and quote_delta < 0
        assert size_after == 0
        assert position.base_balance + size_after == size_before
        assert position.quote_balance + quote_after == quote_before

    def test_basis_follows_the_crossing(self, book):
        market, orders, ledger, result = self._crossed(book)
        (event,) = orders.range_crossed_events("ETH", result.crossings)
        orders.settle_range_crossed(event, ledger)
        order = orders.get_order("carol", "ETH", 50000, 50800)
        assert order.quote_basis == 0
        assert (order.base_basis, 0) == orders.in_pool_amounts(order, market)
