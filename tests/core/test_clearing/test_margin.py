"""Tests for src/core/clearing/margin.py: free collateral, margin and withdrawals."""

import pytest

from src.core.clearing import (
    ClearingHouse,
    ClearingHouseConfig,
    Event,
    InsufficientBalance,
    InsufficientFreeCollateral,
    InsufficientMargin,
    MarginCalculator,
    MarketConfig,
    OpenPositionParams,
    StalePrice,
    WithdrawParams,
    encode_price_sqrt,
)
from src.core.clearing.math import to_quote_value
from src.core.oracle import InMemoryPriceFeed
from src.core.vault import InMemoryVault

E18 = 10**18
ALICE, BOB, CAROL = "alice", "bob", "carol"


def _house(config=None, clock=lambda: 0):
    feed = InMemoryPriceFeed()
    feed.set_price("ETH", 100 * E18)
    vault = InMemoryVault()
    ch = ClearingHouse(config, price_feed=feed, vault=vault, clock=clock)
    ch.add_market(MarketConfig("ETH"), encode_price_sqrt("151.373306", "1"))
    return ch, vault


def _with_maker(config=None, clock=lambda: 0):
    ch, vault = _house(config, clock)
    ch.deposit(ALICE, 20_000 * E18)
    ch.deposit(BOB, 1_000 * E18)
    added = ch.add_liquidity(ALICE, "ETH", 50000, 50400, 500 * E18, 50_000 * E18)
    return ch, vault, added


class TestFreeCollateral:
    def test_taker_without_position(self):
        ch, _, _ = _with_maker()
        assert ch.get_free_collateral(BOB) == 1_000 * E18
        assert ch.get_account_value(BOB) == 1_000 * E18
        assert ch.get_margin_requirement(BOB) == 0

    def test_maker_requirement_uses_liquidity_debits(self):
        ch, _, added = _with_maker()
        requirement = -(-(added.base_used * 100 + added.quote_used) // 10)
        assert ch.get_margin_requirement(ALICE) == requirement
        assert ch.get_account_value(ALICE) == 20_000 * E18
        assert ch.get_free_collateral(ALICE) == 20_000 * E18 - requirement

    def test_taker_with_position(self):
        ch, _, _ = _with_maker()
        ch.open_position(BOB, "ETH", is_base_to_quote=False, is_exact_input=True, amount=100 * E18)
        position = ch.get_position(BOB, "ETH")
        assert position.base_balance > 0
        assert -100 * E18 - 10 <= position.quote_balance <= -100 * E18

        size = ch.get_total_position_size(BOB, "ETH")
        account_value = 1_000 * E18 + to_quote_value(size, 100 * E18) + ch.get_net_quote_balance(BOB, "ETH")
        requirement = -(-(position.base_balance * 100 - position.quote_balance) // 10)
        assert ch.get_account_value(BOB) == account_value
        assert ch.get_margin_requirement(BOB) == requirement
        assert ch.get_free_collateral(BOB) == min(1_000 * E18, account_value) - requirement
        assert ch.get_free_collateral(BOB) < 1_000 * E18

    def test_open_beyond_margin_is_rejected(self):
        ch, _, _ = _with_maker()
        result = ch.execute(OpenPositionParams(BOB, "ETH", False, True, 10_000 * E18))
        assert result.rejection == "insufficient_margin"
        assert isinstance(result.error, InsufficientMargin)
        assert ch.get_position(BOB, "ETH").is_empty

    def test_standalone_calculator(self):
        ch, vault, _ = _with_maker()
        calc = MarginCalculator(ch.state, InMemoryPriceFeed(), vault, ClearingHouseConfig())
        assert calc.collateral(BOB) == 1_000 * E18
        assert calc.markets_of(ALICE) == ["ETH"]
        assert calc.markets_of(BOB) == []


class TestWithdraw:
    def test_taker_withdraws_everything(self):
        ch, vault, _ = _with_maker()
        response = ch.withdraw(BOB, 1_000 * E18)
        assert response.balance_after == 0
        assert vault.get_balance(BOB) == 0

    def test_nothing_deposited(self):
        ch, _, _ = _with_maker()
        with pytest.raises(InsufficientBalance):
            ch.withdraw(CAROL, E18)

    def test_more_than_deposited(self):
        ch, vault, _ = _with_maker()
        with pytest.raises(InsufficientBalance):
            ch.withdraw(BOB, 1_000 * E18 + 1)
        assert vault.get_balance(BOB) == 1_000 * E18

    def test_maker_withdraws_free_collateral_only(self):
        ch, vault, _ = _with_maker()
        free = ch.get_free_collateral(ALICE)
        with pytest.raises(InsufficientFreeCollateral):
            ch.withdraw(ALICE, free + 1)
        ch.withdraw(ALICE, free)
        assert vault.get_balance(ALICE) == 20_000 * E18 - free
        assert ch.get_free_collateral(ALICE) == 0

    def test_realized_pnl_is_settled_first(self):
        ch, vault, _ = _with_maker()
        ch.open_position(BOB, "ETH", False, True, 100 * E18)
        ch.close_position(BOB, "ETH")
        realized = ch.get_position(BOB, "ETH").realized_pnl
        assert realized < 0  # fees both ways

        result = ch.execute(WithdrawParams(BOB, 500 * E18))
        assert result.accepted
        assert result.response.pnl_settled == realized
        assert [e.event for e in result.effects] == [Event.PNL_SETTLED, Event.COLLATERAL_WITHDRAWN]
        assert vault.get_balance(BOB) == 1_000 * E18 + realized - 500 * E18
        assert ch.get_position(BOB, "ETH").is_empty

    def test_rejected_withdraw_keeps_pnl_owed(self):
        ch, vault, _ = _with_maker()
        ch.open_position(BOB, "ETH", False, True, 100 * E18)
        ch.close_position(BOB, "ETH")
        realized = ch.get_position(BOB, "ETH").realized_pnl
        with pytest.raises(InsufficientBalance):
            ch.withdraw(BOB, 1_000 * E18)
        assert ch.get_position(BOB, "ETH").realized_pnl == realized
        assert vault.get_balance(BOB) == 1_000 * E18


class TestStalePrice:
    def _stale_house(self):
        now = [30]
        config = ClearingHouseConfig(max_oracle_staleness_seconds=60)
        ch, _, _ = _with_maker(config=config, clock=lambda: now[0])
        now[0] = 100
        return ch

    def test_stale_price_blocks_trading(self):
        ch = self._stale_house()
        result = ch.execute(OpenPositionParams(BOB, "ETH", False, True, 100 * E18))
        assert result.rejection == "stale_price"
        with pytest.raises(StalePrice):
            ch.get_free_collateral(ALICE)

    def test_flat_account_needs_no_price(self):
        ch = self._stale_house()
        assert ch.get_free_collateral(BOB) == 1_000 * E18
        ch.withdraw(BOB, 1_000 * E18)


class TestDust:
    @pytest.mark.parametrize("size,reported", [(10, 0), (-10, 0), (11, 11), (-11, -11)])
    def test_threshold_is_inclusive(self, size, reported):
        ch, _ = _house()
        ch.state.positions.apply_swap_delta(BOB, "ETH", size, -size)
        assert ch.get_total_position_size(BOB, "ETH") == reported
        assert ch.get_net_quote_balance(BOB, "ETH") == -reported

    def test_raw_figures_keep_dust(self):
        ch, vault = _house()
        ch.state.positions.apply_swap_delta(BOB, "ETH", 10, -10)
        calc = MarginCalculator(ch.state, InMemoryPriceFeed(), vault, ClearingHouseConfig())
        assert calc.total_position_size(BOB, "ETH", apply_dust=False) == 10
        assert calc.net_quote_balance(BOB, "ETH", apply_dust=False) == -10
        assert calc.total_position_size(BOB, "ETH") == 0
