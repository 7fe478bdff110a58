"""Tests for src/core/clearing/ticks.py: the tick-indexed liquidity book."""

import pytest

from src.core.clearing.errors import ArithmeticOverflow, InsufficientLiquidity, InvalidRange
from src.core.clearing.math import UINT128_MAX
from src.core.clearing.sqrt_price_math import MIN_TICK
from src.core.clearing.ticks import TickLiquidityBook, max_liquidity_per_tick


def _book_with_range(liquidity=1000, current_tick=0, fee_growth=0):
    book = TickLiquidityBook(200)
    book.add_liquidity(-200, 200, liquidity, current_tick, fee_growth)
    return book


class TestRangeValidation:
    def test_inverted(self):
        with pytest.raises(InvalidRange):
            TickLiquidityBook(200).validate_range(200, 0)
        with pytest.raises(InvalidRange):
            TickLiquidityBook(200).validate_range(200, 200)

    def test_unaligned(self):
        with pytest.raises(InvalidRange):
            TickLiquidityBook(200).validate_range(0, 150)

    def test_out_of_bounds(self):
        with pytest.raises(InvalidRange):
            TickLiquidityBook(1).validate_range(MIN_TICK - 1, 0)

    def test_bad_spacing(self):
        with pytest.raises(ValueError):
            TickLiquidityBook(0)


class TestAddRemove:
    def test_add_initializes_both_ticks(self):
        book = TickLiquidityBook(200)
        flipped = book.add_liquidity(-200, 200, 1000, 0, 5)
        assert flipped == [-200, 200]
        lower, upper = book.ticks()
        assert (lower.index, lower.liquidity_gross, lower.liquidity_net) == (-200, 1000, 1000)
        assert (upper.index, upper.liquidity_gross, upper.liquidity_net) == (200, 1000, -1000)

    def test_outside_fee_growth_initialized_below_current_tick(self):
        book = TickLiquidityBook(200)
        book.add_liquidity(-200, 200, 1000, 0, 5)
        assert book.get(-200).fee_growth_outside_quote_x128 == 5
        assert book.get(200).fee_growth_outside_quote_x128 == 0

    def test_add_to_existing_range(self):
        book = _book_with_range()
        assert book.add_liquidity(-200, 200, 500, 0, 0) == []
        assert book.get(-200).liquidity_gross == 1500
        assert book.get(200).liquidity_net == -1500

    def test_shared_boundary(self):
        book = _book_with_range()
        book.add_liquidity(200, 400, 300, 0, 0)
        assert book.get(200).liquidity_gross == 1300
        assert book.get(200).liquidity_net == -700
        assert len(book) == 3

    def test_remove_prunes_empty_ticks(self):
        book = _book_with_range()
        assert book.remove_liquidity(-200, 200, 1000, 0, 0) == [-200, 200]
        assert len(book) == 0
        assert -200 not in book

    def test_remove_too_much_leaves_book_unchanged(self):
        book = _book_with_range()
        with pytest.raises(InsufficientLiquidity):
            book.remove_liquidity(-200, 200, 1001, 0, 0)
        assert book.get(-200).liquidity_gross == 1000
        assert book.get(200).liquidity_gross == 1000

    def test_remove_unknown_range(self):
        with pytest.raises(InsufficientLiquidity):
            TickLiquidityBook(200).remove_liquidity(-200, 200, 1, 0, 0)

    def test_per_tick_cap(self):
        book = TickLiquidityBook(200)
        with pytest.raises(ArithmeticOverflow):
            book.add_liquidity(-200, 200, book.max_liquidity_per_tick + 1, 0, 0)

    def test_max_liquidity_per_tick(self):
        assert max_liquidity_per_tick(200) == UINT128_MAX // 8873
        assert max_liquidity_per_tick(1) == UINT128_MAX // (2 * 887272 + 1)


class TestFeeGrowthInside:
    def test_price_in_range(self):
        book = _book_with_range()
        assert book.fee_growth_inside(-200, 200, 0, 100) == 100

    def test_price_above_range(self):
        book = _book_with_range()
        assert book.fee_growth_inside(-200, 200, 300, 100) == 0

    def test_price_below_range(self):
        book = _book_with_range()
        assert book.fee_growth_inside(-200, 200, -300, 100) == 0

    def test_offset_from_initialization(self):
        book = _book_with_range(fee_growth=50)
        assert book.fee_growth_inside(-200, 200, 0, 50) == 0
        assert book.fee_growth_inside(-200, 200, 0, 80) == 30

    def test_cross_freezes_growth_inside(self):
        book = _book_with_range()
        assert book.cross_tick(200, 100) == -1000
        assert book.get(200).fee_growth_outside_quote_x128 == 100
        assert book.fee_growth_inside(-200, 200, 200, 150) == 100


class TestNextInitializedTick:
    def test_search(self):
        book = _book_with_range()
        assert book.next_initialized_tick(0, lte=True) == -200
        assert book.next_initialized_tick(0, lte=False) == 200
        assert book.next_initialized_tick(-200, lte=True) == -200
        assert book.next_initialized_tick(200, lte=False) is None
        assert book.next_initialized_tick(-400, lte=True) is None

    def test_within_one_word_upward(self):
        book = TickLiquidityBook(1)
        book.add_liquidity(-10, 300, 1, 0, 0)
        assert book.next_initialized_tick_within_one_word(0, lte=False) == (255, False)
        assert book.next_initialized_tick_within_one_word(255, lte=False) == (300, True)

    def test_within_one_word_downward(self):
        book = TickLiquidityBook(1)
        book.add_liquidity(-300, 300, 1, 0, 0)
        assert book.next_initialized_tick_within_one_word(0, lte=True) == (0, False)
        assert book.next_initialized_tick_within_one_word(-1, lte=True) == (-256, False)
        assert book.next_initialized_tick_within_one_word(-257, lte=True) == (-300, True)

    def test_spacing_compresses_ticks(self):
        book = TickLiquidityBook(200)
        book.add_liquidity(0, 100000, 1, 50372, 0)
        assert book.next_initialized_tick_within_one_word(50372, lte=True) == (0, True)
        assert book.next_initialized_tick_within_one_word(50372, lte=False) == (51000, False)
        assert book.next_initialized_tick_within_one_word(51000, lte=False) == (100000, True)
