"""Tick and square-root price math for concentrated liquidity.

Integer-exact port of the concentrated-liquidity conventions:
- ``price(tick) = 1.0001 ** tick`` and ``sqrt_price_x96 = sqrt(price) * 2**96``,
- amount deltas between two sqrt prices for a given liquidity,
- next sqrt price after adding/removing an amount of either token,
- liquidity that a pair of token amounts can fund over a range.

Token 0 is the base token and token 1 is the quote token.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Context, Decimal

from .errors import ArithmeticOverflow, InsufficientLiquidity
from .math import (
    Q96,
    UINT160_MAX,
    UINT256_MAX,
    div_rounding_up,
    mul_div,
    mul_div_rounding_up,
)

MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

# 1 / sqrt(1.0001) ** (2 ** i) in Q128, for each bit i of |tick|.
_TICK_BIT_RATIOS: tuple[tuple[int, int], ...] = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)
_TICK_BIT_0 = 0xFFFCB933BD6FAD37AA2D162D1A594001


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """Return ``sqrt(1.0001 ** tick) * 2**96``, rounded up to the next Q96 unit."""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ArithmeticOverflow(f"tick out of bounds: {tick}")
    abs_tick = abs(tick)
    ratio = _TICK_BIT_0 if abs_tick & 0x1 else 1 << 128
    for bit, factor in _TICK_BIT_RATIOS:
        if abs_tick & bit:
            ratio = (ratio * factor) >> 128
    if tick > 0:
        ratio = UINT256_MAX // ratio
    # Q128.128 -> Q64.96, rounding up so tick_at(ratio_at(t)) == t.
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def get_tick_at_sqrt_ratio(sqrt_price_x96: int) -> int:
    """Return the greatest tick whose sqrt ratio is <= ``sqrt_price_x96``."""
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ArithmeticOverflow(f"sqrt price out of bounds: {sqrt_price_x96}")
    lo, hi = MIN_TICK, MAX_TICK
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if get_sqrt_ratio_at_tick(mid) <= sqrt_price_x96:
            lo = mid
        else:
            hi = mid - 1
    return lo


def get_amount0_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """Base amount between two sqrt prices: ``L * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b)``."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_a <= 0:
        raise ArithmeticOverflow("sqrt price must be positive")
    numerator1 = liquidity << 96
    numerator2 = sqrt_b - sqrt_a
    if round_up:
        return div_rounding_up(mul_div_rounding_up(numerator1, numerator2, sqrt_b), sqrt_a)
    return mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def get_amount1_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    """Quote amount between two sqrt prices: ``L * (sqrt_b - sqrt_a)``."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if round_up:
        return mul_div_rounding_up(liquidity, sqrt_b - sqrt_a, Q96)
    return mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def _next_sqrt_price_from_amount0_rounding_up(
    sqrt_price: int, liquidity: int, amount: int, add: bool,
) -> int:
    if amount == 0:
        return sqrt_price
    numerator1 = liquidity << 96
    product = amount * sqrt_price
    if add:
        if numerator1 + product <= UINT256_MAX:
            return mul_div_rounding_up(numerator1, sqrt_price, numerator1 + product)
        return div_rounding_up(numerator1, numerator1 // sqrt_price + amount)
    if product > UINT256_MAX or numerator1 <= product:
        raise InsufficientLiquidity("not enough base liquidity to deliver the output")
    return check_sqrt_price(mul_div_rounding_up(numerator1, sqrt_price, numerator1 - product))


def _next_sqrt_price_from_amount1_rounding_down(
    sqrt_price: int, liquidity: int, amount: int, add: bool,
) -> int:
    if add:
        if amount <= UINT160_MAX:
            quotient = (amount << 96) // liquidity
        else:
            quotient = mul_div(amount, Q96, liquidity)
        return check_sqrt_price(sqrt_price + quotient)
    if amount <= UINT160_MAX:
        quotient = div_rounding_up(amount << 96, liquidity)
    else:
        quotient = mul_div_rounding_up(amount, Q96, liquidity)
    if sqrt_price <= quotient:
        raise InsufficientLiquidity("not enough quote liquidity to deliver the output")
    return sqrt_price - quotient


def check_sqrt_price(sqrt_price_x96: int) -> int:
    if sqrt_price_x96 <= 0 or sqrt_price_x96 > UINT160_MAX:
        raise ArithmeticOverflow(f"sqrt price outside uint160: {sqrt_price_x96}")
    return sqrt_price_x96


def get_next_sqrt_price_from_input(
    sqrt_price: int, liquidity: int, amount_in: int, zero_for_one: bool,
) -> int:
    """Next sqrt price after ``amount_in`` of token0 (``zero_for_one``) or token1 enters."""
    if sqrt_price <= 0 or liquidity <= 0:
        raise InsufficientLiquidity("swap step needs a positive price and liquidity")
    if zero_for_one:
        return _next_sqrt_price_from_amount0_rounding_up(sqrt_price, liquidity, amount_in, True)
    return _next_sqrt_price_from_amount1_rounding_down(sqrt_price, liquidity, amount_in, True)


def get_next_sqrt_price_from_output(
    sqrt_price: int, liquidity: int, amount_out: int, zero_for_one: bool,
) -> int:
    """Next sqrt price after ``amount_out`` of token1 (``zero_for_one``) or token0 leaves."""
    if sqrt_price <= 0 or liquidity <= 0:
        raise InsufficientLiquidity("swap step needs a positive price and liquidity")
    if zero_for_one:
        return _next_sqrt_price_from_amount1_rounding_down(sqrt_price, liquidity, amount_out, False)
    return _next_sqrt_price_from_amount0_rounding_up(sqrt_price, liquidity, amount_out, False)


def _liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    intermediate = mul_div(sqrt_a, sqrt_b, Q96)
    return mul_div(amount0, intermediate, sqrt_b - sqrt_a)


def _liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    return mul_div(amount1, Q96, sqrt_b - sqrt_a)


def get_liquidity_for_amounts(
    sqrt_price: int, sqrt_a: int, sqrt_b: int, amount0: int, amount1: int,
) -> int:
    """Largest liquidity the given token amounts can fund over ``[sqrt_a, sqrt_b]``."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_price <= sqrt_a:
        return _liquidity_for_amount0(sqrt_a, sqrt_b, amount0)
    if sqrt_price < sqrt_b:
        return min(
            _liquidity_for_amount0(sqrt_price, sqrt_b, amount0),
            _liquidity_for_amount1(sqrt_a, sqrt_price, amount1),
        )
    return _liquidity_for_amount1(sqrt_a, sqrt_b, amount1)


def get_amounts_for_liquidity(
    sqrt_price: int, sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool = False,
) -> tuple[int, int]:
    """Token amounts held by ``liquidity`` over ``[sqrt_a, sqrt_b]`` at ``sqrt_price``."""
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_price <= sqrt_a:
        return get_amount0_delta(sqrt_a, sqrt_b, liquidity, round_up), 0
    if sqrt_price < sqrt_b:
        return (
            get_amount0_delta(sqrt_price, sqrt_b, liquidity, round_up),
            get_amount1_delta(sqrt_a, sqrt_price, liquidity, round_up),
        )
    return 0, get_amount1_delta(sqrt_a, sqrt_b, liquidity, round_up)


_ENCODE_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)
_TWENTY_DECIMALS = Decimal(10) ** -20


def encode_price_sqrt(reserve1: int | str | Decimal, reserve0: int | str | Decimal) -> int:
    """Encode ``reserve1 / reserve0`` as a Q96 sqrt price.

    The ratio and its square root are rounded half-up to 20 decimals before
    scaling by 2**96 and flooring, which reproduces the usual fixture helper
    for human-readable prices.
    """
    ratio = _ENCODE_CONTEXT.divide(Decimal(reserve1), Decimal(reserve0))
    ratio = ratio.quantize(_TWENTY_DECIMALS, context=_ENCODE_CONTEXT)
    if ratio <= 0:
        raise ValueError(f"price must be positive: {reserve1}/{reserve0}")
    root = ratio.sqrt(_ENCODE_CONTEXT).quantize(_TWENTY_DECIMALS, context=_ENCODE_CONTEXT)
    scaled = _ENCODE_CONTEXT.multiply(root, Decimal(Q96))
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))
