"""Fixed-point arithmetic for the clearing engine.

Conventions:
- token amounts and prices carry 18 decimals (``ONE``),
- square-root prices are Q64.96 (``Q96``),
- fee growth per unit of liquidity is Q128 (``Q128``),
- fee ratios are parts per million (``PPM``).

Python integers never wrap, so every helper checks that operands and results
stay inside the uint256 domain and raises ``ArithmeticOverflow`` instead.
"""

from __future__ import annotations

from .errors import ArithmeticOverflow, InsufficientLiquidity

ONE = 10**18
Q96 = 2**96
Q128 = 2**128
PPM = 1_000_000

UINT128_MAX = 2**128 - 1
UINT160_MAX = 2**160 - 1
UINT256_MAX = 2**256 - 1
INT256_MAX = 2**255 - 1
INT256_MIN = -(2**255)


def check_uint256(value: int, name: str = "value") -> int:
    if value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflow(f"{name} outside uint256: {value}")
    return value


def check_int256(value: int, name: str = "value") -> int:
    if value < INT256_MIN or value > INT256_MAX:
        raise ArithmeticOverflow(f"{name} outside int256: {value}")
    return value


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with full-precision intermediate product."""
    check_uint256(a, "a")
    check_uint256(b, "b")
    if denominator <= 0:
        raise ArithmeticOverflow(f"denominator must be positive: {denominator}")
    return check_uint256((a * b) // denominator, "mul_div result")


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    """ceil(a * b / denominator) with full-precision intermediate product."""
    check_uint256(a, "a")
    check_uint256(b, "b")
    if denominator <= 0:
        raise ArithmeticOverflow(f"denominator must be positive: {denominator}")
    return check_uint256(-((-a * b) // denominator), "mul_div result")


def div_rounding_up(a: int, b: int) -> int:
    if b <= 0:
        raise ArithmeticOverflow(f"divisor must be positive: {b}")
    return -((-a) // b)


def signed_mul_div(a: int, b: int, denominator: int) -> int:
    """Signed ``mul_div`` truncating toward zero."""
    negative = (a < 0) != (b < 0)
    result = mul_div(abs(a), abs(b), denominator)
    return -result if negative else result


def add_liquidity_delta(liquidity: int, delta: int) -> int:
    """Apply a signed delta to an unsigned liquidity amount."""
    result = liquidity + delta
    if result < 0:
        raise InsufficientLiquidity(f"liquidity {liquidity} cannot absorb delta {delta}")
    if result > UINT128_MAX:
        raise ArithmeticOverflow(f"liquidity exceeds uint128: {result}")
    return result


def scale_by_fee_ratio(amount: int, fee_ratio_ppm: int, scale_up: bool) -> int:
    """Gross an amount up by a fee ratio (rounding up) or net it down (rounding down).

    ``scale_up`` yields the amount that, after paying the fee, leaves ``amount``.
    """
    if not (0 <= fee_ratio_ppm < PPM):
        raise ValueError(f"fee_ratio_ppm must be in [0, {PPM}): {fee_ratio_ppm}")
    if scale_up:
        return mul_div_rounding_up(amount, PPM, PPM - fee_ratio_ppm)
    return mul_div(amount, PPM - fee_ratio_ppm, PPM)


def mul_ppm_rounding_up(amount: int, ratio_ppm: int) -> int:
    return mul_div_rounding_up(amount, ratio_ppm, PPM)


def to_quote_value(base_amount: int, price: int) -> int:
    """Mark a signed base amount to an 18-decimal price, flooring toward -inf."""
    check_int256(base_amount, "base_amount")
    check_uint256(price, "price")
    return base_amount * price // ONE


def to_quote_value_rounding_up(base_amount: int, price: int) -> int:
    """Notional of an unsigned base amount, rounded up."""
    return mul_div_rounding_up(base_amount, price, ONE)
