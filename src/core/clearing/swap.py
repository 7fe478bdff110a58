"""Swap execution against a market's tick-indexed liquidity.

All fees are charged in quote:

- quote -> base: the pool fee is taken from the quote input of each step;
- base -> quote: the base input is grossed up by the fee ratio so the taker's
  base leg equals the requested amount, and ``ceil(amount_out * fee)`` is
  charged on the quote output of each step.

Each step's fee is split between the insurance fund and the makers in range;
the makers' part accrues to ``fee_growth_global_quote_x128``. Crossed ticks are
returned as ``TickCrossing`` records in crossing order so the caller can
settle the affected liquidity orders after the swap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..fees import InsuranceFeeParams, split_fee
from .errors import InsufficientLiquidity, InvalidAmount, PriceLimitReached
from .math import (
    PPM,
    Q128,
    add_liquidity_delta,
    mul_div,
    mul_div_rounding_up,
    mul_ppm_rounding_up,
    scale_by_fee_ratio,
)
from .sqrt_price_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    get_amount0_delta,
    get_amount1_delta,
    get_next_sqrt_price_from_input,
    get_next_sqrt_price_from_output,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)
from .state import MarketState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapParams:
    is_base_to_quote: bool
    is_exact_input: bool
    amount: int
    sqrt_price_limit_x96: int = 0  # 0: no limit
    insurance_fund_fee_ratio_ppm: int = 0


@dataclass(frozen=True)
class SwapStep:
    sqrt_price_next_x96: int
    amount_in: int
    amount_out: int
    fee_amount: int


@dataclass(frozen=True)
class TickCrossing:
    tick: int
    is_downward: bool
    sqrt_price_x96: int


@dataclass(frozen=True)
class SwapResult:
    """Outcome of a swap from the taker's point of view."""

    base_delta: int
    quote_delta: int  # net of fee
    exchanged_base: int
    exchanged_quote: int
    fee: int
    insurance_fund_fee: int
    sqrt_price_before_x96: int
    sqrt_price_after_x96: int
    tick_after: int
    crossings: tuple[TickCrossing, ...] = ()
    partial_fill: bool = False


def compute_swap_step(
    sqrt_current_x96: int,
    sqrt_target_x96: int,
    liquidity: int,
    amount_remaining: int,
    fee_pips: int,
) -> SwapStep:
    """Swap within a single liquidity range.

    ``amount_remaining`` is positive for exact input and negative for exact
    output. The fee is taken from the input before the price moves.
    """
    zero_for_one = sqrt_current_x96 >= sqrt_target_x96
    exact_in = amount_remaining >= 0

    if exact_in:
        remaining_less_fee = mul_div(amount_remaining, PPM - fee_pips, PPM)
        if zero_for_one:
            amount_in = get_amount0_delta(sqrt_target_x96, sqrt_current_x96, liquidity, True)
        else:
            amount_in = get_amount1_delta(sqrt_current_x96, sqrt_target_x96, liquidity, True)
        if remaining_less_fee >= amount_in:
            sqrt_next = sqrt_target_x96
        else:
            sqrt_next = get_next_sqrt_price_from_input(
                sqrt_current_x96, liquidity, remaining_less_fee, zero_for_one,
            )
    else:
        if zero_for_one:
            amount_out = get_amount1_delta(sqrt_target_x96, sqrt_current_x96, liquidity, False)
        else:
            amount_out = get_amount0_delta(sqrt_current_x96, sqrt_target_x96, liquidity, False)
        if -amount_remaining >= amount_out:
            sqrt_next = sqrt_target_x96
        else:
            sqrt_next = get_next_sqrt_price_from_output(
                sqrt_current_x96, liquidity, -amount_remaining, zero_for_one,
            )

    reached_target = sqrt_next == sqrt_target_x96

    if zero_for_one:
        if not (reached_target and exact_in):
            amount_in = get_amount0_delta(sqrt_next, sqrt_current_x96, liquidity, True)
        if not (reached_target and not exact_in):
            amount_out = get_amount1_delta(sqrt_next, sqrt_current_x96, liquidity, False)
    else:
        if not (reached_target and exact_in):
            amount_in = get_amount1_delta(sqrt_current_x96, sqrt_next, liquidity, True)
        if not (reached_target and not exact_in):
            amount_out = get_amount0_delta(sqrt_current_x96, sqrt_next, liquidity, False)

    # Exact output never delivers more than requested.
    if not exact_in and amount_out > -amount_remaining:
        amount_out = -amount_remaining

    if exact_in and sqrt_next != sqrt_target_x96:
        # Remainder of the input is the fee.
        fee_amount = amount_remaining - amount_in
    else:
        fee_amount = mul_div_rounding_up(amount_in, fee_pips, PPM - fee_pips)

    return SwapStep(
        sqrt_price_next_x96=sqrt_next,
        amount_in=amount_in,
        amount_out=amount_out,
        fee_amount=fee_amount,
    )


def _resolve_price_limit(market: MarketState, zero_for_one: bool, limit: int) -> int:
    current = market.sqrt_price_x96
    if zero_for_one:
        limit = limit or MIN_SQRT_RATIO + 1
        if not (MIN_SQRT_RATIO < limit < current):
            raise PriceLimitReached(f"price limit {limit} not below current price {current}")
    else:
        limit = limit or MAX_SQRT_RATIO - 1
        if not (current < limit < MAX_SQRT_RATIO):
            raise PriceLimitReached(f"price limit {limit} not above current price {current}")
    return limit


def swap(market: MarketState, params: SwapParams) -> SwapResult:
    """Execute a swap against ``market`` and update its pool state in place."""
    if params.amount <= 0:
        raise InvalidAmount(f"swap amount must be positive: {params.amount}")

    zero_for_one = params.is_base_to_quote
    exact_input = params.is_exact_input
    fee_ratio = market.fee_ratio_ppm
    fee_params = InsuranceFeeParams(params.insurance_fund_fee_ratio_ppm)
    ticks = market.ticks

    limit = _resolve_price_limit(market, zero_for_one, params.sqrt_price_limit_x96)

    # Base input is grossed up so the taker's base leg is exactly `amount`
    # (exact input), or the quote output still covers `amount` after the
    # quote fee (exact output).
    pool_amount = scale_by_fee_ratio(params.amount, fee_ratio, scale_up=True) if zero_for_one else params.amount
    amount_specified = pool_amount if exact_input else -pool_amount

    remaining = amount_specified
    calculated = 0
    sqrt_price = market.sqrt_price_x96
    tick = market.tick
    liquidity = market.liquidity
    fee_growth = market.fee_growth_global_quote_x128
    fee_total = 0
    insurance_total = 0
    crossings: list[TickCrossing] = []

    while remaining != 0 and sqrt_price != limit:
        if liquidity == 0 and ticks.next_initialized_tick(tick, lte=zero_for_one) is None:
            raise InsufficientLiquidity(f"no liquidity left in market {market.market_id}")

        step_start = sqrt_price
        tick_next, initialized = ticks.next_initialized_tick_within_one_word(tick, zero_for_one)
        tick_next = max(MIN_TICK, min(MAX_TICK, tick_next))
        sqrt_next = get_sqrt_ratio_at_tick(tick_next)
        beyond_limit = sqrt_next < limit if zero_for_one else sqrt_next > limit
        target = limit if beyond_limit else sqrt_next

        step = compute_swap_step(sqrt_price, target, liquidity, remaining, fee_ratio)
        sqrt_price = step.sqrt_price_next_x96

        if exact_input:
            remaining -= step.amount_in + step.fee_amount
            calculated -= step.amount_out
        else:
            remaining += step.amount_out
            calculated += step.amount_in + step.fee_amount

        if liquidity > 0:
            if zero_for_one:
                step_fee = mul_ppm_rounding_up(step.amount_out, fee_ratio)
            else:
                step_fee = step.fee_amount
            split = split_fee(step_fee, fee_params)
            fee_growth += mul_div(split.maker_amount, Q128, liquidity)
            fee_total += step_fee
            insurance_total += split.insurance_amount

        if sqrt_price == sqrt_next:
            if initialized:
                liquidity_net = ticks.cross_tick(tick_next, fee_growth)
                if zero_for_one:
                    liquidity_net = -liquidity_net
                liquidity = add_liquidity_delta(liquidity, liquidity_net)
                crossings.append(TickCrossing(tick_next, zero_for_one, sqrt_next))
            tick = tick_next - 1 if zero_for_one else tick_next
        elif sqrt_price != step_start:
            tick = get_tick_at_sqrt_ratio(sqrt_price)

    if not exact_input and remaining != 0:
        raise PriceLimitReached(
            f"price limit reached before delivering {params.amount} in market {market.market_id}"
        )

    if zero_for_one == exact_input:
        amount0, amount1 = amount_specified - remaining, calculated
    else:
        amount0, amount1 = calculated, amount_specified - remaining

    if zero_for_one:
        exchanged_base = -scale_by_fee_ratio(amount0, fee_ratio, scale_up=False)
        exchanged_quote = -amount1
    else:
        exchanged_base = -amount0
        exchanged_quote = -scale_by_fee_ratio(amount1, fee_ratio, scale_up=False)

    if exchanged_base == 0 or exchanged_quote == 0:
        raise InsufficientLiquidity(f"swap of {params.amount} fills nothing in market {market.market_id}")

    sqrt_before = market.sqrt_price_x96
    market.sqrt_price_x96 = sqrt_price
    market.tick = tick
    market.liquidity = liquidity
    market.fee_growth_global_quote_x128 = fee_growth
    market.insurance_fund_fee += insurance_total

    result = SwapResult(
        base_delta=exchanged_base,
        quote_delta=exchanged_quote - fee_total,
        exchanged_base=exchanged_base,
        exchanged_quote=exchanged_quote,
        fee=fee_total,
        insurance_fund_fee=insurance_total,
        sqrt_price_before_x96=sqrt_before,
        sqrt_price_after_x96=sqrt_price,
        tick_after=tick,
        crossings=tuple(crossings),
        partial_fill=exact_input and remaining != 0,
    )
    logger.debug(
        "Swap executed",
        extra={
            "event": "clearing.swap",
            "market": market.market_id,
            "base_delta": result.base_delta,
            "quote_delta": result.quote_delta,
            "fee": fee_total,
            "ticks_crossed": len(crossings),
        },
    )
    return result
