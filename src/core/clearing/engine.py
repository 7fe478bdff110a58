"""Dispatch-table engine for the clearing house.

``ClearingHouse.execute(params)`` is the single entry point. It:

1. Looks up the handler for ``params.action`` and checks the deadline.
2. Runs the handler against a deep copy of the state, staging vault
   movements and events on a transaction instead of applying them.
3. Checks all invariants on the post-state.
4. Commits state, vault movements and events together, or discards all of
   them and returns a ``StepResult`` carrying the rejection.

Operations are serialized by a re-entrant lock; nothing a failed operation
did is ever visible.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable

from ..oracle import PriceFeed
from ..vault import CollateralVault
from .config import ClearingHouseConfig, MarketConfig
from .errors import (
    ClearingHouseError,
    DeadlineExceeded,
    InsufficientBalance,
    InsufficientFreeCollateral,
    InsufficientMargin,
    InvalidAmount,
    InvariantViolation,
    SlippageExceeded,
    UnknownMarket,
)
from .invariants import check_all
from .margin import MarginCalculator
from .orders import AddLiquidityResult, LiquidityOrder, RemoveLiquidityResult
from .positions import Position
from .state import ClearingHouseState, MarketState, initial_state, new_market
from .swap import SwapParams, SwapResult, swap
from .types import (
    Action,
    AddLiquidityParams,
    ClosePositionParams,
    CollateralResponse,
    DepositParams,
    Effect,
    Event,
    OpenPositionParams,
    PositionResponse,
    RemoveLiquidityParams,
    StepResult,
    WithdrawParams,
)

logger = logging.getLogger(__name__)


class _Transaction:
    """Working copy of the state plus staged vault movements and events."""

    def __init__(self, state: ClearingHouseState, vault: CollateralVault) -> None:
        self.state = state
        self._vault = vault
        self.vault_deltas: dict[str, int] = {}
        self.effects: list[Effect] = []

    def get_balance(self, trader: str) -> int:
        return self._vault.get_balance(trader) + self.vault_deltas.get(trader, 0)

    def move_collateral(self, trader: str, amount: int) -> None:
        """Stage a signed vault movement (credit > 0, debit < 0)."""
        if amount:
            self.vault_deltas[trader] = self.vault_deltas.get(trader, 0) + amount

    def emit(self, event: Event, trader: str, market: str | None = None, **data: Any) -> None:
        self.effects.append(Effect(event=event, trader=trader, market=market, data=data))


Handler = Callable[["ClearingHouse", _Transaction, Any], Any]


class ClearingHouse:
    """Perpetual clearing house over concentrated-liquidity markets."""

    def __init__(
        self,
        config: ClearingHouseConfig | None = None,
        *,
        price_feed: PriceFeed,
        vault: CollateralVault,
        clock: Callable[[], int] | None = None,
        event_sink: Callable[[Effect], None] | None = None,
    ) -> None:
        self.config = config or ClearingHouseConfig()
        self._price_feed = price_feed
        self._vault = vault
        self._clock = clock or (lambda: int(time.time()))
        self._event_sink = event_sink
        self._state = initial_state()
        self._lock = threading.RLock()

    @property
    def state(self) -> ClearingHouseState:
        """Committed state. Treat as read-only."""
        return self._state

    def add_market(self, market: MarketConfig, sqrt_price_x96: int) -> MarketState:
        with self._lock:
            if market.market_id in self._state.markets:
                raise ValueError(f"market {market.market_id!r} already exists")
            state = new_market(market, sqrt_price_x96)
            self._state.markets[market.market_id] = state
            logger.info(
                "Market added",
                extra={
                    "event": "clearing.add_market",
                    "market": market.market_id,
                    "fee_ratio_ppm": market.fee_ratio_ppm,
                    "tick": state.tick,
                },
            )
            return state

    # -- Execution -----------------------------------------------------------

    def execute(self, params: Any) -> StepResult:
        """Run one operation; rejections are returned, never raised."""
        return self._run(params, commit=True)

    def execute_or_raise(self, params: Any) -> StepResult:
        """Like ``execute()`` but re-raises the rejection's ``ClearingHouseError``."""
        result = self.execute(params)
        if not result.accepted:
            if result.error is None:
                raise ClearingHouseError(result.rejection or "rejected")
            raise result.error
        return result

    def preview(self, params: Any) -> StepResult:
        """Run an operation and discard its effects, whatever the outcome."""
        return self._run(params, commit=False)

    def _run(self, params: Any, commit: bool) -> StepResult:
        handler = _DISPATCH.get(getattr(params, "action", None))
        if handler is None:
            raise TypeError(f"unsupported operation: {type(params).__name__}")

        with self._lock:
            tx = _Transaction(copy.deepcopy(self._state), self._vault)
            try:
                self._check_deadline(getattr(params, "deadline", None))
                response = handler(self, tx, params)
                violations = check_all(tx.state)
                if violations:
                    raise InvariantViolation(violations)
            except ClearingHouseError as exc:
                logger.warning(
                    "Operation rejected",
                    extra={
                        "event": f"clearing.{params.action.value}.rejected",
                        "trader": params.trader,
                        "code": exc.code,
                        "reason": str(exc),
                    },
                )
                return StepResult(accepted=False, rejection=exc.code, error=exc)

            if commit:
                self._commit(tx)
                logger.info(
                    "Operation committed",
                    extra={
                        "event": f"clearing.{params.action.value}",
                        "trader": params.trader,
                        "market": getattr(params, "market", None),
                        "effects": len(tx.effects),
                    },
                )
            return StepResult(accepted=True, response=response, effects=tuple(tx.effects))

    def _commit(self, tx: _Transaction) -> None:
        self._state = tx.state
        for trader, amount in sorted(tx.vault_deltas.items()):
            if amount > 0:
                self._vault.credit(trader, amount)
            elif amount < 0:
                self._vault.debit(trader, -amount)
        if self._event_sink is not None:
            for effect in tx.effects:
                self._event_sink(effect)

    def _check_deadline(self, deadline: int | None) -> None:
        if deadline is None:
            return
        now = self._clock()
        if now > deadline:
            raise DeadlineExceeded(f"deadline {deadline} passed at {now}")

    def _margin(self, state: ClearingHouseState, balances: Any) -> MarginCalculator:
        return MarginCalculator(state, self._price_feed, balances, self.config, now=self._clock())

    # -- Convenience wrappers ------------------------------------------------

    def open_position(
        self,
        trader: str,
        market: str,
        is_base_to_quote: bool,
        is_exact_input: bool,
        amount: int,
        opposite_amount_bound: int = 0,
        sqrt_price_limit_x96: int = 0,
        deadline: int | None = None,
    ) -> PositionResponse:
        return self.execute_or_raise(
            OpenPositionParams(
                trader, market, is_base_to_quote, is_exact_input, amount,
                opposite_amount_bound, sqrt_price_limit_x96, deadline,
            )
        ).response

    def close_position(
        self,
        trader: str,
        market: str,
        sqrt_price_limit_x96: int = 0,
        opposite_amount_bound: int = 0,
        deadline: int | None = None,
    ) -> PositionResponse:
        return self.execute_or_raise(
            ClosePositionParams(trader, market, sqrt_price_limit_x96, opposite_amount_bound, deadline)
        ).response

    def add_liquidity(
        self,
        trader: str,
        market: str,
        tick_lower: int,
        tick_upper: int,
        base: int,
        quote: int,
        min_base: int = 0,
        min_quote: int = 0,
        deadline: int | None = None,
    ) -> AddLiquidityResult:
        return self.execute_or_raise(
            AddLiquidityParams(
                trader, market, tick_lower, tick_upper, base, quote, min_base, min_quote, deadline,
            )
        ).response

    def remove_liquidity(
        self,
        trader: str,
        market: str,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
        min_base: int = 0,
        min_quote: int = 0,
        deadline: int | None = None,
    ) -> RemoveLiquidityResult:
        return self.execute_or_raise(
            RemoveLiquidityParams(
                trader, market, tick_lower, tick_upper, liquidity, min_base, min_quote, deadline,
            )
        ).response

    def deposit(self, trader: str, amount: int) -> CollateralResponse:
        return self.execute_or_raise(DepositParams(trader, amount)).response

    def withdraw(self, trader: str, amount: int) -> CollateralResponse:
        return self.execute_or_raise(WithdrawParams(trader, amount)).response

    # -- Queries -------------------------------------------------------------

    def get_market(self, market: str) -> MarketState:
        state = self._state.markets.get(market)
        if state is None:
            raise UnknownMarket(f"unknown market {market!r}")
        return state

    def get_position(self, trader: str, market: str) -> Position:
        return self._state.positions.get(trader, market)

    def get_order(self, trader: str, market: str, tick_lower: int, tick_upper: int) -> LiquidityOrder | None:
        return self._state.orders.get_order(trader, market, tick_lower, tick_upper)

    def get_pending_fee(self, trader: str, market: str, tick_lower: int, tick_upper: int) -> int:
        order = self.get_order(trader, market, tick_lower, tick_upper)
        if order is None:
            return 0
        return self._state.orders.pending_fee(order, self.get_market(market))

    def get_net_quote_balance(self, trader: str, market: str | None = None) -> int:
        """Net quote balance in one market, or summed over the trader's markets."""
        calc = self._margin(self._state, self._vault)
        if market is not None:
            return calc.net_quote_balance(trader, market)
        return sum(calc.net_quote_balance(trader, m) for m in calc.markets_of(trader))

    def get_total_position_size(self, trader: str, market: str) -> int:
        return self._margin(self._state, self._vault).total_position_size(trader, market)

    def get_account_value(self, trader: str) -> int:
        return self._margin(self._state, self._vault).account_value(trader)

    def get_margin_requirement(self, trader: str) -> int:
        return self._margin(self._state, self._vault).margin_requirement(trader)

    def get_free_collateral(self, trader: str) -> int:
        return self._margin(self._state, self._vault).free_collateral(trader)

    def get_insurance_fund_fee(self, market: str) -> int:
        return self.get_market(market).insurance_fund_fee


# -- Handlers ----------------------------------------------------------------


def _market(tx: _Transaction, market: str) -> MarketState:
    state = tx.state.markets.get(market)
    if state is None:
        raise UnknownMarket(f"unknown market {market!r}")
    return state


def _check_opposite_amount(
    is_base_to_quote: bool, is_exact_input: bool, result: SwapResult, bound: int,
) -> None:
    if bound == 0:
        return
    if is_base_to_quote:
        if is_exact_input and result.quote_delta < bound:
            raise SlippageExceeded(f"received {result.quote_delta} quote, wanted at least {bound}")
        if not is_exact_input and -result.base_delta > bound:
            raise SlippageExceeded(f"paid {-result.base_delta} base, wanted at most {bound}")
    else:
        if is_exact_input and result.base_delta < bound:
            raise SlippageExceeded(f"received {result.base_delta} base, wanted at least {bound}")
        if not is_exact_input and -result.quote_delta > bound:
            raise SlippageExceeded(f"paid {-result.quote_delta} quote, wanted at most {bound}")


def _swap_and_settle(
    ch: ClearingHouse,
    tx: _Transaction,
    trader: str,
    market: MarketState,
    is_base_to_quote: bool,
    is_exact_input: bool,
    amount: int,
    sqrt_price_limit_x96: int,
    opposite_amount_bound: int,
) -> PositionResponse:
    result = swap(
        market,
        SwapParams(
            is_base_to_quote=is_base_to_quote,
            is_exact_input=is_exact_input,
            amount=amount,
            sqrt_price_limit_x96=sqrt_price_limit_x96,
            insurance_fund_fee_ratio_ppm=ch.config.insurance_fund_fee_ratio_ppm,
        ),
    )
    _check_opposite_amount(is_base_to_quote, is_exact_input, result, opposite_amount_bound)

    positions = tx.state.positions
    realized = positions.apply_swap_delta(trader, market.market_id, result.base_delta, result.quote_delta)

    orders = tx.state.orders
    for event in orders.range_crossed_events(market.market_id, result.crossings):
        base_delta, quote_delta = orders.settle_range_crossed(event, positions)
        tx.emit(
            Event.RANGE_CROSSED, event.owner, market.market_id,
            tick_lower=event.tick_lower, tick_upper=event.tick_upper, tick=event.tick,
            is_downward=event.is_downward, base_delta=base_delta, quote_delta=quote_delta,
        )

    tx.emit(
        Event.POSITION_CHANGED, trader, market.market_id,
        base_delta=result.base_delta, quote_delta=result.quote_delta, fee=result.fee,
        realized_pnl=realized, sqrt_price_after_x96=result.sqrt_price_after_x96,
    )
    return PositionResponse(
        base_delta=result.base_delta,
        quote_delta=result.quote_delta,
        fee=result.fee,
        realized_pnl=realized,
        partial_fill=result.partial_fill,
    )


def _open_position(ch: ClearingHouse, tx: _Transaction, p: OpenPositionParams) -> PositionResponse:
    market = _market(tx, p.market)
    response = _swap_and_settle(
        ch, tx, p.trader, market, p.is_base_to_quote, p.is_exact_input, p.amount,
        p.sqrt_price_limit_x96, p.opposite_amount_bound,
    )
    ch._margin(tx.state, tx).require_free_collateral(p.trader, InsufficientMargin)
    return response


def _close_position(ch: ClearingHouse, tx: _Transaction, p: ClosePositionParams) -> PositionResponse:
    market = _market(tx, p.market)
    size = tx.state.positions.get(p.trader, p.market).base_balance
    if size == 0:
        raise InvalidAmount(f"{p.trader} has no position in {p.market!r}")
    # Long closes by selling exactly its size; short closes by buying exactly its size.
    is_long = size > 0
    return _swap_and_settle(
        ch, tx, p.trader, market, is_long, is_long, abs(size),
        p.sqrt_price_limit_x96, p.opposite_amount_bound,
    )


def _add_liquidity(ch: ClearingHouse, tx: _Transaction, p: AddLiquidityParams) -> AddLiquidityResult:
    market = _market(tx, p.market)
    result = tx.state.orders.add_liquidity(
        market, tx.state.positions, p.trader, p.tick_lower, p.tick_upper,
        p.base, p.quote, p.min_base, p.min_quote,
    )
    ch._margin(tx.state, tx).require_free_collateral(p.trader, InsufficientMargin)
    tx.emit(
        Event.LIQUIDITY_CHANGED, p.trader, p.market,
        tick_lower=p.tick_lower, tick_upper=p.tick_upper, liquidity_delta=result.liquidity_minted,
        base=result.base_used, quote=result.quote_used, fee=result.fee_realized,
    )
    return result


def _remove_liquidity(ch: ClearingHouse, tx: _Transaction, p: RemoveLiquidityParams) -> RemoveLiquidityResult:
    market = _market(tx, p.market)
    result = tx.state.orders.remove_liquidity(
        market, tx.state.positions, p.trader, p.tick_lower, p.tick_upper,
        p.liquidity, p.min_base, p.min_quote,
    )
    tx.emit(
        Event.LIQUIDITY_CHANGED, p.trader, p.market,
        tick_lower=p.tick_lower, tick_upper=p.tick_upper, liquidity_delta=-result.liquidity_removed,
        base=result.base_returned, quote=result.quote_returned, fee=result.fee_earned,
    )
    return result


def _deposit(ch: ClearingHouse, tx: _Transaction, p: DepositParams) -> CollateralResponse:
    if p.amount <= 0:
        raise InvalidAmount(f"deposit amount must be positive: {p.amount}")
    tx.move_collateral(p.trader, p.amount)
    tx.emit(Event.COLLATERAL_DEPOSITED, p.trader, amount=p.amount)
    return CollateralResponse(amount=p.amount, balance_after=tx.get_balance(p.trader))


def _withdraw(ch: ClearingHouse, tx: _Transaction, p: WithdrawParams) -> CollateralResponse:
    if p.amount <= 0:
        raise InvalidAmount(f"withdraw amount must be positive: {p.amount}")
    settled = tx.state.positions.settle_realized_pnl(p.trader)
    if settled:
        tx.move_collateral(p.trader, settled)
        tx.emit(Event.PNL_SETTLED, p.trader, amount=settled)

    balance = tx.get_balance(p.trader)
    if p.amount > balance:
        raise InsufficientBalance(f"{p.trader} holds {balance}, cannot withdraw {p.amount}")
    free = ch._margin(tx.state, tx).free_collateral_signed(p.trader)
    if p.amount > free:
        raise InsufficientFreeCollateral(
            f"{p.trader} has {max(free, 0)} free collateral, cannot withdraw {p.amount}"
        )

    tx.move_collateral(p.trader, -p.amount)
    tx.emit(Event.COLLATERAL_WITHDRAWN, p.trader, amount=p.amount)
    return CollateralResponse(
        amount=p.amount, balance_after=tx.get_balance(p.trader), pnl_settled=settled,
    )


_DISPATCH: dict[Action, Handler] = {
    Action.OPEN_POSITION: _open_position,
    Action.CLOSE_POSITION: _close_position,
    Action.ADD_LIQUIDITY: _add_liquidity,
    Action.REMOVE_LIQUIDITY: _remove_liquidity,
    Action.DEPOSIT: _deposit,
    Action.WITHDRAW: _withdraw,
}
