"""Action parameters, responses and effects of the clearing engine.

Units/conventions:
- base/quote amounts carry 18 decimals; signed deltas are from the trader's
  point of view (positive = received),
- ``sqrt_price_limit_x96`` is a Q96 sqrt price, 0 meaning no limit,
- ``deadline`` is a timestamp compared against the engine clock, ``None``
  meaning no deadline,
- ``opposite_amount_bound`` of 0 disables the slippage check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, ClassVar, Mapping

from .errors import ClearingHouseError


@unique
class Action(Enum):
    OPEN_POSITION = "open_position"
    CLOSE_POSITION = "close_position"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@unique
class Event(Enum):
    POSITION_CHANGED = "PositionChanged"
    LIQUIDITY_CHANGED = "LiquidityChanged"
    RANGE_CROSSED = "RangeCrossed"
    COLLATERAL_DEPOSITED = "CollateralDeposited"
    COLLATERAL_WITHDRAWN = "CollateralWithdrawn"
    PNL_SETTLED = "PnlSettled"


@dataclass(frozen=True)
class OpenPositionParams:
    action: ClassVar[Action] = Action.OPEN_POSITION

    trader: str
    market: str
    is_base_to_quote: bool
    is_exact_input: bool
    amount: int
    opposite_amount_bound: int = 0
    sqrt_price_limit_x96: int = 0
    deadline: int | None = None


@dataclass(frozen=True)
class ClosePositionParams:
    action: ClassVar[Action] = Action.CLOSE_POSITION

    trader: str
    market: str
    sqrt_price_limit_x96: int = 0
    opposite_amount_bound: int = 0
    deadline: int | None = None


@dataclass(frozen=True)
class AddLiquidityParams:
    action: ClassVar[Action] = Action.ADD_LIQUIDITY

    trader: str
    market: str
    tick_lower: int
    tick_upper: int
    base: int
    quote: int
    min_base: int = 0
    min_quote: int = 0
    deadline: int | None = None


@dataclass(frozen=True)
class RemoveLiquidityParams:
    action: ClassVar[Action] = Action.REMOVE_LIQUIDITY

    trader: str
    market: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    min_base: int = 0
    min_quote: int = 0
    deadline: int | None = None


@dataclass(frozen=True)
class DepositParams:
    action: ClassVar[Action] = Action.DEPOSIT

    trader: str
    amount: int


@dataclass(frozen=True)
class WithdrawParams:
    action: ClassVar[Action] = Action.WITHDRAW

    trader: str
    amount: int


@dataclass(frozen=True)
class PositionResponse:
    """Trader-side result of opening or closing a position."""

    base_delta: int
    quote_delta: int
    fee: int
    realized_pnl: int
    partial_fill: bool = False


@dataclass(frozen=True)
class CollateralResponse:
    amount: int
    balance_after: int
    pnl_settled: int = 0


@dataclass(frozen=True)
class Effect:
    """Domain event staged by an operation and emitted when it commits."""

    event: Event
    trader: str
    market: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepResult:
    """Result of a single engine operation."""

    accepted: bool
    response: Any = None
    effects: tuple[Effect, ...] = ()
    rejection: str | None = None
    error: ClearingHouseError | None = None
