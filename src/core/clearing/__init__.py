"""`clearing`: perpetual-futures clearing over concentrated-liquidity markets.

Integer-only throughout:
- swaps run tick by tick against each market's liquidity book,
- fees accrue to the makers in range as quote fee growth per unit of liquidity,
- range crossings fold maker liquidity into taker-style positions,
- every mutating operation is gated on free collateral and committed atomically.

Public API:
- `ClearingHouse(config, price_feed=..., vault=..., clock=..., event_sink=...)`
- `ClearingHouse.execute(params) -> StepResult`
- `ClearingHouse.execute_or_raise(params) -> StepResult` (raises on rejection)
- `load_config(path) -> (ClearingHouseConfig, [MarketConfig])`
"""

from .config import ClearingHouseConfig, MarketConfig, load_config
from .engine import ClearingHouse
from .errors import (
    ArithmeticOverflow,
    ClearingHouseError,
    DeadlineExceeded,
    InsufficientBalance,
    InsufficientFreeCollateral,
    InsufficientLiquidity,
    InsufficientMargin,
    InvalidAmount,
    InvalidRange,
    InvariantViolation,
    PriceLimitReached,
    SlippageExceeded,
    StalePrice,
    UnknownMarket,
)
from .invariants import check_all, quote_imbalance
from .margin import MarginCalculator
from .orders import AddLiquidityResult, LiquidityOrder, LiquidityOrderBook, RangeCrossed, RemoveLiquidityResult
from .positions import Position, PositionLedger
from .sqrt_price_math import encode_price_sqrt, get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio
from .state import ClearingHouseState, MarketState, initial_state, new_market
from .swap import SwapParams, SwapResult, TickCrossing, compute_swap_step, swap
from .ticks import Tick, TickLiquidityBook
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

__all__ = [
    "ClearingHouse",
    "ClearingHouseConfig",
    "MarketConfig",
    "load_config",
    "ClearingHouseState",
    "MarketState",
    "initial_state",
    "new_market",
    "MarginCalculator",
    "Position",
    "PositionLedger",
    "LiquidityOrder",
    "LiquidityOrderBook",
    "AddLiquidityResult",
    "RemoveLiquidityResult",
    "RangeCrossed",
    "Tick",
    "TickLiquidityBook",
    "SwapParams",
    "SwapResult",
    "TickCrossing",
    "compute_swap_step",
    "swap",
    "encode_price_sqrt",
    "get_sqrt_ratio_at_tick",
    "get_tick_at_sqrt_ratio",
    "check_all",
    "quote_imbalance",
    "Action",
    "Event",
    "Effect",
    "StepResult",
    "OpenPositionParams",
    "ClosePositionParams",
    "AddLiquidityParams",
    "RemoveLiquidityParams",
    "DepositParams",
    "WithdrawParams",
    "PositionResponse",
    "CollateralResponse",
    "ClearingHouseError",
    "ArithmeticOverflow",
    "InsufficientLiquidity",
    "SlippageExceeded",
    "DeadlineExceeded",
    "InsufficientMargin",
    "InsufficientFreeCollateral",
    "InsufficientBalance",
    "PriceLimitReached",
    "InvalidRange",
    "InvalidAmount",
    "UnknownMarket",
    "StalePrice",
    "InvariantViolation",
]
