"""State containers for the clearing engine.

``MarketState`` holds one pool (price, in-range liquidity, fee growth and the
tick book); ``ClearingHouseState`` bundles every market with the position
ledger and the liquidity order book. The engine mutates a deep copy of the
state during an operation and swaps it in only when the operation commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import MarketConfig
from .orders import LiquidityOrderBook
from .positions import PositionLedger
from .sqrt_price_math import MAX_SQRT_RATIO, MIN_SQRT_RATIO, get_tick_at_sqrt_ratio
from .ticks import TickLiquidityBook


@dataclass
class MarketState:
    config: MarketConfig
    sqrt_price_x96: int
    tick: int
    ticks: TickLiquidityBook
    liquidity: int = 0
    fee_growth_global_quote_x128: int = 0
    insurance_fund_fee: int = 0

    @property
    def market_id(self) -> str:
        return self.config.market_id

    @property
    def fee_ratio_ppm(self) -> int:
        return self.config.fee_ratio_ppm


def new_market(config: MarketConfig, sqrt_price_x96: int) -> MarketState:
    if not (MIN_SQRT_RATIO <= sqrt_price_x96 < MAX_SQRT_RATIO):
        raise ValueError(f"sqrt_price_x96 out of bounds: {sqrt_price_x96}")
    if config.tick_spacing is None:
        raise ValueError(f"market {config.market_id!r} has no tick spacing")
    return MarketState(
        config=config,
        sqrt_price_x96=sqrt_price_x96,
        tick=get_tick_at_sqrt_ratio(sqrt_price_x96),
        ticks=TickLiquidityBook(config.tick_spacing),
    )


@dataclass
class ClearingHouseState:
    markets: dict[str, MarketState] = field(default_factory=dict)
    positions: PositionLedger = field(default_factory=PositionLedger)
    orders: LiquidityOrderBook = field(default_factory=LiquidityOrderBook)


def initial_state() -> ClearingHouseState:
    return ClearingHouseState()
