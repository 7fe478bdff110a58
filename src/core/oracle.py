"""
Index price feed and freshness kernel.

The freshness decision is pure and deterministic; fetching prices is the job
of whatever implements ``PriceFeed``. Prices are quote-per-base with 18
decimals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class PriceFeed(Protocol):
    def latest_price(self, market: str) -> tuple[int, int]:
        """Return ``(price, timestamp)`` for a market."""
        ...


@dataclass(frozen=True)
class PriceQuote:
    """Latest index price of one market."""

    price: int
    timestamp: int

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError(f"price must be positive: {self.price}")
        if self.timestamp < 0:
            raise ValueError(f"timestamp must be non-negative: {self.timestamp}")


def is_fresh(price_timestamp: int, current_timestamp: int, max_staleness_seconds: int) -> bool:
    """Return True if the price timestamp is within the max staleness window."""
    if current_timestamp < 0:
        raise ValueError(f"current_timestamp must be non-negative: {current_timestamp}")
    if max_staleness_seconds <= 0:
        raise ValueError(f"max_staleness_seconds must be positive: {max_staleness_seconds}")
    if price_timestamp > current_timestamp:
        return False
    return (current_timestamp - price_timestamp) <= max_staleness_seconds


class InMemoryPriceFeed:
    """Price feed backed by a dict, for tests and embedding."""

    def __init__(self, prices: dict[str, PriceQuote] | None = None) -> None:
        self._prices: dict[str, PriceQuote] = dict(prices or {})

    def set_price(self, market: str, price: int, timestamp: int = 0) -> None:
        self._prices[market] = PriceQuote(price=price, timestamp=timestamp)

    def latest_price(self, market: str) -> tuple[int, int]:
        quote = self._prices.get(market)
        if quote is None:
            raise KeyError(f"no price for market {market!r}")
        return quote.price, quote.timestamp
