"""Configuration for the clearing engine.

Two frozen dataclasses validated on construction, plus a YAML loader:

```yaml
clearing_house:
  initial_margin_ratio_ppm: 100000     # 10%
  insurance_fund_fee_ratio_ppm: 0
  max_oracle_staleness_seconds: 0      # 0 disables the freshness check
  dust: 10
markets:
  - market_id: ETH
    fee_ratio_ppm: 10000               # 1%, tick spacing 200
```
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .math import PPM

# Fee tier -> tick spacing for the standard fee tiers.
FEE_TIER_TICK_SPACING: dict[int, int] = {
    100: 1,
    500: 10,
    3_000: 60,
    10_000: 200,
}


def _require_int(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")


@dataclass(frozen=True)
class ClearingHouseConfig:
    initial_margin_ratio_ppm: int = 100_000
    insurance_fund_fee_ratio_ppm: int = 0
    max_oracle_staleness_seconds: int = 0
    dust: int = 10

    def __post_init__(self) -> None:
        for f in fields(self):
            _require_int(f.name, getattr(self, f.name))
        if not (0 < self.initial_margin_ratio_ppm <= PPM):
            raise ValueError(
                f"initial_margin_ratio_ppm must be in (0, {PPM}]: {self.initial_margin_ratio_ppm}"
            )
        if not (0 <= self.insurance_fund_fee_ratio_ppm <= PPM):
            raise ValueError(
                f"insurance_fund_fee_ratio_ppm must be in [0, {PPM}]: "
                f"{self.insurance_fund_fee_ratio_ppm}"
            )
        if self.max_oracle_staleness_seconds < 0:
            raise ValueError("max_oracle_staleness_seconds must be non-negative")
        if self.dust < 0:
            raise ValueError("dust must be non-negative")


@dataclass(frozen=True)
class MarketConfig:
    market_id: str
    fee_ratio_ppm: int = 10_000
    tick_spacing: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.market_id, str) or not self.market_id:
            raise ValueError("market_id must be a non-empty string")
        _require_int("fee_ratio_ppm", self.fee_ratio_ppm)
        if not (0 <= self.fee_ratio_ppm < PPM):
            raise ValueError(f"fee_ratio_ppm must be in [0, {PPM}): {self.fee_ratio_ppm}")
        if self.tick_spacing is None:
            spacing = FEE_TIER_TICK_SPACING.get(self.fee_ratio_ppm)
            if spacing is None:
                raise ValueError(
                    f"tick_spacing is required for non-standard fee ratio {self.fee_ratio_ppm}"
                )
            object.__setattr__(self, "tick_spacing", spacing)
        _require_int("tick_spacing", self.tick_spacing)
        if self.tick_spacing <= 0:
            raise ValueError(f"tick_spacing must be positive: {self.tick_spacing}")


def config_from_dict(
    obj: Mapping[str, Any],
) -> tuple[ClearingHouseConfig, list[MarketConfig]]:
    if not isinstance(obj, Mapping):
        raise ValueError("config root must be a mapping")
    house = obj.get("clearing_house") or {}
    if not isinstance(house, Mapping):
        raise ValueError("clearing_house must be a mapping")
    markets_raw = obj.get("markets") or []
    if not isinstance(markets_raw, list):
        raise ValueError("markets must be a list")
    markets = []
    for entry in markets_raw:
        if not isinstance(entry, Mapping):
            raise ValueError(f"market entry must be a mapping: {entry!r}")
        markets.append(MarketConfig(**entry))
    return ClearingHouseConfig(**house), markets


def load_config(path: str | Path) -> tuple[ClearingHouseConfig, list[MarketConfig]]:
    """Load the clearing-house and market configuration from a YAML file."""
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return config_from_dict(obj or {})
