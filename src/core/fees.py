"""
Trading fee splitting (deterministic, integer-only).

Each swap step's fee is split between the insurance fund and the makers
active in the step. The insurance share rounds up, so makers never receive
more than was charged.
"""

from __future__ import annotations

from dataclasses import dataclass


PPM_DENOM = 1_000_000


@dataclass(frozen=True)
class InsuranceFeeParams:
    insurance_fund_fee_ratio_ppm: int = 0

    def __post_init__(self) -> None:
        v = self.insurance_fund_fee_ratio_ppm
        if not isinstance(v, int) or isinstance(v, bool):
            raise TypeError("insurance_fund_fee_ratio_ppm must be an int")
        if not (0 <= v <= PPM_DENOM):
            raise ValueError(f"insurance_fund_fee_ratio_ppm must be in [0, {PPM_DENOM}]: {v}")


@dataclass(frozen=True)
class FeeSplitResult:
    maker_amount: int
    insurance_amount: int

    def __post_init__(self) -> None:
        for name, v in (
            ("maker_amount", self.maker_amount),
            ("insurance_amount", self.insurance_amount),
        ):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")


def split_fee(fee_amount: int, params: InsuranceFeeParams) -> FeeSplitResult:
    """
    Carve the insurance share out of `fee_amount`.

    Guarantees:
    - maker_amount + insurance_amount == fee_amount
    - insurance_amount == ceil(fee_amount * ratio / 1e6)
    """
    if not isinstance(fee_amount, int) or isinstance(fee_amount, bool):
        raise TypeError("fee_amount must be an int")
    if fee_amount < 0:
        raise ValueError(f"fee_amount must be non-negative: {fee_amount}")

    ratio = params.insurance_fund_fee_ratio_ppm
    insurance = -((-fee_amount * ratio) // PPM_DENOM)
    return FeeSplitResult(maker_amount=fee_amount - insurance, insurance_amount=insurance)
