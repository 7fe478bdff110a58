"""
Core clearing algorithms and their collaborators
"""

from .fees import FeeSplitResult, InsuranceFeeParams, split_fee
from .oracle import InMemoryPriceFeed, PriceFeed, PriceQuote, is_fresh
from .vault import CollateralVault, InMemoryVault

__all__ = [
    "FeeSplitResult",
    "InsuranceFeeParams",
    "split_fee",
    "InMemoryPriceFeed",
    "PriceFeed",
    "PriceQuote",
    "is_fresh",
    "CollateralVault",
    "InMemoryVault",
]
