"""Exception types for the clearing engine.

Every error carries a stable ``code`` so ``ClearingHouse.execute()`` can report
rejections as plain strings, and ``execute_or_raise()`` can re-raise the
original exception for callers that prefer exceptions over ``StepResult``
inspection.
"""

from __future__ import annotations


class ClearingHouseError(Exception):
    """Base class for every rejection raised by the clearing engine."""

    code: str = "clearing_error"


class ArithmeticOverflow(ClearingHouseError):
    """Raised when a fixed-point operation leaves its integer domain."""

    code = "arithmetic_overflow"


class InsufficientLiquidity(ClearingHouseError):
    """Raised when a swap or removal needs more liquidity than exists."""

    code = "insufficient_liquidity"


class SlippageExceeded(ClearingHouseError):
    """Raised when executed amounts fall outside caller-supplied bounds."""

    code = "slippage_exceeded"


class DeadlineExceeded(ClearingHouseError):
    """Raised when an operation runs after its deadline."""

    code = "deadline_exceeded"


class InsufficientMargin(ClearingHouseError):
    """Raised when an operation would leave negative free collateral."""

    code = "insufficient_margin"


class InsufficientFreeCollateral(ClearingHouseError):
    """Raised when a withdrawal exceeds the account's free collateral."""

    code = "insufficient_free_collateral"


class InsufficientBalance(ClearingHouseError):
    """Raised when a withdrawal exceeds the deposited vault balance."""

    code = "insufficient_balance"


class PriceLimitReached(ClearingHouseError):
    """Raised when a price limit is invalid or blocks an exact-output fill."""

    code = "price_limit_reached"


class InvalidRange(ClearingHouseError):
    """Raised for tick ranges that are inverted, unaligned or out of bounds."""

    code = "invalid_range"


class InvalidAmount(ClearingHouseError):
    """Raised for zero or negative amounts and empty positions."""

    code = "invalid_amount"


class UnknownMarket(ClearingHouseError):
    """Raised when an operation names a market that was never added."""

    code = "unknown_market"


class StalePrice(ClearingHouseError):
    """Raised when the price feed is older than the configured window."""

    code = "stale_price"


class InvariantViolation(ClearingHouseError):
    """Raised when a post-state violates one or more invariants."""

    code = "invariant"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
