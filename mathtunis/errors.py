"""
Error taxonomy for solving strategies.

Every StrategyError is recoverable: the coordinator records it and moves on
to the next strategy. Only ResolutionCancelled and QuotaExceeded ever reach
callers.
"""

from typing import Optional


class StrategyError(Exception):
    """Base class for failures reported by a strategy adapter."""

    kind = "strategy_error"

    def __init__(self, message: str = "", strategy: Optional[str] = None):
        super().__init__(message or self.kind)
        self.strategy = strategy


class Unavailable(StrategyError):
    """The strategy's dependency is unreachable or not configured."""

    kind = "unavailable"


class StrategyTimeout(StrategyError):
    """The strategy could not finish within its time budget."""

    kind = "timeout"


class LowConfidence(StrategyError):
    """The strategy answered, but below the acceptance threshold."""

    kind = "low_confidence"

    def __init__(self, score: float, strategy: Optional[str] = None, message: str = ""):
        super().__init__(message or f"confidence {score} below threshold", strategy=strategy)
        self.score = score


class Malformed(StrategyError):
    """The strategy's response could not be turned into a Solution."""

    kind = "malformed"


class ResolutionCancelled(Exception):
    """Raised by resolve() when the caller cancels an in-flight resolution."""
    pass


class QuotaExceeded(Exception):
    """Raised when an anonymous user has used all free questions."""

    def __init__(self, used: int, limit: int):
        super().__init__(
            "Free question limit reached. Please register or login for unlimited questions."
        )
        self.used = used
        self.limit = limit
