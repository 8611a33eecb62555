from .base import RefundStrategy, AppliedRefund, ApplyError, PostApplyResult
from .default import DefaultStrategy
from .strategy_1774 import Strategy1774
from .provider import get_strategy, SUPPORTED_STRATEGIES

__all__ = [
    "RefundStrategy",
    "AppliedRefund",
    "ApplyError",
    "PostApplyResult",
    "DefaultStrategy",
    "Strategy1774",
    "get_strategy",
    "SUPPORTED_STRATEGIES",
]
