from app.strategy.base import RefundStrategy
from app.strategy.default import DefaultStrategy
from app.strategy.strategy_1774 import Strategy1774

# Platform versions whose refund rules differ from the defaults
SUPPORTED_STRATEGIES: dict[str, type[DefaultStrategy]] = {
    "1.7.7.4": Strategy1774,
}


def get_strategy(platform_version: str) -> RefundStrategy:
    """Return the refund strategy for the shop platform version, falling back to the defaults."""
    strategy_class = SUPPORTED_STRATEGIES.get(platform_version, DefaultStrategy)
    return strategy_class(platform_version)
