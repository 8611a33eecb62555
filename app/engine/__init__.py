from .calculator import (
    fix_reductions,
    distribute_proportionally,
    get_reduction_amount,
    get_total_amount_including_tax,
    floor_cents,
    round_price,
    CalculationError,
)

__all__ = [
    "fix_reductions",
    "distribute_proportionally",
    "get_reduction_amount",
    "get_total_amount_including_tax",
    "floor_cents",
    "round_price",
    "CalculationError",
]
