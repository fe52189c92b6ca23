"""
Pure pricing engines.

Every function in this package is deterministic and free of I/O.  Rate
resolution is injected through the ``RateLookup`` protocol and numeric
settings through ``CalculationContext``.
"""

from pricing_engines.aggregation import (
    AggregatedHours,
    CostCenterYear,
    LevelLocationYear,
    aggregate_allocations,
)
from pricing_engines.scenario import (
    CalculationResult,
    FixedPriceBreakdown,
    MissingRate,
    Totals,
    YearFigures,
    calculate_fixed_price,
    calculate_scenario,
    calculate_time_and_material,
)

__all__ = [
    "AggregatedHours",
    "CalculationResult",
    "CostCenterYear",
    "FixedPriceBreakdown",
    "LevelLocationYear",
    "MissingRate",
    "Totals",
    "YearFigures",
    "aggregate_allocations",
    "calculate_fixed_price",
    "calculate_scenario",
    "calculate_time_and_material",
]
