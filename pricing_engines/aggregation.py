"""
Allocation Aggregation Engine.

Pure functions with deterministic behavior. No I/O.

Folds monthly FTE allocations into hour totals keyed two ways:

- by (cost center, year), priced with cost rates
- by (level, location, year), priced with sell rates

Hours for one allocation are ``fte * hours_per_month`` from the
``CalculationContext``.  Keys are typed tuples, so no level or location
string can collide with another through a separator.

Usage:
    from pricing_engines.aggregation import aggregate_allocations

    hours = aggregate_allocations(lines=lines, context=CalculationContext())
    hours.by_cost_center[CostCenterYear("HCC", 2025)]
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal, localcontext
from typing import NamedTuple

from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.calculation import AllocationLine, CalculationContext
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.aggregation")


class CostCenterYear(NamedTuple):
    cost_center: str
    year: int


class LevelLocationYear(NamedTuple):
    level: str
    location: str
    year: int


@dataclass(frozen=True)
class AggregatedHours:
    """Exact hour totals per bucket."""

    by_cost_center: dict[CostCenterYear, Decimal] = field(default_factory=dict)
    by_level_location: dict[LevelLocationYear, Decimal] = field(default_factory=dict)

    @property
    def total_hours(self) -> Decimal:
        return sum(self.by_cost_center.values(), Decimal("0"))

    def years(self) -> list[int]:
        return sorted(
            {key.year for key in self.by_cost_center}
            | {key.year for key in self.by_level_location}
        )

    def hours_in_year(self, year: int) -> Decimal:
        return sum(
            (h for key, h in self.by_cost_center.items() if key.year == year),
            Decimal("0"),
        )


@traced_engine("allocation_aggregation", "1.0", fingerprint_fields=("lines",))
def aggregate_allocations(
    *,
    lines: Sequence[AllocationLine],
    context: CalculationContext,
) -> AggregatedHours:
    """Sum allocation hours into cost-center and level/location buckets."""
    by_cost_center: dict[CostCenterYear, Decimal] = {}
    by_level_location: dict[LevelLocationYear, Decimal] = {}

    with localcontext(context.decimal_context()):
        for line in lines:
            hours = line.fte * context.hours_per_month

            cc_key = CostCenterYear(line.cost_center, line.year)
            by_cost_center[cc_key] = by_cost_center.get(cc_key, Decimal("0")) + hours

            ll_key = LevelLocationYear(line.level, line.location, line.year)
            by_level_location[ll_key] = by_level_location.get(ll_key, Decimal("0")) + hours

    logger.debug(
        "allocations_aggregated",
        extra={
            "line_count": len(lines),
            "cost_center_buckets": len(by_cost_center),
            "level_location_buckets": len(by_level_location),
        },
    )

    return AggregatedHours(
        by_cost_center=by_cost_center,
        by_level_location=by_level_location,
    )
