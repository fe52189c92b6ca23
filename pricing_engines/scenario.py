"""
Scenario Pricing Engine.

Pure functions with deterministic behavior. No I/O.

Prices a scenario from aggregated allocation hours under one of two
commercial models:

- Time & Material (TM): cost and revenue are hours times the cost rate
  and the sell rate in force on January 1 of each year.
- Fixed Price (FIXED): revenue is derived from story-point sizing priced
  at the TM weighted average hourly rate, adjusted for risk.

Additional costs are either an ABSOLUTE amount or a PERCENTAGE.  For TM
the percentage applies to the base cost; for FIXED it applies to the
engineering revenue.

A bucket without a matching rate contributes nothing.  It is logged as a
warning and listed in ``CalculationResult.missing_rates``.

Values keep full context precision.  Only ``CalculationResult.to_report``
rounds, to ``context.presentation_places`` half-up.

Usage:
    from pricing_engines.scenario import calculate_scenario

    result = calculate_scenario(
        lines=lines, params=params, rates=rate_selector, context=context,
    )
    result.to_report()["total"]["margin"]
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, localcontext
from typing import Any

from pricing_engines.aggregation import AggregatedHours, aggregate_allocations
from pricing_engines.tracer import traced_engine
from pricing_kernel.domain.calculation import (
    AdditionalCostSpec,
    AdditionalCostType,
    AllocationLine,
    CalculationContext,
    FixedPriceParams,
    RateKind,
    RateLookup,
    ScenarioParams,
    ScenarioType,
)
from pricing_kernel.logging_config import get_logger

logger = get_logger("engines.scenario")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


# ============================================================================
# Result types
# ============================================================================


@dataclass(frozen=True)
class YearFigures:
    year: int
    revenue: Decimal
    cost: Decimal
    margin: Decimal
    margin_percent: Decimal


@dataclass(frozen=True)
class Totals:
    """Scenario totals.

    For TM ``cost`` is the base labour cost and ``final_cost`` adds the
    additional costs.  For FIXED ``cost`` already includes hardware and
    additional costs, so ``final_cost == cost``.
    """

    revenue: Decimal
    cost: Decimal
    additional_cost: Decimal
    final_cost: Decimal
    margin: Decimal
    margin_percent: Decimal


@dataclass(frozen=True)
class MissingRate:
    kind: RateKind
    dimension: str
    year: int
    hours: Decimal


@dataclass(frozen=True)
class FixedPriceBreakdown:
    params: FixedPriceParams
    total_story_points: Decimal
    sp_to_hours: Decimal
    total_hours: Decimal
    avg_hourly_rate: Decimal
    risk_factor: Decimal
    risk_adjusted_rate: Decimal
    engineering_revenue: Decimal
    hw_overhead: Decimal


@dataclass(frozen=True)
class CalculationResult:
    """Full-precision outcome of one scenario calculation."""

    scenario_type: ScenarioType
    use_case: str
    by_year: tuple[YearFigures, ...]
    totals: Totals
    hours: AggregatedHours
    context: CalculationContext
    missing_rates: tuple[MissingRate, ...] = ()
    fixed_price: FixedPriceBreakdown | None = None

    @property
    def is_complete(self) -> bool:
        return not self.missing_rates

    def to_report(self) -> dict[str, Any]:
        """Stable reporting shape with fixed-place monetary strings."""
        fmt = self.context.present
        report: dict[str, Any] = {
            "type": self.scenario_type.value,
            "useCase": self.use_case,
            "currency": self.context.currency,
            "byYear": {
                "revenue": {str(y.year): fmt(y.revenue) for y in self.by_year},
                "cost": {str(y.year): fmt(y.cost) for y in self.by_year},
                "margin": {str(y.year): fmt(y.margin) for y in self.by_year},
                "marginPercent": {
                    str(y.year): fmt(y.margin_percent) for y in self.by_year
                },
            },
            "hours": {
                "byCostCenter": _nest(
                    (((k.cost_center, k.year), v)
                     for k, v in self.hours.by_cost_center.items()),
                    fmt,
                ),
                "byLevelLocation": _nest(
                    (((f"{k.level}@{k.location}", k.year), v)
                     for k, v in self.hours.by_level_location.items()),
                    fmt,
                ),
                "total": fmt(self.hours.total_hours),
            },
            "missingRates": [
                {
                    "kind": m.kind.value,
                    "dimension": m.dimension,
                    "year": m.year,
                    "hours": fmt(m.hours),
                }
                for m in self.missing_rates
            ],
        }

        t = self.totals
        fp = self.fixed_price
        if fp is None:
            report["total"] = {
                "revenue": fmt(t.revenue),
                "cost": fmt(t.cost),
                "additionalCost": fmt(t.additional_cost),
                "finalCost": fmt(t.final_cost),
                "margin": fmt(t.margin),
                "marginPercent": fmt(t.margin_percent),
            }
            return report

        report["ticketSizes"] = {
            "small": {"sp": _plain(fp.params.sp_small), "quota": _plain(fp.params.quota_small)},
            "medium": {"sp": _plain(fp.params.sp_medium), "quota": _plain(fp.params.quota_medium)},
            "large": {"sp": _plain(fp.params.sp_large), "quota": _plain(fp.params.quota_large)},
        }
        report["calculations"] = {
            "totalSPs": fmt(fp.total_story_points),
            "spToHours": fmt(fp.sp_to_hours),
            "totalHours": fmt(fp.total_hours),
            "avgHourlyRate": fmt(fp.avg_hourly_rate),
            "riskFactor": _plain(fp.risk_factor),
            "riskAdjustedRate": fmt(fp.risk_adjusted_rate),
        }
        report["total"] = {
            "engineeringRevenue": fmt(fp.engineering_revenue),
            "hwOverhead": fmt(fp.hw_overhead),
            "additionalCost": fmt(t.additional_cost),
            "totalRevenue": fmt(t.revenue),
            "totalCost": fmt(t.cost),
            "margin": fmt(t.margin),
            "marginPercent": fmt(t.margin_percent),
        }
        return report


def _plain(value: Decimal) -> str:
    return format(value.normalize(), "f")


def _nest(items, fmt) -> dict[str, dict[str, str]]:
    out: dict[str, dict[str, str]] = {}
    for (outer, year), value in sorted(items, key=lambda kv: kv[0]):
        out.setdefault(outer, {})[str(year)] = fmt(value)
    return out


# ============================================================================
# Helpers
# ============================================================================


def margin_percent(margin: Decimal, revenue: Decimal, cost: Decimal) -> Decimal:
    """``margin / revenue * 100``; zero when cost or revenue is zero."""
    if cost == 0 or revenue == 0:
        return _ZERO
    return margin / revenue * _HUNDRED


def sum_additional_costs(
    costs: Sequence[AdditionalCostSpec], percentage_base: Decimal
) -> Decimal:
    total = _ZERO
    for item in costs:
        match item.cost_type:
            case AdditionalCostType.ABSOLUTE:
                total += item.value
            case AdditionalCostType.PERCENTAGE:
                total += percentage_base * item.value / _HUNDRED
    return total


def _reference_date(year: int) -> date:
    return date(year, 1, 1)


# ============================================================================
# Time & Material
# ============================================================================


@traced_engine(
    "time_and_material", "1.0", fingerprint_fields=("lines", "params"),
)
def calculate_time_and_material(
    *,
    lines: Sequence[AllocationLine],
    params: ScenarioParams,
    rates: RateLookup,
    context: CalculationContext,
) -> CalculationResult:
    """Price allocations at year-start cost and sell rates."""
    hours = aggregate_allocations(lines=lines, context=context)
    missing: list[MissingRate] = []

    with localcontext(context.decimal_context()):
        cost_by_year: dict[int, Decimal] = {}
        for key, bucket_hours in hours.by_cost_center.items():
            rate = rates.resolve_cost_rate(key.cost_center, _reference_date(key.year))
            if rate is None:
                logger.warning(
                    "rate_missing",
                    extra={
                        "rate_kind": RateKind.COST.value,
                        "cost_center": key.cost_center,
                        "year": key.year,
                        "hours": str(bucket_hours),
                    },
                )
                missing.append(
                    MissingRate(RateKind.COST, key.cost_center, key.year, bucket_hours)
                )
                continue
            cost_by_year[key.year] = (
                cost_by_year.get(key.year, _ZERO) + bucket_hours * rate.cost_per_hour
            )

        revenue_by_year: dict[int, Decimal] = {}
        for key, bucket_hours in hours.by_level_location.items():
            rate = rates.resolve_sell_rate(
                key.location, key.level, params.use_case, _reference_date(key.year)
            )
            if rate is None:
                logger.warning(
                    "rate_missing",
                    extra={
                        "rate_kind": RateKind.SELL.value,
                        "level": key.level,
                        "location": key.location,
                        "use_case": params.use_case,
                        "year": key.year,
                        "hours": str(bucket_hours),
                    },
                )
                missing.append(
                    MissingRate(
                        RateKind.SELL,
                        f"{key.level}@{key.location}/{params.use_case}",
                        key.year,
                        bucket_hours,
                    )
                )
                continue
            revenue_by_year[key.year] = (
                revenue_by_year.get(key.year, _ZERO) + bucket_hours * rate.sell_per_hour
            )

        by_year = []
        for year in sorted(set(cost_by_year) | set(revenue_by_year)):
            revenue = revenue_by_year.get(year, _ZERO)
            cost = cost_by_year.get(year, _ZERO)
            margin = revenue - cost
            by_year.append(
                YearFigures(
                    year=year,
                    revenue=revenue,
                    cost=cost,
                    margin=margin,
                    margin_percent=margin_percent(margin, revenue, cost),
                )
            )

        total_revenue = sum(revenue_by_year.values(), _ZERO)
        total_cost = sum(cost_by_year.values(), _ZERO)
        additional = sum_additional_costs(params.additional_costs, total_cost)
        final_cost = total_cost + additional
        margin = total_revenue - final_cost

        totals = Totals(
            revenue=total_revenue,
            cost=total_cost,
            additional_cost=additional,
            final_cost=final_cost,
            margin=margin,
            margin_percent=margin_percent(margin, total_revenue, final_cost),
        )

    return CalculationResult(
        scenario_type=ScenarioType.TM,
        use_case=params.use_case,
        by_year=tuple(by_year),
        totals=totals,
        hours=hours,
        context=context,
        missing_rates=tuple(missing),
    )


# ============================================================================
# Fixed Price
# ============================================================================


@traced_engine("fixed_price", "1.0", fingerprint_fields=("lines", "params"))
def calculate_fixed_price(
    *,
    lines: Sequence[AllocationLine],
    params: ScenarioParams,
    rates: RateLookup,
    context: CalculationContext,
) -> CalculationResult:
    """Price story-point sizing at the risk-adjusted TM average rate.

    The per-year breakdown is the TM basis the average rate came from.
    """
    if params.fixed is None:
        raise ValueError("Fixed-price calculation requires fixed-price parameters")
    fixed = params.fixed

    tm = calculate_time_and_material(
        lines=lines,
        params=ScenarioParams(ScenarioType.TM, params.use_case),
        rates=rates,
        context=context,
    )

    with localcontext(context.decimal_context()):
        tm_hours = tm.hours.total_hours
        avg_rate = _ZERO if tm_hours == 0 else tm.totals.revenue / tm_hours

        risk_factor = fixed.risk_factor or context.default_risk_factor
        risk_adjusted = avg_rate * risk_factor

        sp_to_hours = fixed.sp_to_hours or context.default_sp_to_hours
        total_sp = (
            fixed.sp_small * fixed.quota_small / _HUNDRED
            + fixed.sp_medium * fixed.quota_medium / _HUNDRED
            + fixed.sp_large * fixed.quota_large / _HUNDRED
        )
        sp_hours = total_sp * sp_to_hours
        engineering_revenue = sp_hours * risk_adjusted

        additional = sum_additional_costs(params.additional_costs, engineering_revenue)
        total_revenue = engineering_revenue + fixed.hw_overhead + additional
        total_cost = tm.totals.cost + fixed.hw_overhead + additional
        margin = total_revenue - total_cost

        totals = Totals(
            revenue=total_revenue,
            cost=total_cost,
            additional_cost=additional,
            final_cost=total_cost,
            margin=margin,
            margin_percent=margin_percent(margin, total_revenue, total_cost),
        )

    return CalculationResult(
        scenario_type=ScenarioType.FIXED,
        use_case=params.use_case,
        by_year=tm.by_year,
        totals=totals,
        hours=tm.hours,
        context=context,
        missing_rates=tm.missing_rates,
        fixed_price=FixedPriceBreakdown(
            params=fixed,
            total_story_points=total_sp,
            sp_to_hours=sp_to_hours,
            total_hours=sp_hours,
            avg_hourly_rate=avg_rate,
            risk_factor=risk_factor,
            risk_adjusted_rate=risk_adjusted,
            engineering_revenue=engineering_revenue,
            hw_overhead=fixed.hw_overhead,
        ),
    )


def calculate_scenario(
    *,
    lines: Sequence[AllocationLine],
    params: ScenarioParams,
    rates: RateLookup,
    context: CalculationContext,
) -> CalculationResult:
    """Dispatch on scenario type."""
    match params.scenario_type:
        case ScenarioType.TM:
            return calculate_time_and_material(
                lines=lines, params=params, rates=rates, context=context,
            )
        case ScenarioType.FIXED:
            return calculate_fixed_price(
                lines=lines, params=params, rates=rates, context=context,
            )
    raise ValueError(f"Unsupported scenario type: {params.scenario_type}")
