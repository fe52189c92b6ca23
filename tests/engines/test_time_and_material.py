"""
Tests for the Time & Material scenario engine.

Covers:
- The one-line, one-year reference proposal
- Rates are taken on January 1 of each year
- ABSOLUTE and PERCENTAGE additional costs
- Missing rates are reported and contribute nothing
- Margin percent is zero when cost or revenue is zero
- Report rounding happens only at presentation
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pricing_engines.scenario import (
    calculate_scenario,
    calculate_time_and_material,
    margin_percent,
)
from pricing_kernel.domain.calculation import (
    AdditionalCostSpec,
    AdditionalCostType,
    AllocationLine,
    CalculationContext,
    CostRateInfo,
    InMemoryRateLookup,
    RateKind,
    ScenarioParams,
    ScenarioType,
    SellRateInfo,
)

USE_CASE = "UC1"


def year_of_lines(year=2025, fte="1.0", level="Senior", location="HCC", cost_center="HCC"):
    return [
        AllocationLine(cost_center, level, location, year, month, Decimal(fte))
        for month in range(1, 13)
    ]


def cost_rate(cost_center="HCC", start=date(2025, 1, 1), end=date(2025, 12, 31), value="45"):
    return CostRateInfo(uuid4(), cost_center, start, end, Decimal(value))


def sell_rate(
    location="HCC", level="Senior", use_case=USE_CASE,
    start=date(2025, 1, 1), end=date(2025, 12, 31), value="70",
):
    return SellRateInfo(uuid4(), location, level, use_case, start, end, Decimal(value))


def run(lines, rates, additional_costs=(), context=None):
    return calculate_time_and_material(
        lines=lines,
        params=ScenarioParams(ScenarioType.TM, USE_CASE, tuple(additional_costs)),
        rates=rates,
        context=context or CalculationContext(),
    )


class TestReferenceProposal:
    """One Senior/HCC line at 1.0 FTE for a full year at 45/h cost, 70/h sell."""

    def setup_method(self):
        self.rates = InMemoryRateLookup([cost_rate()], [sell_rate()])

    def test_totals(self):
        result = run(year_of_lines(), self.rates)

        assert result.hours.total_hours == Decimal("1920")
        assert result.totals.cost == Decimal("86400")
        assert result.totals.revenue == Decimal("134400")
        assert result.totals.margin == Decimal("48000")
        assert result.totals.final_cost == result.totals.cost
        assert result.is_complete

    def test_report(self):
        report = run(year_of_lines(), self.rates).to_report()

        assert report["type"] == "TM"
        assert report["useCase"] == USE_CASE
        assert report["total"] == {
            "revenue": "134400.00",
            "cost": "86400.00",
            "additionalCost": "0.00",
            "finalCost": "86400.00",
            "margin": "48000.00",
            "marginPercent": "35.71",
        }
        assert report["byYear"]["revenue"] == {"2025": "134400.00"}
        assert report["hours"]["byCostCenter"] == {"HCC": {"2025": "1920.00"}}
        assert report["hours"]["byLevelLocation"] == {"Senior@HCC": {"2025": "1920.00"}}
        assert report["missingRates"] == []

    def test_margin_percent_kept_at_full_precision(self):
        result = run(year_of_lines(), self.rates)

        assert result.totals.margin_percent != Decimal("35.71")
        assert result.totals.margin_percent.quantize(Decimal("0.0001")) == Decimal("35.7143")

    def test_dispatch_by_type(self):
        result = calculate_scenario(
            lines=year_of_lines(),
            params=ScenarioParams(ScenarioType.TM, USE_CASE),
            rates=self.rates,
            context=CalculationContext(),
        )

        assert result.totals.revenue == Decimal("134400")


class TestYearStartRates:

    def test_rate_starting_mid_year_does_not_apply(self):
        rates = InMemoryRateLookup(
            [
                cost_rate(end=date(2025, 6, 30), value="45"),
                cost_rate(start=date(2025, 7, 1), end=None, value="99"),
            ],
            [sell_rate()],
        )

        result = run(year_of_lines(), rates)

        assert result.totals.cost == Decimal("86400")

    def test_each_year_uses_its_own_rate(self):
        rates = InMemoryRateLookup(
            [
                cost_rate(value="45"),
                cost_rate(start=date(2026, 1, 1), end=None, value="50"),
            ],
            [sell_rate(end=None)],
        )
        lines = year_of_lines(2025) + year_of_lines(2026, fte="0.5")

        result = run(lines, rates)

        by_year = {y.year: y for y in result.by_year}
        assert by_year[2025].cost == Decimal("86400")
        assert by_year[2026].cost == Decimal("48000")
        assert by_year[2026].revenue == Decimal("67200")
        assert result.totals.cost == Decimal("134400")

    def test_open_ended_rate_covers_later_years(self):
        rates = InMemoryRateLookup([cost_rate(end=None)], [sell_rate(end=None)])

        result = run(year_of_lines(2030), rates)

        assert result.is_complete
        assert result.totals.revenue == Decimal("134400")


class TestAdditionalCosts:

    def setup_method(self):
        self.rates = InMemoryRateLookup([cost_rate()], [sell_rate()])

    def test_absolute(self):
        result = run(
            year_of_lines(), self.rates,
            [AdditionalCostSpec(AdditionalCostType.ABSOLUTE, Decimal("1000"))],
        )

        assert result.totals.additional_cost == Decimal("1000")
        assert result.totals.final_cost == Decimal("87400")
        assert result.totals.margin == Decimal("47000")

    def test_percentage_applies_to_base_cost(self):
        result = run(
            year_of_lines(), self.rates,
            [AdditionalCostSpec(AdditionalCostType.PERCENTAGE, Decimal("10"))],
        )

        assert result.totals.additional_cost == Decimal("8640")
        assert result.totals.final_cost == Decimal("95040")

    def test_mixed(self):
        result = run(
            year_of_lines(), self.rates,
            [
                AdditionalCostSpec(AdditionalCostType.PERCENTAGE, Decimal("5")),
                AdditionalCostSpec(AdditionalCostType.ABSOLUTE, Decimal("250.50")),
            ],
        )

        assert result.totals.additional_cost == Decimal("4570.50")
        assert result.to_report()["total"]["margin"] == "43429.50"

    def test_per_year_figures_exclude_additional_costs(self):
        result = run(
            year_of_lines(), self.rates,
            [AdditionalCostSpec(AdditionalCostType.ABSOLUTE, Decimal("1000"))],
        )

        assert result.by_year[0].cost == Decimal("86400")


class TestMissingRates:

    def test_missing_sell_rate_reported(self):
        rates = InMemoryRateLookup([cost_rate()], [])

        result = run(year_of_lines(), rates)

        assert not result.is_complete
        assert len(result.missing_rates) == 1
        missing = result.missing_rates[0]
        assert missing.kind == RateKind.SELL
        assert missing.dimension == f"Senior@HCC/{USE_CASE}"
        assert missing.year == 2025
        assert missing.hours == Decimal("1920")
        assert result.totals.revenue == Decimal("0")
        assert result.totals.cost == Decimal("86400")

    def test_missing_cost_rate_reported(self):
        rates = InMemoryRateLookup([], [sell_rate()])

        result = run(year_of_lines(), rates)

        assert [m.kind for m in result.missing_rates] == [RateKind.COST]
        assert result.totals.cost == Decimal("0")
        assert result.totals.margin_percent == Decimal("0")

    def test_sell_rate_for_other_use_case_is_missing(self):
        rates = InMemoryRateLookup([cost_rate()], [sell_rate(use_case="UC9")])

        result = run(year_of_lines(), rates)

        assert result.missing_rates[0].kind == RateKind.SELL

    def test_missing_rate_logged(self, captured_logs):
        run(year_of_lines(), InMemoryRateLookup([], []))

        warnings = [r for r in captured_logs() if r["message"] == "rate_missing"]
        assert {w["rate_kind"] for w in warnings} == {"COST", "SELL"}

    def test_missing_rates_in_report(self):
        report = run(year_of_lines(), InMemoryRateLookup([cost_rate()], [])).to_report()

        assert report["missingRates"] == [
            {
                "kind": "SELL",
                "dimension": f"Senior@HCC/{USE_CASE}",
                "year": 2025,
                "hours": "1920.00",
            }
        ]


class TestMarginPercent:

    @pytest.mark.parametrize(
        "margin, revenue, cost",
        [
            (Decimal("0"), Decimal("0"), Decimal("0")),
            (Decimal("100"), Decimal("100"), Decimal("0")),
            (Decimal("-50"), Decimal("0"), Decimal("50")),
        ],
    )
    def test_zero_when_cost_or_revenue_is_zero(self, margin, revenue, cost):
        assert margin_percent(margin, revenue, cost) == Decimal("0")

    def test_ratio_of_revenue(self):
        assert margin_percent(Decimal("25"), Decimal("100"), Decimal("75")) == Decimal("25")

    def test_no_allocations(self):
        result = run([], InMemoryRateLookup([cost_rate()], [sell_rate()]))

        assert result.by_year == ()
        assert result.totals.margin_percent == Decimal("0")
        assert result.to_report()["total"]["revenue"] == "0.00"


class TestPresentationRounding:

    def test_half_up_at_presentation_only(self):
        rates = InMemoryRateLookup(
            [cost_rate(value="33.335")], [sell_rate(value="50.0003125")],
        )
        lines = [AllocationLine("HCC", "Senior", "HCC", 2025, 1, Decimal("0.1"))]

        result = run(lines, rates)

        assert result.totals.cost == Decimal("533.36")
        assert result.totals.revenue == Decimal("800.005")
        report = result.to_report()
        assert report["total"]["cost"] == "533.36"
        assert report["total"]["revenue"] == "800.01"

    def test_presentation_places_from_context(self):
        rates = InMemoryRateLookup([cost_rate()], [sell_rate()])
        context = CalculationContext(presentation_places=0)

        report = run(year_of_lines(), rates, context=context).to_report()

        assert report["total"]["marginPercent"] == "36"
