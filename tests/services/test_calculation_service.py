"""
Tests for CalculationService -- calculations over persisted proposals.

Covers:
- End-to-end TM figures for the reference proposal
- Fixed-Price over persisted sizing
- Missing rates surface on the result, not as errors
- What-if parameters and side-by-side comparison
- Allocation and rate edits are visible to the next calculation
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pricing_kernel.domain.calculation import (
    AdditionalCostSpec,
    AdditionalCostType,
    FixedPriceParams,
    RateKind,
    ScenarioParams,
    ScenarioType,
)
from pricing_kernel.exceptions import EntityNotFoundError
from pricing_kernel.selectors.rate_selector import RateSelector
from pricing_kernel.services.allocation_service import MonthlyFte
from tests.builders import USE_CASE, build_proposal


class TestEndToEnd:

    def test_reference_proposal(self, workflow, proposal):
        result = workflow.calculation.calculate(proposal.scenario.id)

        report = result.to_report()
        assert report["hours"]["total"] == "1920.00"
        assert report["total"]["cost"] == "86400.00"
        assert report["total"]["revenue"] == "134400.00"
        assert report["total"]["margin"] == "48000.00"
        assert report["total"]["marginPercent"] == "35.71"
        assert report["byYear"]["margin"] == {"2025": "48000.00"}

    def test_logged(self, workflow, proposal, captured_logs):
        workflow.calculation.calculate(proposal.scenario.id)

        (record,) = [r for r in captured_logs() if r["message"] == "scenario_calculated"]
        assert record["scenario_id"] == str(proposal.scenario.id)
        assert record["complete"] is True
        assert record["rfq_id"] == str(proposal.rfq.id)

    def test_unknown_scenario(self, workflow):
        with pytest.raises(EntityNotFoundError):
            workflow.calculation.calculate(uuid4())

    def test_fixed_price(self, workflow, make_actor):
        creator = make_actor()
        setup = build_proposal(
            workflow, creator, [],
            scenario_type=ScenarioType.FIXED,
            fixed=FixedPriceParams(
                sp_small=Decimal("3"),
                sp_medium=Decimal("8"),
                sp_large=Decimal("20"),
                quota_small=Decimal("40"),
                quota_medium=Decimal("40"),
                quota_large=Decimal("20"),
            ),
        )

        report = workflow.calculation.calculate(setup.scenario.id).to_report()

        assert report["calculations"]["totalHours"] == "54.60"
        assert report["calculations"]["avgHourlyRate"] == "70.00"
        assert report["total"]["engineeringRevenue"] == "3822.00"
        assert report["total"]["totalCost"] == "86400.00"

    def test_additional_costs_from_scenario(self, workflow, make_actor):
        setup = build_proposal(
            workflow, make_actor(), [],
            additional_costs=(AdditionalCostSpec(AdditionalCostType.PERCENTAGE, Decimal("10")),),
        )

        result = workflow.calculation.calculate(setup.scenario.id)

        assert result.totals.final_cost == Decimal("95040")


class TestMissingRates:

    def test_reported_on_result(self, workflow, make_actor):
        setup = build_proposal(workflow, make_actor(), [], with_rates=False)

        result = workflow.calculation.calculate(setup.scenario.id)

        assert not result.is_complete
        assert {m.kind for m in result.missing_rates} == {RateKind.COST, RateKind.SELL}
        assert result.totals.revenue == Decimal("0")

    def test_rate_outside_year_start_is_missing(self, workflow, make_actor):
        actor = make_actor()
        setup = build_proposal(workflow, actor, [], with_rates=False)
        workflow.rates.create_cost_rate("HCC", date(2025, 2, 1), None, Decimal("45"), actor)
        workflow.rates.create_sell_rate(
            "HCC", "Senior", USE_CASE, date(2025, 1, 1), None, Decimal("70"), actor,
        )

        result = workflow.calculation.calculate(setup.scenario.id)

        assert [m.kind for m in result.missing_rates] == [RateKind.COST]


class TestLiveInputs:

    def test_allocation_change_visible(self, workflow, proposal):
        workflow.allocations.fill_allocations(
            proposal.plan.id, (2025, 1), (2025, 6), Decimal("0.5"), proposal.creator,
        )

        result = workflow.calculation.calculate(proposal.scenario.id)

        assert result.hours.total_hours == Decimal("1440")

    def test_rate_change_visible(self, session, workflow, proposal):
        page = RateSelector(session).list_cost_rates(cost_center="HCC")
        workflow.rates.update_cost_rate(
            page.items[0].id, {"cost_per_hour": Decimal("50")}, proposal.creator,
        )

        result = workflow.calculation.calculate(proposal.scenario.id)

        assert result.totals.cost == Decimal("96000")

    def test_second_year(self, workflow, proposal):
        workflow.allocations.replace_allocations(
            proposal.plan.id,
            [MonthlyFte(2025, 1, Decimal("1")), MonthlyFte(2026, 1, Decimal("1"))],
            proposal.creator,
        )

        result = workflow.calculation.calculate(proposal.scenario.id)

        assert [y.year for y in result.by_year] == [2025]
        assert result.missing_rates[0].year == 2026


class TestWhatIfAndCompare:

    def test_calculate_params(self, workflow, proposal):
        params = ScenarioParams(
            ScenarioType.TM,
            USE_CASE,
            (AdditionalCostSpec(AdditionalCostType.ABSOLUTE, Decimal("400")),),
        )

        result = workflow.calculation.calculate_params(proposal.rfq.id, params)

        assert result.totals.final_cost == Decimal("86800")

    def test_compare_skips_unknown(self, workflow, proposal, captured_logs):
        clone = workflow.scenarios.clone(proposal.scenario.id, "Variant", proposal.creator)
        workflow.scenarios.set_additional_costs(
            clone.id,
            [AdditionalCostSpec(AdditionalCostType.ABSOLUTE, Decimal("1000"))],
            proposal.creator,
        )
        missing = uuid4()

        results = workflow.calculation.compare_scenarios([proposal.scenario.id, missing, clone.id])

        assert list(results) == [proposal.scenario.id, clone.id]
        assert results[clone.id].totals.margin == Decimal("47000")
        assert any(
            r["message"] == "scenario_skipped" and r["scenario_id"] == str(missing)
            for r in captured_logs()
        )
