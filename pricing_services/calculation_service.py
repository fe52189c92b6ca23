"""
pricing_services.calculation_service -- Scenario calculation over persisted inputs.

Responsibility:
    Loads a scenario, the allocation lines of its proposal and a
    database-backed rate lookup, then runs the pure scenario engines.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Composes
    ``AllocationSelector`` and ``RateSelector`` (kernel) with
    ``calculate_scenario`` (engines).

Invariants enforced:
    - Read-only: issues SELECTs only.
    - Numeric settings come from the injected ``CalculationContext``.

Failure modes:
    - EntityNotFoundError for an unknown scenario in ``calculate``.
    - Missing rates are not failures; they are reported on the result.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from pricing_engines.scenario import CalculationResult, calculate_scenario
from pricing_kernel.domain.calculation import CalculationContext, ScenarioParams
from pricing_kernel.exceptions import EntityNotFoundError
from pricing_kernel.logging_config import LogContext, get_logger
from pricing_kernel.models.scenario import Scenario
from pricing_kernel.selectors.allocation_selector import AllocationSelector
from pricing_kernel.selectors.rate_selector import RateSelector

logger = get_logger("services.calculation")


class CalculationService:
    """Runs scenario calculations against the current database state."""

    def __init__(self, session: Session, context: CalculationContext | None = None):
        self.session = session
        self.context = context or CalculationContext()
        self._allocations = AllocationSelector(session)
        self._rates = RateSelector(session)

    def calculate(self, scenario_id: UUID) -> CalculationResult:
        scenario = self.session.get(Scenario, scenario_id)
        if scenario is None:
            raise EntityNotFoundError("Scenario", str(scenario_id))
        return self._calculate_scenario(scenario)

    def calculate_params(self, rfq_id: UUID, params: ScenarioParams) -> CalculationResult:
        """What-if calculation of unsaved parameters against a proposal."""
        with LogContext.bind(rfq_id=str(rfq_id)):
            return calculate_scenario(
                lines=self._allocations.lines_for_rfq(rfq_id),
                params=params,
                rates=self._rates,
                context=self.context,
            )

    def compare_scenarios(
        self, scenario_ids: Iterable[UUID]
    ) -> dict[UUID, CalculationResult]:
        """Calculate several scenarios side by side; unknown ids are skipped."""
        results: dict[UUID, CalculationResult] = {}
        for scenario_id in scenario_ids:
            scenario = self.session.get(Scenario, scenario_id)
            if scenario is None:
                logger.warning(
                    "scenario_skipped", extra={"scenario_id": str(scenario_id)},
                )
                continue
            results[scenario_id] = self._calculate_scenario(scenario)
        return results

    def _calculate_scenario(self, scenario: Scenario) -> CalculationResult:
        with LogContext.bind(rfq_id=str(scenario.rfq_id)):
            result = calculate_scenario(
                lines=self._allocations.lines_for_rfq(scenario.rfq_id),
                params=scenario.to_params(),
                rates=self._rates,
                context=self.context,
            )
            logger.info(
                "scenario_calculated",
                extra={
                    "scenario_id": str(scenario.id),
                    "scenario_type": scenario.scenario_type,
                    "complete": result.is_complete,
                    "missing_rates": len(result.missing_rates),
                },
            )
        return result
