"""
pricing_kernel.services.scenario_service -- Pricing scenario maintenance.

Responsibility:
    Create, update, clone, compare and delete the pricing scenarios of a
    proposal, including their additional cost lines.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Parameters are validated through the domain value objects
      (``FixedPriceParams``, ``AdditionalCostSpec``) before any write.
    - A scenario linked to a decision package cannot be deleted.

Failure modes:
    - InvalidScenarioError on bad parameters.
    - ScenarioInUseError when deleting a scenario a package links.
    - EntityNotFoundError for an unknown proposal or scenario.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from pricing_kernel.domain.actor import Actor
from pricing_kernel.domain.calculation import (
    AdditionalCostSpec,
    FixedPriceParams,
    ScenarioType,
)
from pricing_kernel.exceptions import InvalidScenarioError, ScenarioInUseError
from pricing_kernel.logging_config import get_logger
from pricing_kernel.models.decision_package import DecisionPackageScenario
from pricing_kernel.models.rfq import Rfq
from pricing_kernel.models.scenario import FINANCIAL_FIELDS, AdditionalCost, Scenario
from pricing_kernel.services.base import BaseService

logger = get_logger("services.scenario")

_FIXED_FIELDS = (
    "sp_small", "sp_medium", "sp_large",
    "quota_small", "quota_medium", "quota_large",
    "sp_to_hours", "risk_factor", "hw_overhead",
)
_UPDATABLE = frozenset({"name", "scenario_type", "use_case", "notes", *_FIXED_FIELDS})


@dataclass(frozen=True)
class FieldChange:
    from_value: Any
    to_value: Any


def _check_fixed(values: Mapping[str, Any]) -> FixedPriceParams:
    kwargs = {k: values[k] for k in _FIXED_FIELDS if values.get(k) is not None}
    try:
        return FixedPriceParams(**kwargs)
    except (TypeError, ValueError) as exc:
        raise InvalidScenarioError("fixed", str(exc)) from exc


def _check_costs(costs: Sequence[AdditionalCostSpec]) -> None:
    for position, cost in enumerate(costs):
        if not isinstance(cost, AdditionalCostSpec):
            raise InvalidScenarioError(
                f"additional_costs[{position}]",
                f"expected AdditionalCostSpec, got {type(cost).__name__}",
            )


class ScenarioService(BaseService):

    def create(
        self,
        rfq_id: UUID,
        name: str,
        scenario_type: ScenarioType,
        use_case: str,
        actor: Actor,
        fixed: FixedPriceParams | None = None,
        additional_costs: Sequence[AdditionalCostSpec] = (),
        notes: str | None = None,
    ) -> Scenario:
        self._get(Rfq, rfq_id)
        if not name or not name.strip():
            raise InvalidScenarioError("name", "cannot be empty")
        if not use_case or not use_case.strip():
            raise InvalidScenarioError("use_case", "cannot be empty")
        if scenario_type == ScenarioType.FIXED and fixed is None:
            raise InvalidScenarioError("fixed", "FIXED scenario requires fixed-price parameters")
        _check_costs(additional_costs)

        scenario = Scenario(
            rfq_id=rfq_id,
            name=name,
            scenario_type=scenario_type.value,
            use_case=use_case,
            notes=notes,
            created_by_id=actor.id,
        )
        if fixed is not None:
            for field in _FIXED_FIELDS:
                setattr(scenario, field, getattr(fixed, field))
        scenario.additional_costs = [
            AdditionalCost(
                position=position,
                cost_type=cost.cost_type.value,
                value=cost.value,
                description=cost.description,
            )
            for position, cost in enumerate(additional_costs)
        ]
        self.session.add(scenario)
        self.session.flush()

        logger.info(
            "scenario_created",
            extra={
                "rfq_id": str(rfq_id),
                "scenario_id": str(scenario.id),
                "scenario_type": scenario_type.value,
            },
        )
        return scenario

    def update(
        self, scenario_id: UUID, changes: Mapping[str, Any], actor: Actor
    ) -> Scenario:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise InvalidScenarioError(", ".join(sorted(unknown)), "not an updatable field")

        scenario = self._get(Scenario, scenario_id)
        merged = {k: getattr(scenario, k) for k in _UPDATABLE}
        merged.update(changes)
        if isinstance(merged["scenario_type"], ScenarioType):
            merged["scenario_type"] = merged["scenario_type"].value
        if merged["scenario_type"] not in {t.value for t in ScenarioType}:
            raise InvalidScenarioError("scenario_type", f"unknown type {merged['scenario_type']}")
        for key in ("name", "use_case"):
            if not merged[key] or not str(merged[key]).strip():
                raise InvalidScenarioError(key, "cannot be empty")
        _check_fixed(merged)

        for key, value in merged.items():
            if value is None and key in _FIXED_FIELDS and key not in ("sp_to_hours", "risk_factor"):
                value = Decimal("0")
            setattr(scenario, key, value)
        scenario.touch(actor.id)
        self.session.flush()

        logger.info(
            "scenario_updated",
            extra={"scenario_id": str(scenario_id), "fields": sorted(changes)},
        )
        return scenario

    def set_additional_costs(
        self,
        scenario_id: UUID,
        costs: Sequence[AdditionalCostSpec],
        actor: Actor,
    ) -> Scenario:
        """Replace the additional cost lines of a scenario."""
        _check_costs(costs)
        scenario = self._get(Scenario, scenario_id)
        scenario.additional_costs.clear()
        self.session.flush()
        for position, cost in enumerate(costs):
            scenario.additional_costs.append(
                AdditionalCost(
                    position=position,
                    cost_type=cost.cost_type.value,
                    value=cost.value,
                    description=cost.description,
                )
            )
        scenario.touch(actor.id)
        self.session.flush()
        logger.info(
            "scenario_costs_replaced",
            extra={"scenario_id": str(scenario_id), "count": len(costs)},
        )
        return scenario

    def clone(self, scenario_id: UUID, new_name: str, actor: Actor) -> Scenario:
        source = self._get(Scenario, scenario_id)
        fixed = None
        if source.type_enum == ScenarioType.FIXED:
            fixed = source.to_params().fixed
        copy = self.create(
            rfq_id=source.rfq_id,
            name=new_name,
            scenario_type=source.type_enum,
            use_case=source.use_case,
            actor=actor,
            fixed=fixed,
            additional_costs=[c.to_spec() for c in source.additional_costs],
            notes=source.notes,
        )
        logger.info(
            "scenario_cloned",
            extra={"source_id": str(scenario_id), "scenario_id": str(copy.id)},
        )
        return copy

    def delete(self, scenario_id: UUID, actor: Actor) -> None:
        scenario = self._get(Scenario, scenario_id)
        linked = self.session.execute(
            select(func.count())
            .select_from(DecisionPackageScenario)
            .where(DecisionPackageScenario.scenario_id == scenario_id)
        ).scalar_one()
        if linked:
            raise ScenarioInUseError(str(scenario_id), linked)
        self.session.delete(scenario)
        self.session.flush()
        logger.info(
            "scenario_deleted",
            extra={"scenario_id": str(scenario_id), "actor_id": str(actor.id)},
        )

    def list_for_rfq(self, rfq_id: UUID, name_contains: str | None = None) -> list[Scenario]:
        stmt = select(Scenario).where(Scenario.rfq_id == rfq_id)
        if name_contains:
            stmt = stmt.where(Scenario.name.ilike(f"%{name_contains}%"))
        return list(
            self.session.execute(stmt.order_by(Scenario.created_at.desc())).scalars()
        )

    def diff(self, a_id: UUID, b_id: UUID) -> dict[str, FieldChange]:
        """Fields whose values differ between two scenarios."""
        a = self._get(Scenario, a_id)
        b = self._get(Scenario, b_id)
        changes: dict[str, FieldChange] = {}
        for name in ("name", *FINANCIAL_FIELDS, "notes"):
            left, right = getattr(a, name), getattr(b, name)
            if left != right:
                changes[name] = FieldChange(left, right)
        left_costs = [c.to_snapshot() for c in a.additional_costs]
        right_costs = [c.to_snapshot() for c in b.additional_costs]
        if left_costs != right_costs:
            changes["additional_costs"] = FieldChange(left_costs, right_costs)
        return changes
