"""
Module: pricing_kernel.models.scenario
Responsibility: ORM persistence for pricing scenarios and their
    additional cost lines.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricing_kernel.db.base import Base, TrackedBase, UUIDString
from pricing_kernel.domain.calculation import (
    AdditionalCostSpec,
    AdditionalCostType,
    FixedPriceParams,
    ScenarioParams,
    ScenarioType,
)

# Fields compared by ScenarioService.diff and stored in snapshots.
FINANCIAL_FIELDS: tuple[str, ...] = (
    "scenario_type",
    "use_case",
    "sp_small",
    "sp_medium",
    "sp_large",
    "quota_small",
    "quota_medium",
    "quota_large",
    "sp_to_hours",
    "risk_factor",
    "hw_overhead",
)


def _text(value: Any) -> str | None:
    """Stable text form; Numeric round trips add trailing zeros."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


class Scenario(TrackedBase):
    """One pricing variant of a proposal."""

    __tablename__ = "scenarios"

    __table_args__ = (
        CheckConstraint("scenario_type IN ('TM', 'FIXED')", name="ck_scenarios_type"),
    )

    rfq_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    scenario_type: Mapped[str] = mapped_column(String(10), nullable=False)
    use_case: Mapped[str] = mapped_column(String(50), nullable=False)
    sp_small: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sp_medium: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sp_large: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quota_small: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quota_medium: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quota_large: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sp_to_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    risk_factor: Mapped[Decimal | None] = mapped_column(nullable=True)
    hw_overhead: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    additional_costs: Mapped[list["AdditionalCost"]] = relationship(
        back_populates="scenario",
        cascade="all, delete-orphan",
        order_by="AdditionalCost.position",
    )

    @property
    def type_enum(self) -> ScenarioType:
        return ScenarioType(self.scenario_type)

    def to_params(self) -> ScenarioParams:
        """Engine input for this scenario."""
        fixed = None
        if self.type_enum == ScenarioType.FIXED:
            fixed = FixedPriceParams(
                sp_small=self.sp_small,
                sp_medium=self.sp_medium,
                sp_large=self.sp_large,
                quota_small=self.quota_small,
                quota_medium=self.quota_medium,
                quota_large=self.quota_large,
                sp_to_hours=self.sp_to_hours,
                risk_factor=self.risk_factor,
                hw_overhead=self.hw_overhead,
            )
        return ScenarioParams(
            scenario_type=self.type_enum,
            use_case=self.use_case,
            additional_costs=tuple(c.to_spec() for c in self.additional_costs),
            fixed=fixed,
        )

    def to_snapshot(self) -> dict[str, Any]:
        """Full parameter set as JSON-safe primitives."""
        data: dict[str, Any] = {
            "id": str(self.id),
            "rfq_id": str(self.rfq_id),
            "name": self.name,
            "notes": self.notes,
        }
        for name in FINANCIAL_FIELDS:
            value = getattr(self, name)
            data[name] = _text(value)
        data["additional_costs"] = [c.to_snapshot() for c in self.additional_costs]
        return data

    def __repr__(self) -> str:
        return f"<Scenario {self.name} {self.scenario_type}>"


class AdditionalCost(Base):
    """Absolute amount or percentage surcharge on a scenario."""

    __tablename__ = "additional_costs"

    __table_args__ = (
        CheckConstraint(
            "cost_type IN ('ABSOLUTE', 'PERCENTAGE')",
            name="ck_additional_costs_type",
        ),
        CheckConstraint("value >= 0", name="ck_additional_costs_value"),
    )

    scenario_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    cost_type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    scenario: Mapped[Scenario] = relationship(back_populates="additional_costs")

    def to_spec(self) -> AdditionalCostSpec:
        return AdditionalCostSpec(
            cost_type=AdditionalCostType(self.cost_type),
            value=self.value,
            description=self.description,
        )

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "cost_type": self.cost_type,
            "value": _text(self.value),
            "description": self.description,
        }
