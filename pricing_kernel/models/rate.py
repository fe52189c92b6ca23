"""
Module: pricing_kernel.models.rate
Responsibility: ORM persistence for effective-dated cost and sell rates.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Positive hourly rates and non-inverted intervals (DB check
      constraints).
    - Non-overlap of intervals within one dimension is enforced by
      RateService.assert_no_overlap inside the writing transaction.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pricing_kernel.db.base import TrackedBase
from pricing_kernel.domain.calculation import CostRateInfo, SellRateInfo, interval_contains


class CostRate(TrackedBase):
    """Internal cost per hour of a cost center over an effective interval."""

    __tablename__ = "cost_rates"

    __table_args__ = (
        CheckConstraint("cost_per_hour > 0", name="ck_cost_rates_positive"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_cost_rates_interval",
        ),
        Index("ix_cost_rates_lookup", "cost_center", "effective_from"),
    )

    cost_center: Mapped[str] = mapped_column(String(50), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    cost_per_hour: Mapped[Decimal] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_effective(self, as_of: date) -> bool:
        return interval_contains(self.effective_from, self.effective_to, as_of)

    @property
    def dimension(self) -> str:
        return self.cost_center

    def to_dto(self) -> CostRateInfo:
        return CostRateInfo(
            id=self.id,
            cost_center=self.cost_center,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            cost_per_hour=self.cost_per_hour,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<CostRate {self.cost_center} {self.effective_from}.."
            f"{self.effective_to or 'open'} {self.cost_per_hour}>"
        )


class SellRate(TrackedBase):
    """Customer price per hour of a (location, level, use case) triple."""

    __tablename__ = "sell_rates"

    __table_args__ = (
        CheckConstraint("sell_per_hour > 0", name="ck_sell_rates_positive"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_sell_rates_interval",
        ),
        Index(
            "ix_sell_rates_lookup",
            "location", "level", "use_case", "effective_from",
        ),
    )

    location: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    use_case: Mapped[str] = mapped_column(String(50), nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    sell_per_hour: Mapped[Decimal] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_effective(self, as_of: date) -> bool:
        return interval_contains(self.effective_from, self.effective_to, as_of)

    @property
    def dimension(self) -> str:
        return f"{self.level}@{self.location}/{self.use_case}"

    def to_dto(self) -> SellRateInfo:
        return SellRateInfo(
            id=self.id,
            location=self.location,
            level=self.level,
            use_case=self.use_case,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            sell_per_hour=self.sell_per_hour,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<SellRate {self.dimension} {self.effective_from}.."
            f"{self.effective_to or 'open'} {self.sell_per_hour}>"
        )
