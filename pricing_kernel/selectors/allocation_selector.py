"""
Module: pricing_kernel.selectors.allocation_selector
Responsibility: Read-side access to monthly allocations: the denormalized
    ``AllocationLine`` feed for the aggregation engine and FTE summaries
    for planning views.

Invariants enforced:
    - Lines are returned in a stable order (plan, year, month) so engine
      input fingerprints are reproducible.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from pricing_kernel.domain.calculation import AllocationLine
from pricing_kernel.models.rfq import Feature, MonthlyAllocation, ProfilePlan
from pricing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class FteBucket:
    profiles: int
    total_fte: Decimal


@dataclass(frozen=True)
class AllocationSummary:
    """FTE totals of one proposal, grouped several ways."""

    total_profiles: int
    by_feature: dict[str, FteBucket] = field(default_factory=dict)
    by_cost_center: dict[str, FteBucket] = field(default_factory=dict)
    by_year_month: dict[tuple[int, int], Decimal] = field(default_factory=dict)
    by_year: dict[int, Decimal] = field(default_factory=dict)


class AllocationSelector(BaseSelector):

    def lines_for_rfq(self, rfq_id: UUID) -> list[AllocationLine]:
        rows = self.session.execute(
            select(ProfilePlan, MonthlyAllocation)
            .join(MonthlyAllocation, MonthlyAllocation.profile_plan_id == ProfilePlan.id)
            .where(ProfilePlan.rfq_id == rfq_id)
            .order_by(ProfilePlan.id, MonthlyAllocation.year, MonthlyAllocation.month)
        ).all()
        return [
            AllocationLine(
                cost_center=plan.cost_center,
                level=plan.level,
                location=plan.location,
                year=allocation.year,
                month=allocation.month,
                fte=allocation.fte,
            )
            for plan, allocation in rows
        ]

    def for_profile_plan(self, profile_plan_id: UUID) -> list[MonthlyAllocation]:
        return list(
            self.session.execute(
                select(MonthlyAllocation)
                .where(MonthlyAllocation.profile_plan_id == profile_plan_id)
                .order_by(MonthlyAllocation.year, MonthlyAllocation.month)
            ).scalars()
        )

    def summarize(self, rfq_id: UUID) -> AllocationSummary:
        plans = self.session.execute(
            select(ProfilePlan, Feature.name)
            .join(Feature, Feature.id == ProfilePlan.feature_id)
            .where(ProfilePlan.rfq_id == rfq_id)
        ).all()

        feature_profiles: dict[str, int] = defaultdict(int)
        feature_fte: dict[str, Decimal] = defaultdict(Decimal)
        cc_profiles: dict[str, int] = defaultdict(int)
        cc_fte: dict[str, Decimal] = defaultdict(Decimal)
        by_year_month: dict[tuple[int, int], Decimal] = defaultdict(Decimal)
        by_year: dict[int, Decimal] = defaultdict(Decimal)

        for plan, feature_name in plans:
            feature_profiles[feature_name] += 1
            cc_profiles[plan.cost_center] += 1
            for allocation in plan.allocations:
                feature_fte[feature_name] += allocation.fte
                cc_fte[plan.cost_center] += allocation.fte
                by_year_month[(allocation.year, allocation.month)] += allocation.fte
                by_year[allocation.year] += allocation.fte

        return AllocationSummary(
            total_profiles=len(plans),
            by_feature={
                name: FteBucket(count, feature_fte[name])
                for name, count in feature_profiles.items()
            },
            by_cost_center={
                cc: FteBucket(count, cc_fte[cc]) for cc, count in cc_profiles.items()
            },
            by_year_month=dict(sorted(by_year_month.items())),
            by_year=dict(sorted(by_year.items())),
        )
