"""
pricing_kernel.services.allocation_service -- Monthly FTE allocation writes.

Responsibility:
    Bulk replacement, range fill, year copy and clearing of the monthly
    allocations of staffing lines.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - FTE lies in [0, max_fte] and is a multiple of fte_step
      (``AllocationRules``).
    - One allocation per (profile plan, year, month).
    - Mutation replaces rows.  An existing row is never patched in place,
      so any row a calculation read is either still exactly that row or
      gone.

Failure modes:
    - InvalidAllocationError on any bad entry, before anything is written.
    - EntityNotFoundError for an unknown profile plan or allocation.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from pricing_kernel.domain.actor import Actor
from pricing_kernel.domain.clock import Clock
from pricing_kernel.domain.policy import AllocationRules
from pricing_kernel.exceptions import InvalidAllocationError
from pricing_kernel.logging_config import get_logger
from pricing_kernel.models.rfq import MonthlyAllocation, ProfilePlan
from pricing_kernel.selectors.allocation_selector import (
    AllocationSelector,
    AllocationSummary,
)
from pricing_kernel.services.base import BaseService

logger = get_logger("services.allocation")


@dataclass(frozen=True)
class MonthlyFte:
    year: int
    month: int
    fte: Decimal


def _months_between(
    start: tuple[int, int], end: tuple[int, int]
) -> list[tuple[int, int]]:
    """Inclusive (year, month) range."""
    months = []
    year, month = start
    while (year, month) <= end:
        months.append((year, month))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


class AllocationService(BaseService):

    def __init__(
        self,
        session: Session,
        rules: AllocationRules | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self.rules = rules or AllocationRules()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_fte(self, fte: Decimal, where: str = "fte") -> None:
        if not isinstance(fte, Decimal):
            raise InvalidAllocationError(where, f"must be a Decimal, got {type(fte).__name__}")
        if fte < 0 or fte > self.rules.max_fte:
            raise InvalidAllocationError(
                where, f"FTE must be between 0 and {self.rules.max_fte}, got {fte}",
            )
        if fte % self.rules.fte_step != 0:
            raise InvalidAllocationError(
                where, f"FTE must be in {self.rules.fte_step} increments, got {fte}",
            )

    def _validate_entries(self, entries: Sequence[MonthlyFte]) -> None:
        seen: set[tuple[int, int]] = set()
        for entry in entries:
            where = f"{entry.year}-{entry.month:02d}"
            if not 1 <= entry.month <= 12:
                raise InvalidAllocationError(where, f"month must be in 1..12, got {entry.month}")
            if (entry.year, entry.month) in seen:
                raise InvalidAllocationError(where, "duplicated year and month")
            seen.add((entry.year, entry.month))
            self.validate_fte(entry.fte, where)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_allocations(
        self,
        profile_plan_id: UUID,
        entries: Sequence[MonthlyFte],
        actor: Actor,
    ) -> list[MonthlyAllocation]:
        """Delete every allocation of the plan and insert ``entries``."""
        self._get(ProfilePlan, profile_plan_id)
        self._validate_entries(entries)

        self.session.execute(
            delete(MonthlyAllocation)
            .where(MonthlyAllocation.profile_plan_id == profile_plan_id)
            .execution_options(synchronize_session="fetch")
        )
        rows = self._insert(profile_plan_id, entries)

        logger.info(
            "allocations_replaced",
            extra={
                "profile_plan_id": str(profile_plan_id),
                "count": len(rows),
                "actor_id": str(actor.id),
            },
        )
        return rows

    def update_allocation(
        self, allocation_id: UUID, fte: Decimal, actor: Actor
    ) -> MonthlyAllocation:
        """Replace one month with a new row carrying ``fte``."""
        self.validate_fte(fte)
        current = self._get(MonthlyAllocation, allocation_id)
        plan_id, year, month = current.profile_plan_id, current.year, current.month

        self.session.delete(current)
        self.session.flush()
        (row,) = self._insert(plan_id, [MonthlyFte(year, month, fte)])

        logger.info(
            "allocation_updated",
            extra={
                "profile_plan_id": str(plan_id),
                "year": year,
                "month": month,
                "fte": str(fte),
                "actor_id": str(actor.id),
            },
        )
        return row

    def fill_allocations(
        self,
        profile_plan_id: UUID,
        start: tuple[int, int],
        end: tuple[int, int],
        fte: Decimal,
        actor: Actor,
    ) -> list[MonthlyAllocation]:
        """Set every month of the inclusive ``start``..``end`` range to ``fte``."""
        self._get(ProfilePlan, profile_plan_id)
        for label, (_, month) in (("start", start), ("end", end)):
            if not 1 <= month <= 12:
                raise InvalidAllocationError(label, f"month must be in 1..12, got {month}")
        if start > end:
            raise InvalidAllocationError("range", f"start {start} is after end {end}")
        self.validate_fte(fte)

        months = _months_between(start, end)
        self.session.execute(
            delete(MonthlyAllocation)
            .where(
                MonthlyAllocation.profile_plan_id == profile_plan_id,
                or_(*(
                    and_(MonthlyAllocation.year == year, MonthlyAllocation.month == month)
                    for year, month in months
                )),
            )
            .execution_options(synchronize_session="fetch")
        )
        rows = self._insert(
            profile_plan_id, [MonthlyFte(year, month, fte) for year, month in months],
        )

        logger.info(
            "allocations_filled",
            extra={
                "profile_plan_id": str(profile_plan_id),
                "count": len(rows),
                "fte": str(fte),
                "actor_id": str(actor.id),
            },
        )
        return rows

    def copy_year(
        self,
        source_year: int,
        target_year: int,
        actor: Actor,
        profile_plan_ids: Iterable[UUID] | None = None,
    ) -> int:
        """Copy the allocations of ``source_year`` into ``target_year``.

        Existing target-year allocations of the affected plans are
        replaced.  Returns the number of rows written.
        """
        if source_year == target_year:
            raise InvalidAllocationError("target_year", "must differ from source_year")

        stmt = select(MonthlyAllocation).where(MonthlyAllocation.year == source_year)
        plan_ids = list(profile_plan_ids or [])
        if plan_ids:
            stmt = stmt.where(MonthlyAllocation.profile_plan_id.in_(plan_ids))
        source = list(self.session.execute(stmt).scalars())
        if not source:
            raise InvalidAllocationError(
                "source_year", f"no allocations found for year {source_year}",
            )

        affected = sorted({row.profile_plan_id for row in source})
        self.session.execute(
            delete(MonthlyAllocation)
            .where(
                MonthlyAllocation.year == target_year,
                MonthlyAllocation.profile_plan_id.in_(affected),
            )
            .execution_options(synchronize_session="fetch")
        )
        for row in source:
            self.session.add(
                MonthlyAllocation(
                    profile_plan_id=row.profile_plan_id,
                    year=target_year,
                    month=row.month,
                    fte=row.fte,
                )
            )
        self.session.flush()
        self._expire_allocations(affected)

        logger.info(
            "allocations_copied",
            extra={
                "source_year": source_year,
                "target_year": target_year,
                "count": len(source),
                "actor_id": str(actor.id),
            },
        )
        return len(source)

    def clear_allocations(self, profile_plan_id: UUID, actor: Actor) -> int:
        self._get(ProfilePlan, profile_plan_id)
        result = self.session.execute(
            delete(MonthlyAllocation)
            .where(MonthlyAllocation.profile_plan_id == profile_plan_id)
            .execution_options(synchronize_session="fetch")
        )
        self._expire_allocations([profile_plan_id])
        logger.info(
            "allocations_cleared",
            extra={
                "profile_plan_id": str(profile_plan_id),
                "count": result.rowcount,
                "actor_id": str(actor.id),
            },
        )
        return result.rowcount

    def summarize(self, rfq_id: UUID) -> AllocationSummary:
        return AllocationSelector(self.session).summarize(rfq_id)

    def _insert(
        self, profile_plan_id: UUID, entries: Sequence[MonthlyFte]
    ) -> list[MonthlyAllocation]:
        rows = [
            MonthlyAllocation(
                profile_plan_id=profile_plan_id,
                year=entry.year,
                month=entry.month,
                fte=entry.fte,
            )
            for entry in entries
        ]
        self.session.add_all(rows)
        self.session.flush()
        self._expire_allocations([profile_plan_id])
        return rows

    def _expire_allocations(self, profile_plan_ids: Iterable[UUID]) -> None:
        # Bulk statements bypass loaded relationship collections.
        for plan_id in profile_plan_ids:
            plan = self.session.get(ProfilePlan, plan_id)
            if plan is not None:
                self.session.expire(plan, ["allocations"])
