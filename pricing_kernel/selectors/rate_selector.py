"""
Module: pricing_kernel.selectors.rate_selector
Responsibility: Point-in-time resolution and listing of cost and sell
    rates.  ``RateSelector`` is the production ``RateLookup`` the pricing
    engines call.

Invariants enforced:
    - The reference date is always an explicit argument.
    - Intervals are inclusive; an open ``effective_to`` is unbounded.
    - No match is ``None``, never an error.  Missing rates are a
      data-completeness condition the caller reports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, or_, select
from pricing_kernel.domain.calculation import CostRateInfo, SellRateInfo
from pricing_kernel.models.rate import CostRate, SellRate
from pricing_kernel.selectors.base import BaseSelector

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class RatePage:
    items: tuple
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.total else 0


def _effective_at(model, at: date):
    return (
        model.effective_from <= at,
        or_(model.effective_to.is_(None), model.effective_to >= at),
    )


def _check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be in 1..{MAX_PAGE_SIZE}, got {page_size}")


class RateSelector(BaseSelector):
    """Read access to effective-dated rates."""

    def resolve_cost_rate(self, cost_center: str, at: date) -> CostRateInfo | None:
        """The cost rate of ``cost_center`` whose interval contains ``at``."""
        rate = self.session.execute(
            select(CostRate)
            .where(CostRate.cost_center == cost_center, *_effective_at(CostRate, at))
            .order_by(CostRate.effective_from.desc())
            .limit(1)
        ).scalar_one_or_none()
        return rate.to_dto() if rate else None

    def resolve_sell_rate(
        self, location: str, level: str, use_case: str, at: date
    ) -> SellRateInfo | None:
        """The sell rate of the (location, level, use case) triple at ``at``."""
        rate = self.session.execute(
            select(SellRate)
            .where(
                SellRate.location == location,
                SellRate.level == level,
                SellRate.use_case == use_case,
                *_effective_at(SellRate, at),
            )
            .order_by(SellRate.effective_from.desc())
            .limit(1)
        ).scalar_one_or_none()
        return rate.to_dto() if rate else None

    def list_cost_rates(
        self,
        cost_center: str | None = None,
        effective_at: date | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> RatePage:
        _check_paging(page, page_size)
        stmt = select(CostRate)
        if cost_center is not None:
            stmt = stmt.where(CostRate.cost_center == cost_center)
        if effective_at is not None:
            stmt = stmt.where(*_effective_at(CostRate, effective_at))
        return self._page(
            stmt.order_by(CostRate.cost_center, CostRate.effective_from),
            page,
            page_size,
        )

    def list_sell_rates(
        self,
        location: str | None = None,
        level: str | None = None,
        use_case: str | None = None,
        effective_at: date | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> RatePage:
        _check_paging(page, page_size)
        stmt = select(SellRate)
        if location is not None:
            stmt = stmt.where(SellRate.location == location)
        if level is not None:
            stmt = stmt.where(SellRate.level == level)
        if use_case is not None:
            stmt = stmt.where(SellRate.use_case == use_case)
        if effective_at is not None:
            stmt = stmt.where(*_effective_at(SellRate, effective_at))
        return self._page(
            stmt.order_by(
                SellRate.location,
                SellRate.level,
                SellRate.use_case,
                SellRate.effective_from,
            ),
            page,
            page_size,
        )

    def _page(self, stmt, page: int, page_size: int) -> RatePage:
        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        rows = self.session.execute(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).scalars().all()
        return RatePage(
            items=tuple(r.to_dto() for r in rows),
            total=total,
            page=page,
            page_size=page_size,
        )
