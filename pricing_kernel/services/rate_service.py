"""
pricing_kernel.services.rate_service -- Effective-dated rate maintenance.

Responsibility:
    Create, update and delete cost rates (per cost center) and sell rates
    (per location, level and use case) while keeping the effective
    intervals of each dimension disjoint.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.

Invariants enforced:
    - Per-hour rates are positive and intervals are not inverted.
    - No two rates of one dimension have intersecting intervals
      (inclusive bounds, open ``effective_to`` unbounded).  The check
      runs in the writing transaction; on PostgreSQL the dimension is
      serialized with a transaction-scoped advisory lock and the scanned
      rows are locked ``FOR UPDATE``.

Failure modes:
    - InvalidRateError on bad input, before anything is written.
    - RateOverlapError naming the conflicting rate.
    - EntityNotFoundError on update or delete of an unknown rate.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from pricing_kernel.domain.actor import Actor
from pricing_kernel.domain.calculation import (
    CostRateInfo,
    SellRateInfo,
    intervals_overlap,
)
from pricing_kernel.exceptions import InvalidRateError, RateOverlapError
from pricing_kernel.logging_config import get_logger
from pricing_kernel.models.rate import CostRate, SellRate
from pricing_kernel.services.base import BaseService
from pricing_kernel.utils.hashing import hash_payload

logger = get_logger("services.rate")

_COST_FIELDS = frozenset({"cost_center", "effective_from", "effective_to", "cost_per_hour", "notes"})
_SELL_FIELDS = frozenset({
    "location", "level", "use_case", "effective_from", "effective_to", "sell_per_hour", "notes",
})


def _validate_interval(effective_from: date, effective_to: date | None) -> None:
    if effective_from is None:
        raise InvalidRateError("effective_from", "is required")
    if effective_to is not None and effective_to < effective_from:
        raise InvalidRateError(
            "effective_to",
            f"{effective_to} is before effective_from {effective_from}",
        )


def _validate_amount(field: str, value: Decimal) -> None:
    if not isinstance(value, Decimal):
        raise InvalidRateError(field, f"must be a Decimal, got {type(value).__name__}")
    if value <= 0:
        raise InvalidRateError(field, f"must be positive, got {value}")


def _validate_key(field: str, value: str) -> None:
    if not value or not value.strip():
        raise InvalidRateError(field, "cannot be empty")


def _advisory_key(kind: str, dimension: str) -> int:
    # Fits a signed bigint.
    return int(hash_payload({"kind": kind, "dimension": dimension})[:15], 16)


class RateService(BaseService):
    """Write access to cost and sell rates."""

    # ------------------------------------------------------------------
    # Cost rates
    # ------------------------------------------------------------------

    def create_cost_rate(
        self,
        cost_center: str,
        effective_from: date,
        effective_to: date | None,
        cost_per_hour: Decimal,
        actor: Actor,
        notes: str | None = None,
    ) -> CostRateInfo:
        _validate_key("cost_center", cost_center)
        _validate_interval(effective_from, effective_to)
        _validate_amount("cost_per_hour", cost_per_hour)

        self.assert_no_overlap(
            CostRate,
            {"cost_center": cost_center},
            effective_from,
            effective_to,
        )

        rate = CostRate(
            cost_center=cost_center,
            effective_from=effective_from,
            effective_to=effective_to,
            cost_per_hour=cost_per_hour,
            notes=notes,
            created_by_id=actor.id,
        )
        self.session.add(rate)
        self.session.flush()

        logger.info(
            "cost_rate_created",
            extra={
                "rate_id": str(rate.id),
                "cost_center": cost_center,
                "effective_from": effective_from.isoformat(),
                "effective_to": effective_to.isoformat() if effective_to else None,
            },
        )
        return rate.to_dto()

    def update_cost_rate(
        self, rate_id: UUID, changes: Mapping[str, Any], actor: Actor
    ) -> CostRateInfo:
        """Merge ``changes`` into the current row, then re-validate."""
        unknown = set(changes) - _COST_FIELDS
        if unknown:
            raise InvalidRateError(", ".join(sorted(unknown)), "not an updatable field")

        rate = self._get(CostRate, rate_id)
        merged = {name: getattr(rate, name) for name in _COST_FIELDS}
        merged.update(changes)

        _validate_key("cost_center", merged["cost_center"])
        _validate_interval(merged["effective_from"], merged["effective_to"])
        _validate_amount("cost_per_hour", merged["cost_per_hour"])

        self.assert_no_overlap(
            CostRate,
            {"cost_center": merged["cost_center"]},
            merged["effective_from"],
            merged["effective_to"],
            exclude_id=rate.id,
        )

        for name, value in merged.items():
            setattr(rate, name, value)
        rate.touch(actor.id)
        self.session.flush()

        logger.info(
            "cost_rate_updated",
            extra={"rate_id": str(rate.id), "fields": sorted(changes)},
        )
        return rate.to_dto()

    def delete_cost_rate(self, rate_id: UUID, actor: Actor) -> None:
        rate = self._get(CostRate, rate_id)
        self.session.delete(rate)
        self.session.flush()
        logger.info(
            "cost_rate_deleted",
            extra={"rate_id": str(rate_id), "actor_id": str(actor.id)},
        )

    # ------------------------------------------------------------------
    # Sell rates
    # ------------------------------------------------------------------

    def create_sell_rate(
        self,
        location: str,
        level: str,
        use_case: str,
        effective_from: date,
        effective_to: date | None,
        sell_per_hour: Decimal,
        actor: Actor,
        notes: str | None = None,
    ) -> SellRateInfo:
        _validate_key("location", location)
        _validate_key("level", level)
        _validate_key("use_case", use_case)
        _validate_interval(effective_from, effective_to)
        _validate_amount("sell_per_hour", sell_per_hour)

        self.assert_no_overlap(
            SellRate,
            {"location": location, "level": level, "use_case": use_case},
            effective_from,
            effective_to,
        )

        rate = SellRate(
            location=location,
            level=level,
            use_case=use_case,
            effective_from=effective_from,
            effective_to=effective_to,
            sell_per_hour=sell_per_hour,
            notes=notes,
            created_by_id=actor.id,
        )
        self.session.add(rate)
        self.session.flush()

        logger.info(
            "sell_rate_created",
            extra={
                "rate_id": str(rate.id),
                "dimension": rate.dimension,
                "effective_from": effective_from.isoformat(),
                "effective_to": effective_to.isoformat() if effective_to else None,
            },
        )
        return rate.to_dto()

    def update_sell_rate(
        self, rate_id: UUID, changes: Mapping[str, Any], actor: Actor
    ) -> SellRateInfo:
        unknown = set(changes) - _SELL_FIELDS
        if unknown:
            raise InvalidRateError(", ".join(sorted(unknown)), "not an updatable field")

        rate = self._get(SellRate, rate_id)
        merged = {name: getattr(rate, name) for name in _SELL_FIELDS}
        merged.update(changes)

        for key in ("location", "level", "use_case"):
            _validate_key(key, merged[key])
        _validate_interval(merged["effective_from"], merged["effective_to"])
        _validate_amount("sell_per_hour", merged["sell_per_hour"])

        self.assert_no_overlap(
            SellRate,
            {
                "location": merged["location"],
                "level": merged["level"],
                "use_case": merged["use_case"],
            },
            merged["effective_from"],
            merged["effective_to"],
            exclude_id=rate.id,
        )

        for name, value in merged.items():
            setattr(rate, name, value)
        rate.touch(actor.id)
        self.session.flush()

        logger.info(
            "sell_rate_updated",
            extra={"rate_id": str(rate.id), "fields": sorted(changes)},
        )
        return rate.to_dto()

    def delete_sell_rate(self, rate_id: UUID, actor: Actor) -> None:
        rate = self._get(SellRate, rate_id)
        self.session.delete(rate)
        self.session.flush()
        logger.info(
            "sell_rate_deleted",
            extra={"rate_id": str(rate_id), "actor_id": str(actor.id)},
        )

    # ------------------------------------------------------------------
    # Overlap guard
    # ------------------------------------------------------------------

    def assert_no_overlap(
        self,
        model: type[CostRate] | type[SellRate],
        dimension: Mapping[str, str],
        effective_from: date,
        effective_to: date | None,
        exclude_id: UUID | None = None,
    ) -> None:
        """Raise RateOverlapError if the candidate interval hits an existing rate.

        Must run in the same transaction as the write it guards.
        """
        label = "/".join(dimension[k] for k in sorted(dimension))
        bind = self.session.get_bind()
        if bind.dialect.name == "postgresql":
            self.session.execute(
                select(func.pg_advisory_xact_lock(_advisory_key(model.__tablename__, label)))
            )

        stmt = select(model).where(
            *(getattr(model, column) == value for column, value in dimension.items())
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)

        for existing in self.session.execute(stmt.with_for_update()).scalars():
            if intervals_overlap(
                effective_from, effective_to,
                existing.effective_from, existing.effective_to,
            ):
                logger.warning(
                    "rate_overlap_rejected",
                    extra={
                        "dimension": existing.dimension,
                        "existing_rate_id": str(existing.id),
                    },
                )
                raise RateOverlapError(
                    dimension=existing.dimension,
                    existing_rate_id=str(existing.id),
                    existing_from=existing.effective_from.isoformat(),
                    existing_to=(
                        existing.effective_to.isoformat() if existing.effective_to else None
                    ),
                )
