"""
Module: pricing_kernel.models.decision_package
Responsibility: ORM persistence for decision packages and their locked
    scenario snapshots.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Version is unique per RFQ (UNIQUE(rfq_id, version)).
    - A scenario is linked to a package at most once.
    - Snapshot immutability: a non-null snapshot can be cleared (unlock)
      but never replaced by a different non-null snapshot.  Enforced by a
      ``before_update`` listener.
    - locked_at, snapshot_data and snapshot_hash are set and cleared
      together (DB check constraint).

Failure modes:
    - IntegrityError on a duplicate version (concurrent create).
    - SnapshotImmutableError on an in-place snapshot rewrite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.orm.attributes import get_history

from pricing_kernel.db.base import Base, TrackedBase, UUIDString
from pricing_kernel.domain.approval import PackageStatus
from pricing_kernel.exceptions import SnapshotImmutableError
from pricing_kernel.models.scenario import Scenario


class DecisionPackage(TrackedBase):
    """A versioned bundle of scenarios sent through approval."""

    __tablename__ = "decision_packages"

    __table_args__ = (
        UniqueConstraint("rfq_id", "version", name="uq_decision_packages_version"),
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'REJECTED')",
            name="ck_decision_packages_status",
        ),
    )

    rfq_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PackageStatus.DRAFT.value,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    scenario_links: Mapped[list["DecisionPackageScenario"]] = relationship(
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="DecisionPackageScenario.position",
    )

    @property
    def status_enum(self) -> PackageStatus:
        return PackageStatus(self.status)

    def __repr__(self) -> str:
        return f"<DecisionPackage {self.name} v{self.version} {self.status}>"


class DecisionPackageScenario(Base):
    """Link between a package and a scenario, holding the frozen snapshot."""

    __tablename__ = "decision_package_scenarios"

    __table_args__ = (
        UniqueConstraint(
            "package_id", "scenario_id", name="uq_decision_package_scenarios",
        ),
        CheckConstraint(
            "(locked_at IS NULL AND snapshot_hash IS NULL) "
            "OR (locked_at IS NOT NULL AND snapshot_hash IS NOT NULL)",
            name="ck_decision_package_scenarios_lock",
        ),
    )

    package_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("decision_packages.id", ondelete="CASCADE"),
        nullable=False,
    )
    scenario_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("scenarios.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    snapshot_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON(none_as_null=True), nullable=True,
    )
    snapshot_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    package: Mapped[DecisionPackage] = relationship(back_populates="scenario_links")
    scenario: Mapped[Scenario] = relationship()

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def lock(self, snapshot: dict[str, Any], snapshot_hash: str, at: datetime) -> None:
        self.snapshot_data = snapshot
        self.snapshot_hash = snapshot_hash
        self.locked_at = at

    def unlock(self) -> None:
        self.snapshot_data = None
        self.snapshot_hash = None
        self.locked_at = None


# =============================================================================
# ORM-Level Snapshot Immutability
# =============================================================================


@event.listens_for(DecisionPackageScenario, "before_update")
def prevent_snapshot_rewrite(mapper, connection, target):
    """Allow lock (null -> data) and unlock (data -> null) only."""
    for attr in ("snapshot_data", "snapshot_hash"):
        history = get_history(target, attr)
        old = [v for v in history.deleted if v is not None]
        new = [v for v in history.added if v is not None]
        if old and new and old != new:
            raise SnapshotImmutableError(link_id=str(target.id))
