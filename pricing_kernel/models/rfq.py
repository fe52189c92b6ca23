"""
Module: pricing_kernel.models.rfq
Responsibility: ORM persistence for proposals (RFQs), their members,
    features, staffing lines and monthly allocations.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - One allocation row per (profile plan, year, month).
    - Allocation month in 1..12 and FTE in [0, 1] (DB check constraints;
      the 0.1 step is enforced by AllocationService).
    - A user appears at most once among the members of one RFQ.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricing_kernel.db.base import Base, TrackedBase, UUIDString
from pricing_kernel.domain.approval import ApprovalPolicy, RfqStatus


class Rfq(TrackedBase):
    """A commercial proposal being priced."""

    __tablename__ = "rfqs"

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'IN_PROGRESS', 'SUBMITTED', 'WON', 'LOST', 'CANCELLED')",
            name="ck_rfqs_valid_status",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RfqStatus.DRAFT.value,
    )
    policy: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=ApprovalPolicy.PARALLEL_TECH_BUDGET_OVERALL.value,
    )

    members: Mapped[list["RfqMember"]] = relationship(
        back_populates="rfq", cascade="all, delete-orphan",
    )
    features: Mapped[list["Feature"]] = relationship(
        back_populates="rfq", cascade="all, delete-orphan",
    )

    @property
    def status_enum(self) -> RfqStatus:
        return RfqStatus(self.status)

    def __repr__(self) -> str:
        return f"<Rfq {self.name} status={self.status}>"


class RfqMember(Base):
    """A user attached to a proposal, optionally as technical reviewer."""

    __tablename__ = "rfq_members"

    __table_args__ = (
        UniqueConstraint("rfq_id", "user_id", name="uq_rfq_members_user"),
    )

    rfq_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    is_tech_reviewer: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    rfq: Mapped[Rfq] = relationship(back_populates="members")


class Feature(TrackedBase):
    """Work package under a proposal."""

    __tablename__ = "features"

    rfq_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    rfq: Mapped[Rfq] = relationship(back_populates="features")
    profile_plans: Mapped[list["ProfilePlan"]] = relationship(
        back_populates="feature", cascade="all, delete-orphan",
    )


class ProfilePlan(TrackedBase):
    """One staffing line.

    ``location`` is also the cost center cost rates are keyed by.
    """

    __tablename__ = "profile_plans"

    __table_args__ = (
        Index("ix_profile_plans_rfq", "rfq_id"),
    )

    rfq_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False,
    )
    feature_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("features.id", ondelete="CASCADE"), nullable=False,
    )
    profile_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    location: Mapped[str] = mapped_column(String(50), nullable=False)

    feature: Mapped[Feature] = relationship(back_populates="profile_plans")
    allocations: Mapped[list["MonthlyAllocation"]] = relationship(
        back_populates="profile_plan",
        cascade="all, delete-orphan",
        order_by=lambda: (MonthlyAllocation.year, MonthlyAllocation.month),
    )

    @property
    def cost_center(self) -> str:
        return self.location


class MonthlyAllocation(Base):
    """Fractional FTE of one staffing line in one month."""

    __tablename__ = "monthly_allocations"

    __table_args__ = (
        UniqueConstraint(
            "profile_plan_id", "year", "month",
            name="uq_monthly_allocations_month",
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_allocations_month"),
        CheckConstraint("fte >= 0 AND fte <= 1", name="ck_monthly_allocations_fte"),
    )

    profile_plan_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("profile_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    fte: Mapped[Decimal] = mapped_column(nullable=False)

    profile_plan: Mapped[ProfilePlan] = relationship(back_populates="allocations")

    def __repr__(self) -> str:
        return f"<MonthlyAllocation {self.year}-{self.month:02d} fte={self.fte}>"
