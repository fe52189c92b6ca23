"""
pricing_kernel.services.proposal_service -- Proposal (RFQ) structure.

Responsibility:
    Create proposals and the structure allocations hang off: members
    (including the technical reviewers approval routing reads), features
    and staffing lines (profile plans).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - EntityNotFoundError for an unknown proposal or feature.
    - InvalidAllocationError for a staffing line without role, level or
      location.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricing_kernel.domain.actor import Actor
from pricing_kernel.domain.approval import ApprovalPolicy, RfqStatus
from pricing_kernel.domain.clock import Clock
from pricing_kernel.domain.policy import ApprovalRules
from pricing_kernel.exceptions import InvalidAllocationError, ValidationError
from pricing_kernel.logging_config import get_logger
from pricing_kernel.models.rfq import Feature, ProfilePlan, Rfq, RfqMember
from pricing_kernel.services.base import BaseService

logger = get_logger("services.proposal")


class ProposalService(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        rules: ApprovalRules | None = None,
    ):
        super().__init__(session, clock)
        self.rules = rules or ApprovalRules()

    def create_rfq(
        self,
        name: str,
        actor: Actor,
        customer: str | None = None,
        policy: ApprovalPolicy | None = None,
    ) -> Rfq:
        """New DRAFT proposal routed by ``policy``, or the configured one."""
        policy = policy or self.rules.policy
        if not name or not name.strip():
            raise ValidationError("name", "cannot be empty")
        rfq = Rfq(
            name=name,
            customer=customer,
            status=RfqStatus.DRAFT.value,
            policy=policy.value,
            created_by_id=actor.id,
        )
        self.session.add(rfq)
        self.session.flush()
        logger.info("rfq_created", extra={"rfq_id": str(rfq.id), "policy": policy.value})
        return rfq

    def set_status(self, rfq_id: UUID, status: RfqStatus, actor: Actor) -> Rfq:
        rfq = self._get(Rfq, rfq_id)
        previous = rfq.status
        rfq.status = status.value
        rfq.touch(actor.id)
        self.session.flush()
        logger.info(
            "rfq_status_changed",
            extra={"rfq_id": str(rfq_id), "from_status": previous, "to_status": status.value},
        )
        return rfq

    def add_member(
        self,
        rfq_id: UUID,
        user_id: UUID,
        actor: Actor,
        is_tech_reviewer: bool = False,
    ) -> RfqMember:
        """Attach a user, or update the reviewer flag of an existing member."""
        self._get(Rfq, rfq_id)
        member = self.session.execute(
            select(RfqMember).where(
                RfqMember.rfq_id == rfq_id, RfqMember.user_id == user_id,
            )
        ).scalar_one_or_none()
        if member is None:
            member = RfqMember(rfq_id=rfq_id, user_id=user_id)
            self.session.add(member)
        member.is_tech_reviewer = is_tech_reviewer
        self.session.flush()
        logger.info(
            "rfq_member_added",
            extra={
                "rfq_id": str(rfq_id),
                "user_id": str(user_id),
                "is_tech_reviewer": is_tech_reviewer,
                "actor_id": str(actor.id),
            },
        )
        return member

    def tech_reviewer_ids(self, rfq_id: UUID) -> list[UUID]:
        return list(
            self.session.execute(
                select(RfqMember.user_id)
                .where(RfqMember.rfq_id == rfq_id, RfqMember.is_tech_reviewer.is_(True))
                .order_by(RfqMember.user_id)
            ).scalars()
        )

    def add_feature(
        self,
        rfq_id: UUID,
        name: str,
        actor: Actor,
        description: str | None = None,
    ) -> Feature:
        self._get(Rfq, rfq_id)
        feature = Feature(
            rfq_id=rfq_id,
            name=name,
            description=description,
            created_by_id=actor.id,
        )
        self.session.add(feature)
        self.session.flush()
        logger.info("feature_created", extra={"rfq_id": str(rfq_id), "feature_id": str(feature.id)})
        return feature

    def add_profile_plan(
        self,
        feature_id: UUID,
        role: str,
        level: str,
        location: str,
        actor: Actor,
        profile_id: UUID | None = None,
    ) -> ProfilePlan:
        feature = self._get(Feature, feature_id)
        for field, value in (("role", role), ("level", level), ("location", location)):
            if not value or not value.strip():
                raise InvalidAllocationError(field, "cannot be empty")
        plan = ProfilePlan(
            rfq_id=feature.rfq_id,
            feature_id=feature.id,
            profile_id=profile_id,
            role=role,
            level=level,
            location=location,
            created_by_id=actor.id,
        )
        self.session.add(plan)
        self.session.flush()
        logger.info(
            "profile_plan_created",
            extra={
                "rfq_id": str(feature.rfq_id),
                "profile_plan_id": str(plan.id),
                "level": level,
                "location": location,
            },
        )
        return plan
