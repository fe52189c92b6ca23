"""
pricing_services.decision_package_service -- Decision package lifecycle.

Responsibility:
    Bundles scenarios of a proposal into versioned decision packages,
    submits them (freezing a hashed snapshot of every scenario and its
    calculation, then opening approval tasks) and recalls them.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Composes
    ``CalculationService`` for snapshots and the kernel
    ``ApprovalService`` for task routing.

Invariants enforced:
    - Versions increase by one per proposal; the proposal row is locked
      while the next version is chosen and UNIQUE(rfq_id, version)
      backs it up.
    - A SUBMITTED package has every scenario link locked with a snapshot
      and its SHA-256 hash.
    - Submit and recall lock the package row ``FOR UPDATE`` and run
      entirely inside the caller's transaction.
    - Recall is only possible while every task is still PENDING.

Failure modes:
    - InvalidPackageError for an empty scenario list or scenarios of
      another proposal.
    - InvalidPackageTransitionError when the package is not in the
      required status.
    - RecallNotAllowedError once any task has been decided.
    - SnapshotTamperedError from ``verify_snapshot``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pricing_kernel.domain.actor import Actor
from pricing_kernel.domain.approval import (
    PackageApprovalStatus,
    PackageStatus,
    TaskStatus,
    can_transition_package,
)
from pricing_kernel.domain.calculation import CalculationContext
from pricing_kernel.domain.clock import Clock, SystemClock
from pricing_kernel.exceptions import (
    EntityNotFoundError,
    InvalidPackageError,
    InvalidPackageTransitionError,
    RecallNotAllowedError,
    SnapshotTamperedError,
)
from pricing_kernel.logging_config import LogContext, get_logger
from pricing_kernel.models.approval import ApprovalTask
from pricing_kernel.models.decision_package import DecisionPackage, DecisionPackageScenario
from pricing_kernel.models.rfq import Rfq
from pricing_kernel.models.scenario import Scenario
from pricing_kernel.selectors.approval_selector import ApprovalSelector
from pricing_kernel.services.approval_service import ApprovalService
from pricing_kernel.services.proposal_service import ProposalService
from pricing_kernel.utils.hashing import hash_payload
from pricing_services.calculation_service import CalculationService

logger = get_logger("services.decision_package")


def _locked(session: Session, model, entity_id: UUID):
    entity = session.execute(
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if entity is None:
        raise EntityNotFoundError(model.__name__, str(entity_id))
    return entity


class DecisionPackageService:
    """Create, submit and recall decision packages."""

    def __init__(
        self,
        session: Session,
        approvals: ApprovalService,
        context: CalculationContext | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self.approvals = approvals
        self.clock = clock or SystemClock()
        self.calculation = CalculationService(session, context)
        self._proposals = ProposalService(session, self.clock, approvals.rules)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        rfq_id: UUID,
        name: str,
        scenario_ids: Sequence[UUID],
        actor: Actor,
        submit: bool = False,
        due_date: date | None = None,
    ) -> DecisionPackage:
        if not name or not name.strip():
            raise InvalidPackageError("name", "cannot be empty")
        if not scenario_ids:
            raise InvalidPackageError("scenario_ids", "at least one scenario is required")
        if len(set(scenario_ids)) != len(scenario_ids):
            raise InvalidPackageError("scenario_ids", "contains duplicates")

        _locked(self.session, Rfq, rfq_id)

        found = {
            s.id: s
            for s in self.session.execute(
                select(Scenario).where(Scenario.id.in_(scenario_ids))
            ).scalars()
        }
        for scenario_id in scenario_ids:
            scenario = found.get(scenario_id)
            if scenario is None:
                raise EntityNotFoundError("Scenario", str(scenario_id))
            if scenario.rfq_id != rfq_id:
                raise InvalidPackageError(
                    "scenario_ids", f"scenario {scenario_id} belongs to another proposal",
                )

        last_version = self.session.execute(
            select(func.max(DecisionPackage.version)).where(DecisionPackage.rfq_id == rfq_id)
        ).scalar_one()
        package = DecisionPackage(
            rfq_id=rfq_id,
            name=name,
            version=(last_version or 0) + 1,
            status=PackageStatus.DRAFT.value,
            created_by_id=actor.id,
        )
        package.scenario_links = [
            DecisionPackageScenario(scenario_id=scenario_id, position=position)
            for position, scenario_id in enumerate(scenario_ids)
        ]
        self.session.add(package)
        self.session.flush()

        logger.info(
            "package_created",
            extra={
                "rfq_id": str(rfq_id),
                "package_id": str(package.id),
                "version": package.version,
                "scenarios": len(scenario_ids),
            },
        )

        if submit:
            return self.submit(package.id, actor, due_date)
        return package

    # ------------------------------------------------------------------
    # Submit / recall
    # ------------------------------------------------------------------

    def submit(
        self, package_id: UUID, actor: Actor, due_date: date | None = None,
    ) -> DecisionPackage:
        """Freeze every scenario and open the approval tasks, due on ``due_date``."""
        package = _locked(self.session, DecisionPackage, package_id)
        with LogContext.bind(package_id=str(package_id), rfq_id=str(package.rfq_id)):
            self._require(package, PackageStatus.DRAFT, PackageStatus.SUBMITTED)

            now = self.clock.now()
            for link in package.scenario_links:
                snapshot = self._snapshot(link.scenario_id)
                link.lock(snapshot, hash_payload(snapshot), now)

            package.status = PackageStatus.SUBMITTED.value
            package.submitted_at = now
            package.touch(actor.id)
            self.session.flush()

            reviewers = self._proposals.tech_reviewer_ids(package.rfq_id)
            tasks = self.approvals.open_submission_tasks(package, reviewers, actor, due_date)

            logger.info(
                "package_submitted",
                extra={
                    "version": package.version,
                    "locked_links": len(package.scenario_links),
                    "tasks": len(tasks),
                    "actor_id": str(actor.id),
                },
            )
        return package

    def recall(self, package_id: UUID, actor: Actor) -> DecisionPackage:
        """Return a submitted package to DRAFT while nothing is decided yet."""
        package = _locked(self.session, DecisionPackage, package_id)
        with LogContext.bind(package_id=str(package_id), rfq_id=str(package.rfq_id)):
            self._require(package, PackageStatus.SUBMITTED, PackageStatus.DRAFT)

            decided = self.session.execute(
                select(ApprovalTask.id).where(
                    ApprovalTask.package_id == package_id,
                    ApprovalTask.status != TaskStatus.PENDING.value,
                )
            ).scalars().all()
            if decided:
                raise RecallNotAllowedError(
                    package_id=str(package_id),
                    decided_task_ids=[str(task_id) for task_id in decided],
                )

            for link in package.scenario_links:
                link.unlock()
            package.status = PackageStatus.DRAFT.value
            package.submitted_at = None
            package.touch(actor.id)
            self.session.flush()
            removed = self.approvals.discard_pending_tasks(package_id)

            logger.info(
                "package_recalled",
                extra={"removed_tasks": removed, "actor_id": str(actor.id)},
            )
        return package

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, package_id: UUID) -> DecisionPackage:
        package = self.session.get(DecisionPackage, package_id)
        if package is None:
            raise EntityNotFoundError("DecisionPackage", str(package_id))
        return package

    def list_for_rfq(self, rfq_id: UUID) -> list[DecisionPackage]:
        return list(
            self.session.execute(
                select(DecisionPackage)
                .where(DecisionPackage.rfq_id == rfq_id)
                .order_by(DecisionPackage.version.desc())
            ).scalars()
        )

    def get_approval_status(self, package_id: UUID) -> PackageApprovalStatus:
        return ApprovalSelector(self.session).package_status(package_id)

    def verify_snapshot(self, link_id: UUID) -> bool:
        """Recompute the snapshot hash; raise if the stored data changed."""
        link = self.session.get(DecisionPackageScenario, link_id)
        if link is None:
            raise EntityNotFoundError("DecisionPackageScenario", str(link_id))
        if not link.is_locked:
            return False
        computed = hash_payload(link.snapshot_data)
        if computed != link.snapshot_hash:
            logger.error(
                "snapshot_tampered",
                extra={"link_id": str(link_id), "package_id": str(link.package_id)},
            )
            raise SnapshotTamperedError(
                link_id=str(link_id),
                stored_hash=link.snapshot_hash,
                computed_hash=computed,
            )
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snapshot(self, scenario_id: UUID) -> dict[str, Any]:
        scenario = self.session.get(Scenario, scenario_id)
        if scenario is None:
            raise EntityNotFoundError("Scenario", str(scenario_id))
        result = self.calculation.calculate(scenario_id)
        return {
            "scenario": scenario.to_snapshot(),
            "calculation": result.to_report(),
        }

    @staticmethod
    def _require(
        package: DecisionPackage, required: PackageStatus, target: PackageStatus
    ) -> None:
        if package.status_enum != required or not can_transition_package(
            package.status_enum, target
        ):
            raise InvalidPackageTransitionError(
                package_id=str(package.id),
                current_status=package.status,
                required_status=required.value,
            )
