"""
Tests for DecisionPackageService -- package lifecycle and snapshots.

Covers:
- create(): versioning, scenario validation, optional immediate submit
- submit(): snapshots locked with hashes, tasks opened, DRAFT only
- recall(): only while no task is decided, tasks discarded, links unlocked
- verify_snapshot(): intact, unlocked and tampered links
- Snapshot rows may only be locked or unlocked, never rewritten
"""

from uuid import uuid4

import pytest
from sqlalchemy import update

from pricing_kernel.domain.actor import Role
from pricing_kernel.domain.approval import PackageStatus, TaskStatus, TaskType
from pricing_kernel.domain.calculation import ScenarioType
from pricing_kernel.exceptions import (
    EntityNotFoundError,
    InvalidPackageError,
    InvalidPackageTransitionError,
    RecallNotAllowedError,
    SnapshotImmutableError,
    SnapshotTamperedError,
)
from pricing_kernel.models.decision_package import DecisionPackageScenario
from pricing_kernel.selectors.approval_selector import ApprovalSelector
from pricing_kernel.utils.hashing import hash_payload


@pytest.fixture
def packages(workflow):
    return workflow.packages


class TestCreate:

    def test_draft_with_ordered_links(self, packages, workflow, proposal):
        variant = workflow.scenarios.clone(proposal.scenario.id, "Variant", proposal.creator)

        package = packages.create(
            proposal.rfq.id, "Offer v1", [variant.id, proposal.scenario.id], proposal.creator,
        )

        assert package.status_enum == PackageStatus.DRAFT
        assert package.version == 1
        assert package.submitted_at is None
        assert [link.scenario_id for link in package.scenario_links] == [
            variant.id, proposal.scenario.id,
        ]
        assert not any(link.is_locked for link in package.scenario_links)

    def test_versions_increase(self, packages, proposal):
        first = packages.create(proposal.rfq.id, "A", [proposal.scenario.id], proposal.creator)
        second = packages.create(proposal.rfq.id, "B", [proposal.scenario.id], proposal.creator)

        assert (first.version, second.version) == (1, 2)
        assert [p.version for p in packages.list_for_rfq(proposal.rfq.id)] == [2, 1]

    @pytest.mark.parametrize("name", ["", "   "])
    def test_name_required(self, packages, proposal, name):
        with pytest.raises(InvalidPackageError) as exc_info:
            packages.create(proposal.rfq.id, name, [proposal.scenario.id], proposal.creator)
        assert exc_info.value.field == "name"

    def test_needs_a_scenario(self, packages, proposal):
        with pytest.raises(InvalidPackageError) as exc_info:
            packages.create(proposal.rfq.id, "Offer", [], proposal.creator)
        assert exc_info.value.field == "scenario_ids"

    def test_duplicate_scenarios(self, packages, proposal):
        with pytest.raises(InvalidPackageError):
            packages.create(
                proposal.rfq.id, "Offer",
                [proposal.scenario.id, proposal.scenario.id], proposal.creator,
            )

    def test_unknown_scenario(self, packages, proposal):
        with pytest.raises(EntityNotFoundError):
            packages.create(proposal.rfq.id, "Offer", [uuid4()], proposal.creator)

    def test_unknown_rfq(self, packages, proposal):
        with pytest.raises(EntityNotFoundError):
            packages.create(uuid4(), "Offer", [proposal.scenario.id], proposal.creator)

    def test_scenario_of_other_proposal(self, packages, workflow, proposal):
        other = workflow.proposals.create_rfq("Gateway", proposal.creator)
        foreign = workflow.scenarios.create(
            other.id, "Other", ScenarioType.TM, "UC2", proposal.creator,
        )

        with pytest.raises(InvalidPackageError) as exc_info:
            packages.create(proposal.rfq.id, "Offer", [foreign.id], proposal.creator)
        assert exc_info.value.field == "scenario_ids"

    def test_logged(self, packages, proposal, captured_logs):
        package = packages.create(proposal.rfq.id, "Offer", [proposal.scenario.id], proposal.creator)

        (record,) = [r for r in captured_logs() if r["message"] == "package_created"]
        assert record["package_id"] == str(package.id)
        assert record["version"] == 1


class TestSubmit:

    def test_links_locked_with_snapshot(self, submitted_package, proposal, deterministic_clock):
        assert submitted_package.status_enum == PackageStatus.SUBMITTED
        assert submitted_package.submitted_at is not None

        (link,) = submitted_package.scenario_links
        assert link.is_locked
        assert link.snapshot_data["scenario"]["name"] == "Baseline"
        assert link.snapshot_data["calculation"]["total"]["cost"] == "86400.00"
        assert link.snapshot_hash == hash_payload(link.snapshot_data)

    def test_opens_tasks(self, session, submitted_package):
        types = sorted(t.task_type.value for t in ApprovalSelector(session).tasks_for_package(
            submitted_package.id
        ))

        assert types == ["BUDGET", "TECH", "TECH"]

    def test_submit_separately(self, packages, proposal, captured_logs):
        package = packages.create(proposal.rfq.id, "Offer", [proposal.scenario.id], proposal.creator)

        packages.submit(package.id, proposal.creator)

        (record,) = [r for r in captured_logs() if r["message"] == "package_submitted"]
        assert record["package_id"] == str(package.id)
        assert record["rfq_id"] == str(proposal.rfq.id)
        assert record["locked_links"] == 1
        assert record["tasks"] == 3

    def test_submit_twice(self, packages, proposal, submitted_package):
        with pytest.raises(InvalidPackageTransitionError) as exc_info:
            packages.submit(submitted_package.id, proposal.creator)
        assert exc_info.value.current_status == "SUBMITTED"

    def test_snapshot_ignores_later_edits(self, packages, workflow, proposal, submitted_package):
        (link,) = submitted_package.scenario_links
        frozen = dict(link.snapshot_data)

        workflow.scenarios.update(proposal.scenario.id, {"notes": "edited"}, proposal.creator)

        assert link.snapshot_data == frozen
        assert packages.verify_snapshot(link.id) is True

    def test_unknown_package(self, packages, proposal):
        with pytest.raises(EntityNotFoundError):
            packages.submit(uuid4(), proposal.creator)


class TestRecall:

    def test_back_to_draft(self, session, packages, proposal, submitted_package):
        packages.recall(submitted_package.id, proposal.creator)

        assert submitted_package.status_enum == PackageStatus.DRAFT
        assert submitted_package.submitted_at is None
        assert not any(link.is_locked for link in submitted_package.scenario_links)
        assert ApprovalSelector(session).tasks_for_package(submitted_package.id) == []

    def test_blocked_after_a_decision(self, packages, workflow, proposal, submitted_package):
        reviewer = proposal.reviewers[0]
        (task,) = workflow.approvals.list_tasks_for(reviewer)
        workflow.approvals.decide(task.id, TaskStatus.APPROVED, reviewer)

        with pytest.raises(RecallNotAllowedError) as exc_info:
            packages.recall(submitted_package.id, proposal.creator)

        assert exc_info.value.decided_task_ids == [str(task.id)]
        assert submitted_package.status_enum == PackageStatus.SUBMITTED

    def test_draft_cannot_be_recalled(self, packages, proposal):
        package = packages.create(proposal.rfq.id, "Offer", [proposal.scenario.id], proposal.creator)

        with pytest.raises(InvalidPackageTransitionError):
            packages.recall(package.id, proposal.creator)

    def test_resubmit_after_recall(self, session, packages, proposal, submitted_package):
        packages.recall(submitted_package.id, proposal.creator)

        packages.submit(submitted_package.id, proposal.creator)

        tasks = ApprovalSelector(session).tasks_for_package(submitted_package.id)
        assert len(tasks) == 3
        assert all(link.is_locked for link in submitted_package.scenario_links)

    def test_rejected_package_cannot_be_recalled(self, packages, workflow, proposal, submitted_package):
        reviewer = proposal.reviewers[0]
        (task,) = workflow.approvals.list_tasks_for(reviewer)
        workflow.approvals.decide(task.id, TaskStatus.REJECTED, reviewer)

        with pytest.raises(InvalidPackageTransitionError):
            packages.recall(submitted_package.id, proposal.creator)

    def test_logged(self, packages, proposal, submitted_package, captured_logs):
        packages.recall(submitted_package.id, proposal.creator)

        (record,) = [r for r in captured_logs() if r["message"] == "package_recalled"]
        assert record["removed_tasks"] == 3


class TestApprovalStatus:

    def test_rollup(self, packages, submitted_package):
        status = packages.get_approval_status(submitted_package.id)

        assert status.package_id == submitted_package.id
        assert [t.task_type for t in status.tasks].count(TaskType.TECH) == 2

    def test_unknown_package(self, packages):
        with pytest.raises(EntityNotFoundError):
            packages.get_approval_status(uuid4())


class TestSnapshotIntegrity:

    def test_intact_snapshot_survives_reload(self, session, packages, submitted_package):
        (link,) = submitted_package.scenario_links
        session.expire_all()

        assert packages.verify_snapshot(link.id) is True

    def test_unlocked_link(self, packages, proposal):
        package = packages.create(proposal.rfq.id, "Offer", [proposal.scenario.id], proposal.creator)

        assert packages.verify_snapshot(package.scenario_links[0].id) is False

    def test_unknown_link(self, packages):
        with pytest.raises(EntityNotFoundError):
            packages.verify_snapshot(uuid4())

    def test_tampered_snapshot_detected(self, session, packages, submitted_package, captured_logs):
        (link,) = submitted_package.scenario_links
        forged = dict(link.snapshot_data, scenario={"name": "Forged"})
        # Raw UPDATE bypasses the ORM listener.
        session.execute(
            update(DecisionPackageScenario.__table__)
            .where(DecisionPackageScenario.__table__.c.id == link.id)
            .values(snapshot_data=forged)
        )
        session.expire(link)

        with pytest.raises(SnapshotTamperedError) as exc_info:
            packages.verify_snapshot(link.id)

        assert exc_info.value.stored_hash == link.snapshot_hash
        assert any(r["message"] == "snapshot_tampered" for r in captured_logs())

    def test_orm_rewrite_rejected(self, session, submitted_package):
        (link,) = submitted_package.scenario_links
        link.snapshot_data = dict(link.snapshot_data, scenario={"name": "Forged"})

        with pytest.raises(SnapshotImmutableError):
            session.flush()


class TestManagerFlow:

    def test_full_approval(self, session, workflow, proposal, submitted_package, make_actor):
        approvals = workflow.approvals
        for reviewer in proposal.reviewers:
            (task,) = approvals.list_tasks_for(reviewer)
            approvals.decide(task.id, TaskStatus.APPROVED, reviewer)
        manager = make_actor(Role.DELIVERY_MANAGER)
        (budget,) = approvals.list_available(manager)
        approvals.claim(budget.id, manager)
        approvals.decide(budget.id, TaskStatus.APPROVED, manager)
        (overall,) = approvals.list_available(manager)
        approvals.claim(overall.id, manager)
        approvals.decide(overall.id, TaskStatus.APPROVED, manager, comment="go")

        status = workflow.packages.get_approval_status(submitted_package.id)

        assert status.is_fully_approved
        assert proposal.rfq.status == "SUBMITTED"
        with pytest.raises(RecallNotAllowedError):
            workflow.packages.recall(submitted_package.id, proposal.creator)
