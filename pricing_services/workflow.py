"""
pricing_services.workflow -- Composition root for one unit of work.

Responsibility:
    Wires every kernel and orchestration service for a single session
    from one ``PricingConfig``, so callers never construct services with
    mismatched rules, clocks or notifiers.

Architecture position:
    Services -- the only place that reads ``PricingConfig`` sections and
    hands them to kernel services.

Usage:
    from pricing_kernel.db.engine import session_scope
    from pricing_services import PricingWorkflow

    with session_scope() as session:
        workflow = PricingWorkflow(session)
        package = workflow.packages.create(rfq_id, "Offer v1", [scenario_id], actor)
        workflow.packages.submit(package.id, actor)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from pricing_config import PricingConfig, get_active_config
from pricing_kernel.domain.clock import Clock, SystemClock
from pricing_kernel.services.allocation_service import AllocationService
from pricing_kernel.services.approval_service import ApprovalService
from pricing_kernel.services.notification import NotificationDispatcher, Notifier
from pricing_kernel.services.proposal_service import ProposalService
from pricing_kernel.services.rate_service import RateService
from pricing_kernel.services.scenario_service import ScenarioService
from pricing_services.calculation_service import CalculationService
from pricing_services.decision_package_service import DecisionPackageService


class PricingWorkflow:
    """All services bound to one session and one configuration."""

    def __init__(
        self,
        session: Session,
        config: PricingConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
    ):
        self.session = session
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()
        self.notifications = NotificationDispatcher(notifier)

        self.proposals = ProposalService(session, self.clock, self.config.approval)
        self.rates = RateService(session, self.clock)
        self.allocations = AllocationService(session, self.config.allocation, self.clock)
        self.scenarios = ScenarioService(session, self.clock)
        self.calculation = CalculationService(session, self.config.calculation)
        self.approvals = ApprovalService(
            session,
            rules=self.config.approval,
            clock=self.clock,
            notifications=self.notifications,
        )
        self.packages = DecisionPackageService(
            session,
            approvals=self.approvals,
            context=self.config.calculation,
            clock=self.clock,
        )
