"""
Workflow rules handed to kernel services.

Built by ``pricing_config`` from YAML, or constructed directly in tests.
The kernel never reads configuration files itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pricing_kernel.domain.actor import Role
from pricing_kernel.domain.approval import ApprovalPolicy

_DEFAULT_MANAGEMENT = frozenset({
    Role.DELIVERY_MANAGER,
    Role.GENERAL_MANAGER,
    Role.ENGINEERING_MANAGER,
})


@dataclass(frozen=True)
class AllocationRules:
    fte_step: Decimal = Decimal("0.1")
    max_fte: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        if self.fte_step <= 0:
            raise ValueError("fte_step must be positive")
        if self.max_fte <= 0:
            raise ValueError("max_fte must be positive")
        if self.max_fte % self.fte_step != 0:
            raise ValueError("max_fte must be a multiple of fte_step")


@dataclass(frozen=True)
class ApprovalRules:
    policy: ApprovalPolicy = ApprovalPolicy.PARALLEL_TECH_BUDGET_OVERALL
    management_roles: frozenset[Role] = _DEFAULT_MANAGEMENT
    # Roles allowed to hand a task to a named user.
    assigner_roles: frozenset[Role] = _DEFAULT_MANAGEMENT | {Role.ADMIN}
    budget_pool_role: Role = Role.ENGINEERING_MANAGER
    overall_pool_role: Role = Role.ENGINEERING_MANAGER

    def __post_init__(self) -> None:
        if not self.management_roles:
            raise ValueError("management_roles cannot be empty")
        if self.budget_pool_role not in self.management_roles:
            raise ValueError(
                f"budget_pool_role {self.budget_pool_role.value} must be a management role"
            )
        if self.overall_pool_role not in self.management_roles:
            raise ValueError(
                f"overall_pool_role {self.overall_pool_role.value} must be a management role"
            )
