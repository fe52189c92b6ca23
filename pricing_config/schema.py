"""
PricingConfig schema.

The runtime artifact ``get_active_config()`` returns.  Each section is a
kernel-side value object, so services take the section they need without
importing this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pricing_kernel.domain.calculation import CalculationContext
from pricing_kernel.domain.policy import AllocationRules, ApprovalRules


@dataclass(frozen=True)
class PricingConfig:
    """Validated configuration for one deployment."""

    calculation: CalculationContext = field(default_factory=CalculationContext)
    allocation: AllocationRules = field(default_factory=AllocationRules)
    approval: ApprovalRules = field(default_factory=ApprovalRules)
    checksum: str = ""
