"""
pricing_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure pricing engines
    (pricing_engines/) with database sessions and kernel services.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        pricing_services/ -> pricing_engines/  (allowed)
        pricing_services/ -> pricing_kernel/   (allowed)
        pricing_services/ -> pricing_config/   (allowed)
        pricing_engines/  -> pricing_services/ (FORBIDDEN)
        pricing_kernel/   -> pricing_services/ (FORBIDDEN)
"""

from pricing_services.calculation_service import CalculationService
from pricing_services.decision_package_service import DecisionPackageService
from pricing_services.workflow import PricingWorkflow

__all__ = [
    "CalculationService",
    "DecisionPackageService",
    "PricingWorkflow",
]
