"""
pricing_config -- single public entrypoint for pricing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a ``PricingConfig`` whose sections
    are kernel value objects (``CalculationContext``, ``AllocationRules``,
    ``ApprovalRules``).

Architecture position:
    Configuration -- sits above ``pricing_kernel``.  The kernel MUST NEVER
    import from ``pricing_config``.

Failure modes:
    - ``FileNotFoundError`` -- the given configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PRICING_CONFIG_TRACE`` log entry with the source path and checksum,
    tying each calculation back to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pricing_config.loader import load_pricing_config
from pricing_config.schema import PricingConfig

_logger = logging.getLogger("pricing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | None = None) -> PricingConfig:
    """The ONLY public configuration entrypoint."""
    source = path or DEFAULT_CONFIG_PATH
    config = load_pricing_config(source)

    _logger.info(
        "PRICING_CONFIG_TRACE",
        extra={
            "trace_type": "PRICING_CONFIG_TRACE",
            "source": str(source),
            "checksum": config.checksum,
            "policy": config.approval.policy.value,
            "hours_per_month": str(config.calculation.hours_per_month),
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "PricingConfig", "get_active_config"]
