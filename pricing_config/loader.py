"""
Configuration Loader (``pricing_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into a ``PricingConfig``.  Callers use
``pricing_config.get_active_config()``; this module is its internal
tooling.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages.
* Decimal settings are parsed from strings, never through float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown role or policy name -> ``ValueError``.
"""

from __future__ import annotations

import decimal
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from pricing_config.schema import PricingConfig
from pricing_kernel.domain.actor import Role
from pricing_kernel.domain.approval import ApprovalPolicy
from pricing_kernel.domain.calculation import CalculationContext
from pricing_kernel.domain.policy import AllocationRules, ApprovalRules

_ROUNDING_MODES = frozenset({
    decimal.ROUND_HALF_UP,
    decimal.ROUND_HALF_EVEN,
    decimal.ROUND_HALF_DOWN,
    decimal.ROUND_DOWN,
    decimal.ROUND_UP,
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a decimal from YAML.  Floats are rejected."""
    if isinstance(value, float):
        raise ValueError(f"{name}: quote decimal values in YAML, got float {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name}: not a decimal: {value!r}") from exc


def parse_role(value: Any, name: str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValueError(f"{name}: unknown role {value!r}") from exc


def parse_roles(values: Any, name: str) -> frozenset[Role]:
    if not isinstance(values, list):
        raise ValueError(f"{name}: expected a list of roles")
    return frozenset(parse_role(v, name) for v in values)


def parse_calculation(data: dict[str, Any]) -> CalculationContext:
    defaults = CalculationContext()
    rounding = data.get("rounding", defaults.rounding)
    if rounding not in _ROUNDING_MODES:
        raise ValueError(f"calculation.rounding: unsupported mode {rounding!r}")
    return CalculationContext(
        precision=int(data.get("precision", defaults.precision)),
        rounding=rounding,
        hours_per_month=parse_decimal(
            data.get("hours_per_month", defaults.hours_per_month),
            "calculation.hours_per_month",
        ),
        default_sp_to_hours=parse_decimal(
            data.get("default_sp_to_hours", defaults.default_sp_to_hours),
            "calculation.default_sp_to_hours",
        ),
        default_risk_factor=parse_decimal(
            data.get("default_risk_factor", defaults.default_risk_factor),
            "calculation.default_risk_factor",
        ),
        presentation_places=int(
            data.get("presentation_places", defaults.presentation_places)
        ),
        currency=str(data.get("currency", defaults.currency)),
    )


def parse_allocation(data: dict[str, Any]) -> AllocationRules:
    defaults = AllocationRules()
    return AllocationRules(
        fte_step=parse_decimal(data.get("fte_step", defaults.fte_step), "allocation.fte_step"),
        max_fte=parse_decimal(data.get("max_fte", defaults.max_fte), "allocation.max_fte"),
    )


def parse_approval(data: dict[str, Any]) -> ApprovalRules:
    defaults = ApprovalRules()
    policy_name = data.get("policy", defaults.policy.value)
    try:
        policy = ApprovalPolicy(policy_name)
    except ValueError as exc:
        raise ValueError(f"approval.policy: unknown policy {policy_name!r}") from exc

    management = (
        parse_roles(data["management_roles"], "approval.management_roles")
        if "management_roles" in data
        else defaults.management_roles
    )
    assigners = (
        parse_roles(data["assigner_roles"], "approval.assigner_roles")
        if "assigner_roles" in data
        else defaults.assigner_roles
    )
    return ApprovalRules(
        policy=policy,
        management_roles=management,
        assigner_roles=assigners,
        budget_pool_role=parse_role(
            data.get("budget_pool_role", defaults.budget_pool_role.value),
            "approval.budget_pool_role",
        ),
        overall_pool_role=parse_role(
            data.get("overall_pool_role", defaults.overall_pool_role.value),
            "approval.overall_pool_role",
        ),
    )


def parse_pricing_config(data: dict[str, Any]) -> PricingConfig:
    """Parse a raw YAML mapping.  Missing sections fall back to defaults."""
    unknown = set(data) - {"calculation", "allocation", "approval"}
    if unknown:
        raise KeyError(f"Unknown configuration sections: {sorted(unknown)}")
    return PricingConfig(
        calculation=parse_calculation(data.get("calculation") or {}),
        allocation=parse_allocation(data.get("allocation") or {}),
        approval=parse_approval(data.get("approval") or {}),
        checksum=compute_checksum(data),
    )


def load_pricing_config(path: Path) -> PricingConfig:
    return parse_pricing_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
