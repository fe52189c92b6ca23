"""
Calculation domain types (``pricing_kernel.domain.calculation``).

Responsibility
--------------
Inputs shared by the pricing engines and the services that feed them:
the explicit ``CalculationContext``, allocation lines, scenario
parameters, resolved rate records and the ``RateLookup`` protocol the
engines call to resolve rates.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Money, hours, FTE and rates are ``Decimal``.  Never float.
* Decimal precision and rounding travel with the ``CalculationContext``
  instead of the process-wide decimal context.
* Rate effective intervals are inclusive.  An open ``effective_to`` is
  unbounded.
"""

from __future__ import annotations

import decimal
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


class ScenarioType(str, Enum):
    TM = "TM"
    FIXED = "FIXED"


class AdditionalCostType(str, Enum):
    ABSOLUTE = "ABSOLUTE"
    PERCENTAGE = "PERCENTAGE"


class RateKind(str, Enum):
    COST = "COST"
    SELL = "SELL"


@dataclass(frozen=True)
class CalculationContext:
    """Numeric settings for one calculation run.

    Built from configuration by the caller and passed explicitly to every
    engine entry point.
    """

    precision: int = 28
    rounding: str = ROUND_HALF_UP
    hours_per_month: Decimal = Decimal("160")
    default_sp_to_hours: Decimal = Decimal("6.5")
    default_risk_factor: Decimal = Decimal("1")
    presentation_places: int = 2
    currency: str = "EUR"

    def __post_init__(self) -> None:
        if self.precision < 10:
            raise ValueError(f"precision must be at least 10, got {self.precision}")
        if self.hours_per_month <= 0:
            raise ValueError("hours_per_month must be positive")
        if self.default_sp_to_hours <= 0:
            raise ValueError("default_sp_to_hours must be positive")
        if self.default_risk_factor <= 0:
            raise ValueError("default_risk_factor must be positive")

    def decimal_context(self) -> decimal.Context:
        return decimal.Context(prec=self.precision, rounding=self.rounding)

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.presentation_places)

    def present(self, value: Decimal) -> str:
        """Render a value at presentation precision (half-up)."""
        return str(value.quantize(self.quantum, rounding=ROUND_HALF_UP))


# =========================================================================
# Allocation input
# =========================================================================


@dataclass(frozen=True)
class AllocationLine:
    """One month of one staffing line, denormalized for aggregation."""

    cost_center: str
    level: str
    location: str
    year: int
    month: int
    fte: Decimal

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in 1..12, got {self.month}")
        if self.fte < 0:
            raise ValueError(f"fte cannot be negative, got {self.fte}")


# =========================================================================
# Scenario input
# =========================================================================


@dataclass(frozen=True)
class AdditionalCostSpec:
    cost_type: AdditionalCostType
    value: Decimal
    description: str | None = None

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"additional cost value cannot be negative, got {self.value}")


@dataclass(frozen=True)
class FixedPriceParams:
    """Story-point sizing for a Fixed-Price scenario.

    Quotas are percentages of the ticket volume falling into each size.
    ``None`` for the multiplier or risk factor means "use the context
    default".
    """

    sp_small: Decimal = Decimal("0")
    sp_medium: Decimal = Decimal("0")
    sp_large: Decimal = Decimal("0")
    quota_small: Decimal = Decimal("0")
    quota_medium: Decimal = Decimal("0")
    quota_large: Decimal = Decimal("0")
    sp_to_hours: Decimal | None = None
    risk_factor: Decimal | None = None
    hw_overhead: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        for name in ("sp_small", "sp_medium", "sp_large"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        for name in ("quota_small", "quota_medium", "quota_large"):
            if not Decimal("0") <= getattr(self, name) <= Decimal("100"):
                raise ValueError(f"{name} must be between 0 and 100")
        if self.sp_to_hours is not None and self.sp_to_hours <= 0:
            raise ValueError("sp_to_hours must be positive")
        if self.risk_factor is not None and self.risk_factor <= 0:
            raise ValueError("risk_factor must be positive")
        if self.hw_overhead < 0:
            raise ValueError("hw_overhead cannot be negative")


@dataclass(frozen=True)
class ScenarioParams:
    scenario_type: ScenarioType
    use_case: str
    additional_costs: tuple[AdditionalCostSpec, ...] = ()
    fixed: FixedPriceParams | None = None

    def __post_init__(self) -> None:
        if self.scenario_type == ScenarioType.FIXED and self.fixed is None:
            raise ValueError("FIXED scenario requires fixed-price parameters")


# =========================================================================
# Rates
# =========================================================================


def interval_contains(effective_from: date, effective_to: date | None, at: date) -> bool:
    return effective_from <= at and (effective_to is None or at <= effective_to)


def intervals_overlap(
    a_from: date, a_to: date | None, b_from: date, b_to: date | None
) -> bool:
    """Inclusive overlap test; ``None`` upper bound is unbounded."""
    a_starts_before_b_ends = b_to is None or a_from <= b_to
    b_starts_before_a_ends = a_to is None or b_from <= a_to
    return a_starts_before_b_ends and b_starts_before_a_ends


@dataclass(frozen=True)
class CostRateInfo:
    id: UUID
    cost_center: str
    effective_from: date
    effective_to: date | None
    cost_per_hour: Decimal
    notes: str | None = None

    def covers(self, at: date) -> bool:
        return interval_contains(self.effective_from, self.effective_to, at)


@dataclass(frozen=True)
class SellRateInfo:
    id: UUID
    location: str
    level: str
    use_case: str
    effective_from: date
    effective_to: date | None
    sell_per_hour: Decimal
    notes: str | None = None

    def covers(self, at: date) -> bool:
        return interval_contains(self.effective_from, self.effective_to, at)


class RateLookup(Protocol):
    """Point-in-time rate resolution used by the scenario engines."""

    def resolve_cost_rate(self, cost_center: str, at: date) -> CostRateInfo | None:
        ...

    def resolve_sell_rate(
        self, location: str, level: str, use_case: str, at: date
    ) -> SellRateInfo | None:
        ...


@dataclass
class InMemoryRateLookup:
    """RateLookup over preloaded rate records.

    Used for what-if calculations and by tests of the pure engines.
    """

    cost_rates: list[CostRateInfo] = field(default_factory=list)
    sell_rates: list[SellRateInfo] = field(default_factory=list)

    def resolve_cost_rate(self, cost_center: str, at: date) -> CostRateInfo | None:
        for rate in self.cost_rates:
            if rate.cost_center == cost_center and rate.covers(at):
                return rate
        return None

    def resolve_sell_rate(
        self, location: str, level: str, use_case: str, at: date
    ) -> SellRateInfo | None:
        for rate in self.sell_rates:
            if (
                rate.location == location
                and rate.level == level
                and rate.use_case == use_case
                and rate.covers(at)
            ):
                return rate
        return None
