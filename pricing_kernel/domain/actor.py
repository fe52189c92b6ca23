"""
Actor identity passed into every kernel operation.

Authentication happens outside the kernel.  Services receive an already
authenticated ``Actor`` and only make authorization decisions on its role.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """User roles known to the pricing workflow."""

    ADMIN = "ADMIN"
    DELIVERY_MANAGER = "DELIVERY_MANAGER"
    GENERAL_MANAGER = "GENERAL_MANAGER"
    ENGINEERING_MANAGER = "ENGINEERING_MANAGER"
    PROJECT_LEADER = "PROJECT_LEADER"
    TEAM_LEADER = "TEAM_LEADER"
    TECHNICAL_LEADER = "TECHNICAL_LEADER"
    TECHNICAL_REVIEWER = "TECHNICAL_REVIEWER"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    id: UUID
    role: Role

    def has_role(self, roles: frozenset[Role]) -> bool:
        return self.role in roles
