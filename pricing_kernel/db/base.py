"""
Module: pricing_kernel.db.base
Responsibility: Declarative bases shared by every pricing table: uuid4
    primary keys, the Python-type to column-type map, and the audit
    columns of tracked rows.
Architecture position: Kernel > DB.  Imported by every model module; imports
    nothing from models/, services/, selectors/, domain/ or outer layers.

Invariants enforced:
    - Every row is keyed by a uuid4 stored as String(36), so SQLite and
      PostgreSQL share one schema.
    - Decimal columns are Numeric(38, 9).  Hourly rates, FTE fractions and
      scenario amounts are never stored as float.
    - Tracked rows record who created them and who changed them last;
      ``touch`` is the only way services stamp a change.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID bound as its 36-character string and loaded back as a UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value) if isinstance(value, PyUUID) else str(PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return PyUUID(value) if value is not None else None


class Base(DeclarativeBase):
    """Base of every pricing table."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Rows that users edit: RFQs, features, plans, rates, scenarios,
    packages and approval tasks."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)

    def touch(self, actor_id: PyUUID) -> None:
        """Stamp ``actor_id`` as the last editor of this row."""
        self.updated_by_id = actor_id
