"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Services receive a SQLAlchemy ``Session``
    and use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or rollback themselves.  The caller
    (``session_scope()`` or the test harness) owns commit/rollback.
"""

from abc import ABC
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pricing_kernel.db.base import Base
from pricing_kernel.domain.clock import Clock, SystemClock
from pricing_kernel.exceptions import EntityNotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _get(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        entity = self.session.get(model, entity_id)
        if entity is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return entity

    def _get_for_update(self, model: type[ModelType], entity_id: UUID) -> ModelType:
        """Load with a row lock, refreshing any stale identity-map copy."""
        entity = self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return entity
