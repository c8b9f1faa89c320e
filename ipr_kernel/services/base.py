"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor, the locked aggregate load, and translation of
    SQLAlchemy failures into kernel exceptions.  Concrete services use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.
    - The application row is the unit of mutual exclusion: every
      mutating operation loads it ``FOR UPDATE`` before reading state.
    - Every statement runs inside ``persistence_boundary``, so an outage
      surfaces as PersistenceUnavailableError whichever statement hits it.
"""

from __future__ import annotations

from abc import ABC
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ipr_kernel.db.boundary import persistence_boundary
from ipr_kernel.domain.clock import Clock, SystemClock
from ipr_kernel.exceptions import ApplicationNotFoundError, ConcurrentModificationError
from ipr_kernel.models.application import ApplicationModel

__all__ = ["BaseService", "persistence_boundary"]


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Read-only queries belong in ``ipr_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _load_application(
        self,
        application_id: UUID,
        *,
        for_update: bool = True,
        expected_version: int | None = None,
    ) -> ApplicationModel:
        """Load the aggregate, locking its row when ``for_update``.

        Raises:
            ApplicationNotFoundError: No such application.
            ConcurrentModificationError: ``expected_version`` does not match
                the stored version.
        """
        stmt = select(ApplicationModel).where(ApplicationModel.id == application_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        with persistence_boundary("load_application", application_id):
            model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ApplicationNotFoundError(str(application_id))
        if expected_version is not None and model.version != expected_version:
            raise ConcurrentModificationError(
                str(application_id),
                expected_version=expected_version,
                actual_version=model.version,
            )
        return model

    def _flush(self, operation: str, application_id: UUID | None = None) -> None:
        with persistence_boundary(operation, application_id):
            self.session.flush()
