"""
Module: ipr_kernel.db.boundary
Responsibility: Translate SQLAlchemy failures into kernel exceptions at the
    point where a service or selector touches the database.
Architecture position: Kernel > DB.  Used by services/ and selectors/.

Invariants enforced:
    - StaleDataError (a version_id_col mismatch) becomes
      ConcurrentModificationError.
    - OperationalError / InterfaceError (connectivity, locked database)
      become PersistenceUnavailableError, which callers may retry.
    - Every other exception passes through untouched.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ipr_kernel.exceptions import ConcurrentModificationError, PersistenceUnavailableError
from ipr_kernel.logging_config import get_logger

logger = get_logger("db.boundary")


@contextmanager
def persistence_boundary(operation: str, application_id: UUID | str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block."""
    try:
        yield
    except StaleDataError as exc:
        logger.warning(
            "concurrent_modification_detected",
            extra={"operation": operation, "application_id": str(application_id)},
        )
        raise ConcurrentModificationError(str(application_id)) from exc
    except (OperationalError, InterfaceError) as exc:
        logger.error(
            "persistence_unavailable",
            extra={"operation": operation, "error": str(exc.orig or exc)},
        )
        raise PersistenceUnavailableError(operation, str(exc.orig or exc)) from exc
