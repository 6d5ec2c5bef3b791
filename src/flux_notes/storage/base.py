"""Base class shared by the repositories."""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from flux_notes.exceptions import ConstraintViolationError, ErrorCode, StorageError

logger = logging.getLogger(__name__)


class Repository:
    """Holds the session factory of the shared engine.

    Args:
        session_factory: SQLAlchemy session factory for database operations.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """Run a block of writes as one atomic transaction.

        Commits when the block exits normally and rolls back on any error,
        so callers observe either the prior state or the full update.
        Integrity failures are re-raised as ConstraintViolationError and
        other SQLite failures (locked database, disk I/O) as StorageError.
        """
        with self.session_factory() as session:
            try:
                yield session
                session.commit()
            except IntegrityError as e:
                session.rollback()
                logger.warning(f"Constraint violation during {operation}: {e.orig}")
                raise ConstraintViolationError(
                    f"Constraint violation during {operation}",
                    operation=operation,
                    original_error=e,
                ) from e
            except OperationalError as e:
                session.rollback()
                logger.error(f"Database error during {operation}: {e.orig}")
                raise StorageError(
                    f"Database error during {operation}",
                    operation=operation,
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            except Exception:
                session.rollback()
                raise
