"""
Lookup and transaction helpers shared by the service layer.

Every get-by-id in the services goes through ``get_or_raise`` so a missing
record always surfaces as NotFoundError → HTTP 404, and every multi-row
write goes through ``atomic`` so the session is committed once or rolled
back as a whole.

Usage:
    solution = get_or_raise(Solution, solution_id)
    solution = get_or_raise(Solution, solution_id, for_update=True)

    with atomic("approval.process", "Approval", approval_id):
        ...  # all writes for the operation
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError, NotFoundError, PersistenceError
from app.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, *, label: str | None = None, for_update: bool = False):
    """Fetch a single entity by PK or raise NotFoundError.

    Args:
        model: SQLAlchemy model class with an ``id`` PK.
        pk: Primary key value to look up.
        label: Resource name for the error message. Defaults to the class name.
        for_update: Lock the row (``SELECT ... FOR UPDATE``) for the rest of
            the transaction. SQLite ignores the clause.
    """
    label = label or model.__name__
    if pk is None:
        raise NotFoundError(resource=label, resource_id=pk)
    try:
        pk = int(pk)
    except (TypeError, ValueError):
        raise NotFoundError(resource=label, resource_id=pk)
    obj = db.session.get(model, pk, with_for_update=for_update)
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


@contextmanager
def atomic(operation: str, entity: str, entity_id=None):
    """Run the enclosed writes as one transaction.

    Commits on success. On any exception the session is rolled back;
    datastore failures are re-raised as PersistenceError (stale version
    counters as ConflictError), service exceptions propagate unchanged.
    """
    try:
        yield
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent modification operation=%s entity=%s id=%s",
            operation, entity, entity_id,
        )
        raise ConflictError(
            entity, "version", str(entity_id),
            message=f"{entity} id={entity_id} was modified concurrently; retry the request",
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception(
            "Persistence failure operation=%s entity=%s id=%s",
            operation, entity, entity_id,
        )
        raise PersistenceError(operation, entity, entity_id) from exc
    except Exception:
        db.session.rollback()
        raise
