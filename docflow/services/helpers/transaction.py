"""
Transaction scope for multi-table lifecycle transitions.

Usage:
    from docflow.services.helpers.transaction import transaction

    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        ...

Commits on success.  Rolls back on *any* exception, including
``KeyboardInterrupt`` and other ``BaseException`` subclasses, so a transition
is never left half-applied.  Driver errors are re-raised as the typed errors
of ``docflow.core.exceptions`` (original chained).
"""

from contextlib import contextmanager

from sqlalchemy.exc import DBAPIError

from docflow.core.db_errors import classify_db_error


@contextmanager
def transaction(session):
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        raise classify_db_error(exc) from exc
    except BaseException:
        session.rollback()
        raise
