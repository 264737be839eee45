"""
Database error classification.

Maps a SQLAlchemy ``DBAPIError`` onto the taxonomy in
``docflow.core.exceptions`` before any business logic looks at it, so retry
decisions (e.g. the revision fallback) are made against a stable typed error
instead of a vendor error code.

PostgreSQL exposes SQLSTATE as ``orig.pgcode`` (psycopg2) or ``orig.sqlstate``
(psycopg 3); SQLite only has the message text.
"""

import re

from sqlalchemy.exc import DBAPIError

from docflow.core.exceptions import (
    CheckViolationError,
    ConstraintViolationError,
    StoreError,
)

# SQLSTATE class 23: integrity constraint violation
SQLSTATE_NOT_NULL = "23502"
SQLSTATE_FOREIGN_KEY = "23503"
SQLSTATE_UNIQUE = "23505"
SQLSTATE_CHECK = "23514"

_SQLSTATE_KIND = {
    SQLSTATE_NOT_NULL: "not_null",
    SQLSTATE_FOREIGN_KEY: "foreign_key",
    SQLSTATE_UNIQUE: "unique",
    SQLSTATE_CHECK: "check",
}

# SQLite: "CHECK constraint failed: ck_submissions_status"
_SQLITE_PATTERNS = (
    (re.compile(r"CHECK constraint failed(?::\s*(\S+))?", re.IGNORECASE), "check"),
    (re.compile(r"UNIQUE constraint failed(?::\s*(\S+))?", re.IGNORECASE), "unique"),
    (re.compile(r"FOREIGN KEY constraint failed()", re.IGNORECASE), "foreign_key"),
    (re.compile(r"NOT NULL constraint failed(?::\s*(\S+))?", re.IGNORECASE), "not_null"),
)


def _sqlstate(orig) -> str | None:
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return str(code) if code else None


def _pg_constraint_name(orig) -> str | None:
    diag = getattr(orig, "diag", None)
    return getattr(diag, "constraint_name", None) if diag is not None else None


def classify_db_error(exc: DBAPIError) -> StoreError:
    """Return the typed error for a driver exception (the caller chains it).

    Usage:
        except DBAPIError as exc:
            raise classify_db_error(exc) from exc
    """
    orig = getattr(exc, "orig", None) or exc
    message = str(orig).strip().splitlines()[0] if str(orig).strip() else type(orig).__name__
    code = _sqlstate(orig)

    if code in _SQLSTATE_KIND:
        kind = _SQLSTATE_KIND[code]
        constraint = _pg_constraint_name(orig)
        if kind == "check":
            return CheckViolationError(message, constraint=constraint, sqlstate=code)
        return ConstraintViolationError(message, kind=kind, constraint=constraint, sqlstate=code)

    for pattern, kind in _SQLITE_PATTERNS:
        match = pattern.search(message)
        if match:
            constraint = match.group(1) or None
            if kind == "check":
                return CheckViolationError(message, constraint=constraint)
            return ConstraintViolationError(message, kind=kind, constraint=constraint)

    return StoreError(message, sqlstate=code)
