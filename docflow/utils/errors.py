"""Standardised API error responses.

Usage
-----
    from docflow.utils.errors import api_error, register_error_handlers, E

    return api_error(E.NOT_FOUND, "Submission not found")
    return api_error(E.VALIDATION_REQUIRED, "kind is required")

    register_error_handlers(document_bp)   # maps docflow.core.exceptions → HTTP
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from docflow.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    SchemaIncompatibleError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (ERR_ prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / illegal transition – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Domain guard – HTTP 412
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"

    # Server – HTTP 500
    SCHEMA_INCOMPATIBLE = "ERR_SCHEMA_INCOMPATIBLE"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.PRECONDITION_FAILED: 412,
    E.SCHEMA_INCOMPATIBLE: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the domain-exception → HTTP mapping to a blueprint.

    5xx responses carry a generic message only; the driver error is logged
    with its traceback.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        details = {"action": error.action}
        if error.current_status is not None:
            details["current_status"] = error.current_status
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(PreconditionFailedError)
    def _handle_precondition(error: PreconditionFailedError):
        details = {"guard": error.guard} if error.guard else None
        return api_error(E.PRECONDITION_FAILED, str(error), details=details)

    @bp.errorhandler(SchemaIncompatibleError)
    def _handle_schema(error: SchemaIncompatibleError):
        logger.error("Schema incompatible at %s: %s", request.path, error, exc_info=error,
                     extra={"method": request.method, "path": request.path})
        return api_error(E.SCHEMA_INCOMPATIBLE, "The database schema does not support this operation")

    @bp.errorhandler(StoreError)
    def _handle_store(error: StoreError):
        logger.error("Database error at %s: %s", request.path, error, exc_info=error,
                     extra={"method": request.method, "path": request.path})
        return api_error(E.DATABASE, "Database error")

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return jsonify({"error": error.description, "code": error.name}), error.code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error endpoint=%s", request.endpoint,
                         extra={"method": request.method, "path": request.path})
        return api_error(E.INTERNAL, "Internal server error")
