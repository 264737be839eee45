"""
Document-flow exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``docflow.utils.errors.register_error_handlers``) and get consistent HTTP
status codes everywhere.  Nothing in the service layer formats user-facing
messages beyond ``str(exc)``.

Usage:
    from docflow.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="Submission", resource_id=42)
    raise InvalidTransitionError("forward", "Submission", 42, "no approval yet")

Storage errors are never raised from raw driver exceptions directly; they go
through ``docflow.core.db_errors.classify_db_error`` first.
"""


class NotFoundError(Exception):
    """Raised when a referenced submission/approval/record/release does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Submission", "Release").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates an input rule (missing field, bad enum).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique business key.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(Exception):
    """Raised when the preconditions of a lifecycle transition are not met.

    e.g. forwarding a submission that has no Approval yet, or recording a
    Record that was already released.
    """

    def __init__(
        self,
        action: str,
        resource: str,
        resource_id: int | str | None = None,
        reason: str | None = None,
        current_status: str | None = None,
    ) -> None:
        self.action = action
        self.resource = resource
        self.resource_id = resource_id
        self.reason = reason
        self.current_status = current_status
        msg = f"Cannot '{action}' {resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        if current_status is not None:
            msg += f" (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PreconditionFailedError(Exception):
    """Raised when a domain guard blocks an operation on an existing entity.

    The canonical case is responding to a Release whose mark is not ``done``.
    The guard is a business rule enforced in the engine, not a DB constraint.
    """

    def __init__(self, message: str, guard: str | None = None) -> None:
        self.guard = guard
        super().__init__(message)


class StoreError(Exception):
    """Any database-layer failure not otherwise handled (connectivity, integrity).

    Args:
        message: Driver-independent description; the driver exception is chained.
        sqlstate: SQLSTATE code when the driver exposes one.
    """

    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        self.sqlstate = sqlstate
        super().__init__(message)


class ConstraintViolationError(StoreError):
    """An integrity constraint rejected a write.

    ``kind`` is one of ``check``, ``unique``, ``foreign_key``, ``not_null``.
    """

    def __init__(
        self,
        message: str,
        kind: str,
        constraint: str | None = None,
        sqlstate: str | None = None,
    ) -> None:
        self.kind = kind
        self.constraint = constraint
        super().__init__(message, sqlstate=sqlstate)


class CheckViolationError(ConstraintViolationError):
    """A CHECK constraint rejected a value — the trigger for degraded retries."""

    def __init__(self, message: str, constraint: str | None = None, sqlstate: str | None = None) -> None:
        super().__init__(message, kind="check", constraint=constraint, sqlstate=sqlstate)


class SchemaIncompatibleError(StoreError):
    """A transition's degraded-retry path was exhausted and the store still rejects it."""
