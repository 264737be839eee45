"""
User Service — user creation, status/role management, impersonation.

Status changes, role changes and impersonation all reassign who is acting
for a set of documents, so each one schedules override tagging for the
affected user after its own transaction commits.
"""

import logging

import sqlalchemy as sa
from email_validator import EmailNotValidError, validate_email

from docflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from docflow.models import db
from docflow.models.audit import write_audit
from docflow.models.org import ADMIN_ROLES, USER_ROLES, Department, Division, User
from docflow.services.helpers.transaction import transaction
from docflow.services.override_tagger import schedule_override_tagging
from docflow.services.schema_adapter import get_schema_adapter
from docflow.utils.crypto import hash_password

logger = logging.getLogger(__name__)


def _audit_enabled() -> bool:
    # Resolved before the transaction opens; the adapter may run DDL
    return get_schema_adapter().capabilities().audit_log


def _audit_user(session, enabled: bool, user_id: int, action: str,
                admin_id: int | None, diff: dict) -> None:
    if not enabled:
        return
    write_audit(
        session,
        entity_type="user",
        entity_id=user_id,
        action=action,
        actor=f"user:{admin_id}" if admin_id is not None else "system",
        actor_user_id=admin_id,
        diff=diff,
    )


def _get_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(
    *,
    full_name: str,
    username: str,
    password: str,
    role: str = "Employee",
    email: str | None = None,
    id_number: str | None = None,
    gender: str | None = None,
    department: str | None = None,
    division: str | None = None,
) -> User:
    """Create a user; department/division are resolved by name."""
    missing = {
        field: "required"
        for field, value in (("full_name", full_name), ("username", username), ("password", password))
        if not value or not str(value).strip()
    }
    if missing:
        raise ValidationError("Missing required user fields", details=missing)
    if role not in USER_ROLES:
        raise ValidationError(f"Unknown role: {role}", details={"role": role})

    if email:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email: {e}", details={"email": email}) from e

    with transaction(db.session) as session:
        if session.execute(sa.select(User.id).where(User.username == username)).first():
            raise ConflictError("User", "username", username)

        dept = div = None
        if department:
            dept = session.execute(
                sa.select(Department).where(Department.name == department)
            ).scalar_one_or_none()
            if dept is None:
                raise ValidationError(f"Department not found: {department}",
                                      details={"department": department})
        if division:
            if dept is None:
                raise ValidationError("division requires a department",
                                      details={"division": division})
            div = session.execute(
                sa.select(Division).where(Division.department_id == dept.id, Division.name == division)
            ).scalar_one_or_none()
            if div is None:
                raise ValidationError(f"Division not found in {department}: {division}",
                                      details={"division": division})

        user = User(
            full_name=full_name.strip(),
            username=username.strip(),
            password_hash=hash_password(password),
            role=role,
            email=email,
            id_number=id_number,
            gender=gender,
            department_id=dept.id if dept else None,
            division_id=div.id if div else None,
        )
        session.add(user)

    logger.info("User %s created (%s)", user.id, role,
                extra={"event_type": "user.create", "user_id": user.id})
    return user


def get_user(user_id: int) -> User:
    return _get_user(db.session, user_id)


# ═══════════════════════════════════════════════════════════════
# Administrative changes (trigger override tagging)
# ═══════════════════════════════════════════════════════════════
def set_user_status(user_id: int, *, active: bool, admin_id: int | None = None) -> User:
    """Activate or deactivate a user."""
    new_status = "active" if active else "inactive"
    audit = _audit_enabled()
    with transaction(db.session) as session:
        user = _get_user(session, user_id)
        old_status = user.status
        user.status = new_status
        _audit_user(session, audit, user_id, "user.status", admin_id,
                    {"status": {"old": old_status, "new": new_status}})

    logger.info("User %s status %s -> %s", user_id, old_status, new_status,
                extra={"event_type": "user.status", "user_id": user_id, "actor_user_id": admin_id})
    schedule_override_tagging(user.id, user.full_name)
    return user


def set_user_role(user_id: int, *, role: str, admin_id: int | None = None) -> User:
    if role not in USER_ROLES:
        raise ValidationError(f"Unknown role: {role}", details={"role": role})

    audit = _audit_enabled()
    with transaction(db.session) as session:
        user = _get_user(session, user_id)
        old_role = user.role
        user.role = role
        _audit_user(session, audit, user_id, "user.role", admin_id,
                    {"role": {"old": old_role, "new": role}})

    logger.info("User %s role %s -> %s", user_id, old_role, role,
                extra={"event_type": "user.role", "user_id": user_id, "actor_user_id": admin_id})
    schedule_override_tagging(user.id, user.full_name)
    return user


def impersonate_user(admin_id: int, user_id: int) -> dict:
    """Let an active SuperAdmin/Admin act as another user.

    Session switching is done by the authentication layer; this records the
    impersonation and tags the target's rows.

    Returns:
        The target user's projection.
    """
    audit = _audit_enabled()
    with transaction(db.session) as session:
        admin = _get_user(session, admin_id)
        if admin.role not in ADMIN_ROLES or not admin.is_active:
            raise PreconditionFailedError(
                f"User {admin_id} is not an active administrator",
                guard="active_admin",
            )
        target = _get_user(session, user_id)
        _audit_user(session, audit, user_id, "user.impersonate", admin_id,
                    {"admin": admin.full_name, "target": target.full_name})
        result = target.to_dict()

    logger.info("Admin %s impersonating user %s", admin_id, user_id,
                extra={"event_type": "user.impersonate", "user_id": user_id,
                       "actor_user_id": admin_id})
    schedule_override_tagging(result["id"], result["full_name"])
    return result
