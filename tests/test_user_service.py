"""
User service tests — creation rules, administrative changes, impersonation.
"""

import pytest
import sqlalchemy as sa

from docflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from docflow.models import db
from docflow.models.audit import AuditLog
from docflow.models.lifecycle import Approval, Submission
from docflow.services import transition_engine as engine
from docflow.services import user_service
from docflow.utils.crypto import verify_password


def _create(**overrides):
    fields = {
        "full_name": "Mara Santos",
        "username": "mara",
        "password": "s3cret-pass",
    }
    fields.update(overrides)
    return user_service.create_user(**fields)


# ═════════════════════════════════════════════════════════════════════════════
# create_user
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateUser:
    def test_password_is_hashed(self):
        user = _create()
        assert user.password_hash != "s3cret-pass"
        assert verify_password("s3cret-pass", user.password_hash)
        assert not verify_password("wrong", user.password_hash)

    def test_defaults(self):
        user = _create()
        assert user.role == "Employee"
        assert user.status == "active"
        assert user.to_dict()["active"] is True

    def test_email_is_normalized(self):
        user = _create(email="mara@EXAMPLE.com")
        assert user.email == "mara@example.com"

    def test_invalid_email(self):
        with pytest.raises(ValidationError) as exc:
            _create(email="not-an-email")
        assert "email" in exc.value.details

    def test_department_and_division_resolved(self, department):
        user = _create(department="Finance", division="Receivables")
        data = user.to_dict()
        assert data["department"] == "Finance"
        assert data["division"] == "Receivables"

    def test_unknown_department(self, department):
        with pytest.raises(ValidationError):
            _create(department="Legal")

    def test_division_outside_department(self, department):
        with pytest.raises(ValidationError):
            _create(department="Finance", division="Litigation")

    def test_duplicate_username(self):
        _create()
        with pytest.raises(ConflictError):
            _create(full_name="Other Person")

    def test_missing_fields(self):
        with pytest.raises(ValidationError) as exc:
            _create(full_name=" ", password="")
        assert set(exc.value.details) == {"full_name", "password"}

    def test_unknown_role(self):
        with pytest.raises(ValidationError):
            _create(role="Janitor")


# ═════════════════════════════════════════════════════════════════════════════
# Status / role changes
# ═════════════════════════════════════════════════════════════════════════════


def test_deactivation_tags_users_rows(submission, employee, admin):
    engine.approve(submission["id"], admin_id=admin.id, admin_name=admin.full_name)

    user = user_service.set_user_status(admin.id, active=False, admin_id=employee.id)

    assert user.status == "inactive"
    assert db.session.execute(sa.select(Approval.override)).scalar() is True
    # Owner's submission is not attributable to the admin
    assert db.session.execute(sa.select(Submission.override)).scalar() is False


def test_status_change_is_audited(employee, admin):
    user_service.set_user_status(employee.id, active=False, admin_id=admin.id)

    log = AuditLog.query.filter_by(action="user.status").one()
    assert log.entity_id == str(employee.id)
    assert log.actor_user_id == admin.id
    assert log.diff == {"status": {"old": "active", "new": "inactive"}}


def test_role_change(submission, employee):
    user = user_service.set_user_role(employee.id, role="Recorder")

    assert user.role == "Recorder"
    assert db.session.execute(sa.select(Submission.override)).scalar() is True


def test_role_change_rejects_unknown_role(employee):
    with pytest.raises(ValidationError):
        user_service.set_user_role(employee.id, role="Janitor")


def test_status_change_unknown_user():
    with pytest.raises(NotFoundError):
        user_service.set_user_status(999, active=False)


# ═════════════════════════════════════════════════════════════════════════════
# Impersonation
# ═════════════════════════════════════════════════════════════════════════════


def test_admin_impersonates_user(submission, employee, admin):
    result = user_service.impersonate_user(admin.id, employee.id)

    assert result["id"] == employee.id
    assert result["full_name"] == "Elena Reyes"
    assert db.session.execute(sa.select(Submission.override)).scalar() is True
    log = AuditLog.query.filter_by(action="user.impersonate").one()
    assert log.actor_user_id == admin.id


def test_non_admin_cannot_impersonate(employee, head):
    with pytest.raises(PreconditionFailedError) as exc:
        user_service.impersonate_user(head.id, employee.id)
    assert exc.value.guard == "active_admin"


def test_inactive_admin_cannot_impersonate(employee, make_user):
    former = make_user("Ivy Torres", "SuperAdmin", status="inactive")
    with pytest.raises(PreconditionFailedError):
        user_service.impersonate_user(former.id, employee.id)


def test_impersonate_unknown_target(admin):
    with pytest.raises(NotFoundError):
        user_service.impersonate_user(admin.id, 999)
