"""
Shared pytest fixtures for the Document Flow test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup + schema adapter reset (autouse)
    - client: Flask test client (function-scoped)
    - adapter: the app's SchemaAdapter
    - make_user / department: org factories
    - employee, admin, head, recorder, releaser, responder: one user per role
    - submission: a pending submission owned by ``employee``
"""

import pytest

from docflow import create_app
from docflow.models import db as _db
from docflow.models.org import Department, Division, User
from docflow.services import transition_engine as engine


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, forget schema probes, recreate tables after."""
    with app.app_context():
        app.extensions["schema_adapter"].reset()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        app.extensions["schema_adapter"].reset()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def adapter(app):
    return app.extensions["schema_adapter"]


# ── Org factories ────────────────────────────────────────────────────────


@pytest.fixture()
def department():
    """'Finance' department with 'Payables' and 'Receivables' divisions."""
    dept = Department(name="Finance")
    dept.divisions = [Division(name="Payables"), Division(name="Receivables")]
    _db.session.add(dept)
    _db.session.commit()
    return dept


@pytest.fixture()
def make_user():
    """Factory: make_user(full_name, role="Employee", **fields) -> committed User.

    Skips bcrypt so fixtures stay fast; user_service tests cover hashing.
    """
    counter = {"n": 0}

    def _make(full_name, role="Employee", **fields):
        counter["n"] += 1
        user = User(
            full_name=full_name,
            username=fields.pop("username", f"user{counter['n']}"),
            role=role,
            **fields,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def employee(make_user):
    return make_user("Elena Reyes", "Employee")


@pytest.fixture()
def admin(make_user):
    return make_user("Ana Cruz", "Admin")


@pytest.fixture()
def head(make_user):
    return make_user("Hector Lim", "DepartmentHead")


@pytest.fixture()
def recorder(make_user):
    return make_user("Rita Santos", "Recorder")


@pytest.fixture()
def releaser(make_user):
    return make_user("Leo Bautista", "Releaser")


@pytest.fixture()
def responder(make_user):
    return make_user("Dana Uy", "DivisionHead")


@pytest.fixture()
def submission(employee):
    """A pending memo owned by ``employee`` (dict as returned by the engine)."""
    return engine.submit(
        kind="memo", priority="urgent", user_id=employee.id,
        payload=b"%PDF-1.4 memo", note="Budget request",
    )
