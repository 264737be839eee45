"""
Lifecycle store tests — DisplayStatus projection and capability-filtered DML.

The store is exercised directly with hand-built capability sets, so these
tests do not depend on the schema adapter.
"""

import sqlalchemy as sa

from docflow.models import db
from docflow.models.lifecycle import Release
from docflow.services.lifecycle_store import LifecycleStore
from docflow.services.schema_adapter import SchemaCapabilities


def _store(**caps) -> LifecycleStore:
    return LifecycleStore(db.session, SchemaCapabilities(**caps))


def _submission(store, user_id, **fields) -> int:
    sub_id = store.create_submission(user_id=user_id, kind="memo", priority="normal", **fields)
    db.session.commit()
    return sub_id


def test_display_status_defaults_to_pending(employee):
    store = _store()
    sub_id = _submission(store, employee.id)
    db.session.execute(sa.text("UPDATE submissions SET status = NULL WHERE id = :id"), {"id": sub_id})

    assert store.get_submission(sub_id)["display_status"] == "pending"


def test_revision_row_wins_over_raw_status(employee, admin):
    store = _store()
    sub_id = _submission(store, employee.id)
    store.set_submission_status(sub_id, "approved")
    store.create_revision(submission_id=sub_id, admin_id=admin.id, admin_name=None, comment="x")

    assert store.get_submission(sub_id)["display_status"] == "Revision"
    assert [s["id"] for s in store.list_submissions(display_status="Revision")] == [sub_id]
    assert store.list_submissions(display_status="approved") == []

    assert store.delete_revisions(sub_id) == 1
    assert store.get_submission(sub_id)["display_status"] == "approved"


def test_list_submissions_filters_by_owner(employee, make_user):
    other = make_user("Owen Diaz")
    store = _store()
    mine = _submission(store, employee.id)
    _submission(store, other.id)

    assert [s["id"] for s in store.list_submissions(user_id=employee.id)] == [mine]


def test_status_write_skipped_without_column(employee):
    store = _store(submission_status=False)
    sub_id = _submission(store, employee.id)

    assert store.set_submission_status(sub_id, "approved") is False
    sub = store.get_submission(sub_id)
    assert sub["status"] is None
    assert sub["display_status"] == "pending"


def test_projection_hides_blobs(employee):
    store = _store()
    sub_id = _submission(store, employee.id, payload=b"abcdef")

    sub = store.get_submission(sub_id)
    assert "payload" not in sub
    assert sub["payload_size"] == 6
    assert store.get_submission(sub_id, include_payload=True)["payload"] == b"abcdef"


def test_update_submission_fields_ignores_unknown_keys(employee):
    store = _store()
    sub_id = _submission(store, employee.id)

    store.update_submission_fields(sub_id, {"note": "n", "user_id": 999, "status": "approved"})
    sub = store.get_submission(sub_id)
    assert sub["note"] == "n"
    assert sub["user_id"] == employee.id
    assert sub["status"] == "pending"


def test_optional_columns_are_not_written(employee, admin):
    store = _store(approval_forwarded_at=False, override_tables=frozenset())
    sub_id = _submission(store, employee.id)
    approval_id = store.create_approval(
        submission_id=sub_id, user_id=employee.id, admin_id=admin.id, admin_name=None,
    )
    store.update_approval(approval_id, {"status": "forwarded", "forwarded_at": "ignored"})

    approval = store.get_approval(approval_id)
    assert approval["status"] == "forwarded"
    assert "forwarded_at" not in approval
    assert "override" not in approval


def test_adaptive_release_insert(employee, admin, releaser):
    full = _store()
    sub_id = _submission(full, employee.id, payload=b"doc")
    approval_id = full.create_approval(
        submission_id=sub_id, user_id=employee.id, admin_id=admin.id, admin_name=None,
    )
    record_id = full.create_record(approval_id=approval_id, recorder_id=None, status="recorded")

    store = _store(release_columns=frozenset({"record_id", "department"}))
    release_id = store.create_release(
        record_id=record_id, approval_id=approval_id, submission_id=sub_id,
        kind="memo", payload=b"doc", status="released",
        department="Finance", division="Payables",
        priority="urgent", released_by=releaser.id,
    )
    db.session.commit()

    row = db.session.get(Release, release_id)
    assert row.record_id == record_id
    assert row.department == "Finance"
    assert row.approval_id is None
    assert row.submission_id is None
    assert row.kind is None
    assert row.payload is None
    assert row.division is None
    assert row.mark == "not_done"

    rel = store.get_release(release_id)
    assert set(rel) >= {"id", "record_id", "department", "priority", "mark"}
    assert "division" not in rel
    assert [r["id"] for r in store.list_releases_for_record(record_id)] == [release_id]


def test_releases_listed_by_approval_without_record_column(employee, admin, releaser):
    full = _store()
    sub_id = _submission(full, employee.id)
    approval_id = full.create_approval(
        submission_id=sub_id, user_id=employee.id, admin_id=admin.id, admin_name=None,
    )
    record_id = full.create_record(approval_id=approval_id, recorder_id=None, status="recorded")

    store = _store(release_columns=frozenset({"approval_id"}))
    release_id = store.create_release(approval_id=approval_id, priority="low", released_by=releaser.id)

    assert [r["id"] for r in store.list_releases_for_record(record_id, approval_id)] == [release_id]
    assert _store(release_columns=frozenset()).list_releases_for_record(record_id) == []


def test_user_lookups(employee):
    store = _store()
    assert store.user_exists(employee.id) is True
    assert store.user_exists(employee.id + 100) is False
    assert store.find_user_id_by_name("ELENA reyes") == employee.id
    assert store.find_user_id_by_name("Nobody") is None
