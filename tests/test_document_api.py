"""
HTTP adapter tests — lifecycle endpoints, user endpoints and the error mapping.
"""

import base64

from docflow.core.exceptions import SchemaIncompatibleError, StoreError
from docflow.services import transition_engine


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _submit(client, employee, **extra):
    body = {"kind": "memo", "priority": "urgent", "user_id": employee.id,
            "payload": _b64(b"%PDF-1.4"), **extra}
    res = client.post("/api/v1/submissions", json=body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle over HTTP
# ═════════════════════════════════════════════════════════════════════════════


def test_full_lifecycle(client, employee, admin, head, recorder, releaser, responder):
    sub = _submit(client, employee, note="Budget request")
    assert sub["display_status"] == "pending"
    assert sub["has_payload"] is True
    assert sub["payload_size"] == 8
    assert "payload" not in sub

    res = client.post(f"/api/v1/submissions/{sub['id']}/approve",
                      json={"admin_id": admin.id, "admin_name": "Ana Cruz"})
    assert res.status_code == 200
    assert res.get_json()["status"] == "not_forwarded"

    res = client.post(f"/api/v1/submissions/{sub['id']}/forward", json={"head_id": head.id})
    assert res.get_json()["status"] == "forwarded"
    assert res.get_json()["forwarded_at"]

    res = client.post(f"/api/v1/submissions/{sub['id']}/record", json={"recorder_id": recorder.id})
    rec = res.get_json()
    assert rec["status"] == "recorded"

    res = client.post(f"/api/v1/records/{rec['id']}/release", json={
        "releaser_id": releaser.id,
        "priority": "urgent",
        "targets": [
            {"department": "Finance", "division": "Payables"},
            {"department": "Finance", "division": "Payables"},
            {"department": "Legal"},
        ],
    })
    assert res.status_code == 200
    data = res.get_json()
    assert data["total"] == 2
    release_id = data["items"][0]["id"]

    res = client.post(f"/api/v1/releases/{release_id}/respond",
                      json={"responder_id": responder.id, "status": "actioned"})
    assert res.status_code == 412
    assert res.get_json()["code"] == "ERR_PRECONDITION_FAILED"

    res = client.post(f"/api/v1/releases/{release_id}/mark-done", json={})
    assert res.get_json()["mark"] == "done"

    res = client.post(f"/api/v1/releases/{release_id}/respond", json={
        "responder_id": responder.id, "status": "not actioned",
        "comment": "Out of scope", "attachment": _b64(b"reply"),
    })
    assert res.status_code == 201
    assert res.get_json()["has_attachment"] is True

    res = client.get(f"/api/v1/submissions/{sub['id']}")
    assert res.get_json()["display_status"] == "approved"


def test_revision_round_trip(client, employee, admin):
    sub = _submit(client, employee)

    res = client.post(f"/api/v1/submissions/{sub['id']}/revision",
                      json={"admin_id": admin.id, "comment": "Add totals"})
    assert res.status_code == 200
    data = res.get_json()
    assert data["display_status"] == "Revision"
    assert data["revision"]["comment"] == "Add totals"
    assert data["degraded"] is False

    res = client.post(f"/api/v1/submissions/{sub['id']}/resubmit",
                      json={"note": "Totals added", "user_id": employee.id})
    assert res.status_code == 200
    assert res.get_json()["display_status"] == "pending"
    assert res.get_json()["note"] == "Totals added"


def test_update_submission(client, employee):
    sub = _submit(client, employee)
    res = client.put(f"/api/v1/submissions/{sub['id']}", json={"priority": "low"})
    assert res.status_code == 200
    assert res.get_json()["priority"] == "low"


# ═════════════════════════════════════════════════════════════════════════════
# Error mapping
# ═════════════════════════════════════════════════════════════════════════════


def test_missing_fields_is_400(client, employee):
    res = client.post("/api/v1/submissions", json={"user_id": employee.id})
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_bad_base64_is_400(client, employee):
    res = client.post("/api/v1/submissions", json={
        "kind": "memo", "priority": "urgent", "user_id": employee.id, "payload": "%%%not-base64",
    })
    assert res.status_code == 400
    assert res.get_json()["details"] == {"payload": "invalid"}


def test_non_integer_actor_is_400(client, submission):
    res = client.post(f"/api/v1/submissions/{submission['id']}/approve", json={"admin_id": "abc"})
    assert res.status_code == 400


def test_malformed_release_targets_are_400(client, submission, admin, head, recorder, releaser):
    transition_engine.approve(submission["id"], admin_id=admin.id)
    transition_engine.forward(submission["id"], head_id=head.id)
    rec = transition_engine.record(submission["id"], recorder_id=recorder.id)

    for targets in (["Finance"], [{"department": "HR", "division": 5}], "Finance"):
        res = client.post(f"/api/v1/records/{rec['id']}/release",
                          json={"releaser_id": releaser.id, "targets": targets})
        assert res.status_code == 400, targets
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_unknown_submission_is_404(client):
    res = client.get("/api/v1/submissions/999")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_invalid_transition_is_409(client, submission, head):
    res = client.post(f"/api/v1/submissions/{submission['id']}/forward", json={"head_id": head.id})
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_CONFLICT_STATE"
    assert body["details"]["action"] == "forward"


def test_store_error_is_500_without_driver_text(client, monkeypatch):
    def fail(_):
        raise StoreError('FATAL: password authentication failed for user "docflow"')

    monkeypatch.setattr(transition_engine, "get_submission", fail)
    res = client.get("/api/v1/submissions/1")
    assert res.status_code == 500
    body = res.get_json()
    assert body == {"error": "Database error", "code": "ERR_DATABASE"}


def test_schema_incompatible_is_500(client, monkeypatch):
    def fail(_):
        raise SchemaIncompatibleError('new row violates check constraint "submission_status_check"')

    monkeypatch.setattr(transition_engine, "get_submission", fail)
    res = client.get("/api/v1/submissions/1")
    assert res.status_code == 500
    body = res.get_json()
    assert body["code"] == "ERR_SCHEMA_INCOMPATIBLE"
    assert "submission_status_check" not in body["error"]


def test_unexpected_error_is_500(client, monkeypatch):
    def fail(_):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(transition_engine, "get_submission", fail)
    res = client.get("/api/v1/submissions/1")
    assert res.status_code == 500
    assert res.get_json() == {"error": "Internal server error", "code": "ERR_INTERNAL"}


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nope")
    assert res.status_code == 404
    assert res.get_json()["path"] == "/api/v1/nope"


# ═════════════════════════════════════════════════════════════════════════════
# Users
# ═════════════════════════════════════════════════════════════════════════════


def test_create_user(client, department):
    res = client.post("/api/v1/users", json={
        "full_name": "Mara Santos", "username": "mara", "password": "s3cret-pass",
        "role": "Recorder", "department": "Finance",
    })
    assert res.status_code == 201
    body = res.get_json()
    assert body["role"] == "Recorder"
    assert body["department"] == "Finance"
    assert "password_hash" not in body

    res = client.post("/api/v1/users", json={
        "full_name": "Mara Two", "username": "mara", "password": "x",
    })
    assert res.status_code == 409


def test_user_status_requires_boolean(client, employee):
    res = client.patch(f"/api/v1/users/{employee.id}/status", json={"active": "no"})
    assert res.status_code == 400


def test_user_status_and_role(client, employee, admin):
    res = client.patch(f"/api/v1/users/{employee.id}/status",
                       json={"active": False, "admin_id": admin.id})
    assert res.status_code == 200
    assert res.get_json()["active"] is False

    res = client.patch(f"/api/v1/users/{employee.id}/role", json={"role": "Releaser"})
    assert res.get_json()["role"] == "Releaser"


def test_impersonate(client, employee, admin, head):
    res = client.post(f"/api/v1/users/{employee.id}/impersonate", json={"admin_id": admin.id})
    assert res.status_code == 200
    assert res.get_json()["impersonating"]["id"] == employee.id

    res = client.post(f"/api/v1/users/{employee.id}/impersonate", json={"admin_id": head.id})
    assert res.status_code == 412


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["status"] == "ok"
    assert body["checks"]["schema"]["audit_log"] is True
