"""
Document Flow
Transition Engine — validates and executes lifecycle transitions.

State machine (submission-centric):
    pending                 --approve-->            approved (Approval not_forwarded)
    approved/not_forwarded  --forward-->            approved (Approval forwarded)
    forwarded               --record-->             Record upserted, Approval recorded
    Record recorded         --release-->            one Release per target, all released
    Release                 --mark_done-->          mark = done
    Release mark=done       --respond-->            Response (terminal)
    pending | Revision      --send_for_revision-->  Revision row; DisplayStatus "Revision"
    Revision                --resubmit-->           Revision rows deleted; status pending

Every transition runs as one transaction (``transaction()``) over a
``LifecycleStore`` built from the process-wide capability set, and appends
one audit row before commit when the audit table exists.

Re-invoking an already applied transition is a no-op that creates no
duplicate rows.  Unmet preconditions raise ``InvalidTransitionError``,
``PreconditionFailedError``, ``NotFoundError`` or ``ValidationError``.

Usage:
    from docflow.services import transition_engine as engine

    sub = engine.submit(kind="memo", priority="urgent", user_id=7)
    engine.approve(sub["id"], admin_id=2, admin_name="Ana Cruz")
"""

import logging
from datetime import datetime, timezone

from docflow.core.exceptions import (
    CheckViolationError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    SchemaIncompatibleError,
    StoreError,
    ValidationError,
)
from docflow.models import db
from docflow.models.audit import write_audit
from docflow.models.lifecycle import (
    APPROVAL_TRANSITIONS,
    DISPLAY_REVISION,
    RESPONSE_STATUSES,
    SUBMISSION_STATUSES,
)
from docflow.services.helpers.transaction import transaction
from docflow.services.lifecycle_store import LifecycleStore
from docflow.services.schema_adapter import get_schema_adapter

logger = logging.getLogger(__name__)

RECORDABLE_STATUSES = ("recorded", "not_recorded")
EDITABLE_DISPLAY_STATUSES = ("pending", DISPLAY_REVISION)
APPROVABLE_DISPLAY_STATUSES = ("pending", "approved")
REVISABLE_DISPLAY_STATUSES = ("pending", DISPLAY_REVISION)

# Matches ck_submissions_status and PostgreSQL's default submissions_status_check
SUBMISSION_STATUS_CHECK_PATTERN = r"submissions?_status"


def _utcnow():
    return datetime.now(timezone.utc)


def _capabilities():
    return get_schema_adapter().capabilities()


def _audit(store, entity_type, entity_id, action, *, actor_user_id=None, diff=None):
    if not store.caps.audit_log:
        return
    write_audit(
        store.session,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=f"user:{actor_user_id}" if actor_user_id is not None else "system",
        actor_user_id=actor_user_id,
        diff=diff,
    )


def _require_submission(store, submission_id, *, for_update=False, include_payload=False):
    sub = store.get_submission(submission_id, for_update=for_update, include_payload=include_payload)
    if sub is None:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    return sub


def _lifecycle_status(store, sub) -> str:
    """DisplayStatus, read through the Approval when submissions has no status column."""
    status = sub["display_status"]
    if status == "pending" and not store.caps.submission_status:
        if store.get_approval_by_submission(sub["id"], for_update=True) is not None:
            return "approved"
    return status


def _require_text(value, field):
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", details={field: "required"})
    return str(value).strip()


def _edit_fields(kind=None, priority=None, note=None, payload=None) -> dict:
    fields = {"kind": kind, "priority": priority, "note": note, "payload": payload}
    return {k: v for k, v in fields.items() if v is not None}


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_submission(submission_id: int) -> dict:
    store = LifecycleStore(db.session, _capabilities())
    return _require_submission(store, submission_id)


def get_release(release_id: int) -> dict:
    store = LifecycleStore(db.session, _capabilities())
    release = store.get_release(release_id)
    if release is None:
        raise NotFoundError(resource="Release", resource_id=release_id)
    return release


# ═════════════════════════════════════════════════════════════════════════════
# Submission authoring
# ═════════════════════════════════════════════════════════════════════════════


def submit(
    *,
    kind: str,
    priority: str,
    user_id: int | None = None,
    sender_name: str | None = None,
    payload: bytes | None = None,
    note: str | None = None,
) -> dict:
    """Create a Submission in ``pending``.

    The owner is *user_id*, or resolved case-insensitively from
    *sender_name* when no id is given.
    """
    kind = _require_text(kind, "kind")
    priority = _require_text(priority, "priority")
    if user_id is None and not sender_name:
        raise ValidationError("user_id or sender_name is required", details={"user_id": "required"})

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        if user_id is None:
            user_id = store.find_user_id_by_name(sender_name)
            if user_id is None:
                raise NotFoundError(resource="User", resource_id=sender_name)
        elif not store.user_exists(user_id):
            raise NotFoundError(resource="User", resource_id=user_id)

        submission_id = store.create_submission(
            user_id=user_id, kind=kind, priority=priority, payload=payload, note=note,
        )
        _audit(store, "submission", submission_id, "submission.submit",
               actor_user_id=user_id, diff={"kind": kind, "priority": priority})
        result = store.get_submission(submission_id)

    logger.info("Submission %s created by user %s", submission_id, user_id,
                extra={"event_type": "submission.submit", "submission_id": submission_id,
                       "user_id": user_id})
    return result


def update_submission(
    submission_id: int,
    *,
    kind: str | None = None,
    priority: str | None = None,
    note: str | None = None,
    payload: bytes | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """Edit a submission that has not been approved yet."""
    fields = _edit_fields(kind, priority, note, payload)
    if not fields:
        raise ValidationError("No editable fields supplied")

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        sub = _require_submission(store, submission_id, for_update=True)
        status = _lifecycle_status(store, sub)
        if status not in EDITABLE_DISPLAY_STATUSES:
            raise InvalidTransitionError(
                "update", "Submission", submission_id,
                reason="only pending or revision submissions can be edited",
                current_status=status,
            )
        store.update_submission_fields(submission_id, fields)
        _audit(store, "submission", submission_id, "submission.update",
               actor_user_id=actor_user_id,
               diff={k: v for k, v in fields.items() if k != "payload"})
        result = store.get_submission(submission_id)

    logger.info("Submission %s updated", submission_id,
                extra={"event_type": "submission.update", "submission_id": submission_id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Approval chain
# ═════════════════════════════════════════════════════════════════════════════


def approve(submission_id: int, *, admin_id: int, admin_name: str | None = None) -> dict:
    """Upsert the Approval (``not_forwarded``) and mark the submission approved.

    Re-approving while still ``not_forwarded`` refreshes the admin identity.
    """
    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        sub = _require_submission(store, submission_id, for_update=True)
        status = _lifecycle_status(store, sub)
        if status not in APPROVABLE_DISPLAY_STATUSES:
            raise InvalidTransitionError(
                "approve", "Submission", submission_id,
                reason="submission is not awaiting approval",
                current_status=status,
            )

        target = APPROVAL_TRANSITIONS["approve"]["to"]
        approval = store.get_approval_by_submission(submission_id, for_update=True)
        if approval is None:
            approval_id = store.create_approval(
                submission_id=submission_id, user_id=sub["user_id"],
                admin_id=admin_id, admin_name=admin_name, status=target,
            )
            previous = None
        elif approval["status"] not in APPROVAL_TRANSITIONS["approve"]["from"]:
            raise InvalidTransitionError(
                "approve", "Approval", approval["id"],
                reason="approval has already moved on",
                current_status=approval["status"],
            )
        else:
            approval_id = approval["id"]
            previous = approval["status"]
            store.update_approval(approval_id, {"admin_id": admin_id, "admin_name": admin_name})

        store.set_submission_status(submission_id, "approved")
        _audit(store, "submission", submission_id, "submission.approve",
               actor_user_id=admin_id,
               diff={"approval_id": approval_id, "status": {"old": previous, "new": target}})
        result = store.get_approval(approval_id)

    logger.info("Submission %s approved by %s", submission_id, admin_id,
                extra={"event_type": "submission.approve", "submission_id": submission_id,
                       "approval_id": approval_id, "actor_user_id": admin_id})
    return result


def forward(submission_id: int, *, head_id: int | None = None) -> dict:
    """Move the Approval from ``not_forwarded`` to ``forwarded``.

    Forwarding an already forwarded approval is a no-op.
    """
    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        _require_submission(store, submission_id, for_update=True)
        approval = store.get_approval_by_submission(submission_id, for_update=True)
        if approval is None:
            raise InvalidTransitionError(
                "forward", "Submission", submission_id, reason="submission has no approval yet",
            )
        if approval["status"] == APPROVAL_TRANSITIONS["forward"]["to"]:
            return approval
        if approval["status"] not in APPROVAL_TRANSITIONS["forward"]["from"]:
            raise InvalidTransitionError(
                "forward", "Approval", approval["id"], current_status=approval["status"],
            )

        store.update_approval(approval["id"], {"status": "forwarded", "forwarded_at": _utcnow()})
        _audit(store, "approval", approval["id"], "approval.forward",
               actor_user_id=head_id,
               diff={"status": {"old": approval["status"], "new": "forwarded"}})
        result = store.get_approval(approval["id"])

    logger.info("Approval %s forwarded", approval["id"],
                extra={"event_type": "approval.forward", "submission_id": submission_id,
                       "approval_id": approval["id"], "actor_user_id": head_id})
    return result


def record(
    submission_id: int,
    *,
    recorder_id: int,
    record_status: str = "recorded",
    comment: str | None = None,
) -> dict:
    """Upsert the Record for the submission's approval.

    ``recorded_at`` is stamped once, on the first transition into
    ``recorded``; the approval follows the record status.
    """
    if record_status not in RECORDABLE_STATUSES:
        raise ValidationError(
            f"record_status must be one of {', '.join(RECORDABLE_STATUSES)}",
            details={"record_status": record_status},
        )

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        _require_submission(store, submission_id, for_update=True)
        approval = store.get_approval_by_submission(submission_id, for_update=True)
        if approval is None:
            raise InvalidTransitionError(
                "record", "Submission", submission_id, reason="submission has no approval yet",
            )
        if approval["status"] not in APPROVAL_TRANSITIONS["record"]["from"]:
            raise InvalidTransitionError(
                "record", "Approval", approval["id"],
                reason="approval must be forwarded first",
                current_status=approval["status"],
            )

        existing = store.get_record_by_approval(approval["id"], for_update=True)
        if existing is not None and existing["status"] == "released":
            raise InvalidTransitionError(
                "record", "Record", existing["id"], current_status="released",
            )

        fields = {"recorder_id": recorder_id, "status": record_status, "comment": comment}
        if record_status == "recorded" and (existing is None or existing.get("recorded_at") is None):
            fields["recorded_at"] = _utcnow()

        if existing is None:
            record_id = store.create_record(approval_id=approval["id"], **fields)
        else:
            record_id = existing["id"]
            store.update_record(record_id, fields)

        approval_status = "recorded" if record_status == "recorded" else "forwarded"
        store.update_approval(approval["id"], {"status": approval_status})
        _audit(store, "record", record_id, "record.record",
               actor_user_id=recorder_id,
               diff={"status": {"old": existing["status"] if existing else None,
                                "new": record_status}})
        result = store.get_record(record_id)

    logger.info("Record %s set to %s", record_id, record_status,
                extra={"event_type": "record.record", "submission_id": submission_id,
                       "approval_id": approval["id"], "record_id": record_id,
                       "actor_user_id": recorder_id})
    return result


def _normalize_targets(targets) -> list[tuple[str, str | None]]:
    if targets is None:
        return []
    if not isinstance(targets, (list, tuple)):
        raise ValidationError("targets must be a list", details={"targets": "invalid"})

    normalized = []
    for target in targets:
        if isinstance(target, dict):
            department, division = target.get("department"), target.get("division")
        elif isinstance(target, (list, tuple)) and len(target) == 2:
            department, division = target
        else:
            raise ValidationError("Each release target is a {department, division} object",
                                  details={"targets": "invalid"})
        if not isinstance(department, str) or not department.strip():
            raise ValidationError("Every release target needs a department",
                                  details={"targets": "department required"})
        if division is not None and not isinstance(division, str):
            raise ValidationError("Release target division must be text",
                                  details={"targets": "invalid division"})
        division = division.strip() if division and division.strip() else None
        normalized.append((department.strip(), division))
    # Distinct targets, original order
    return list(dict.fromkeys(normalized))


def release(
    record_id: int,
    *,
    releaser_id: int,
    targets,
    priority: str | None = None,
) -> list[dict]:
    """Release a recorded document to each distinct (department, division).

    All-or-nothing: any failed insert rolls back every release plus the
    record/approval status change.  Re-releasing returns the existing rows.
    """
    targets = _normalize_targets(targets)
    if not targets:
        raise ValidationError("At least one release target is required",
                              details={"targets": "required"})

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        rec = store.get_record(record_id, for_update=True)
        if rec is None:
            raise NotFoundError(resource="Record", resource_id=record_id)
        if rec["status"] == "released":
            return store.list_releases_for_record(record_id, rec["approval_id"])
        if rec["status"] != "recorded":
            raise InvalidTransitionError(
                "release", "Record", record_id, reason="record must be recorded first",
                current_status=rec["status"],
            )

        approval = store.get_approval(rec["approval_id"], for_update=True)
        sub = _require_submission(store, approval["submission_id"], include_payload=True)

        release_ids = [
            store.create_release(
                record_id=record_id,
                approval_id=approval["id"],
                submission_id=sub["id"],
                kind=sub["kind"],
                payload=sub.get("payload"),
                status="released",
                department=department,
                division=division,
                priority=priority or sub["priority"],
                released_by=releaser_id,
            )
            for department, division in targets
        ]

        store.update_record(record_id, {"status": "released"})
        store.update_approval(approval["id"], {"status": APPROVAL_TRANSITIONS["release"]["to"]})
        _audit(store, "record", record_id, "release.create",
               actor_user_id=releaser_id,
               diff={"release_ids": release_ids,
                     "targets": [{"department": d, "division": v} for d, v in targets]})
        result = store.list_releases_for_record(record_id, approval["id"])

    logger.info("Record %s released to %d target(s)", record_id, len(release_ids),
                extra={"event_type": "release.create", "record_id": record_id,
                       "approval_id": approval["id"], "actor_user_id": releaser_id})
    return result


def mark_done(release_id: int, *, actor_user_id: int | None = None) -> dict:
    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        rel = store.get_release(release_id, for_update=True)
        if rel is None:
            raise NotFoundError(resource="Release", resource_id=release_id)
        if rel["mark"] == "done":
            return rel
        store.set_release_mark(release_id, "done")
        _audit(store, "release", release_id, "release.mark_done",
               actor_user_id=actor_user_id, diff={"mark": {"old": rel["mark"], "new": "done"}})
        result = store.get_release(release_id)

    logger.info("Release %s marked done", release_id,
                extra={"event_type": "release.mark_done", "release_id": release_id})
    return result


def respond(
    release_id: int,
    *,
    responder_id: int,
    status: str,
    comment: str | None = None,
    attachment: bytes | None = None,
) -> dict:
    """Record the target department's response.  Requires ``mark == done``."""
    if status not in RESPONSE_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(RESPONSE_STATUSES)}",
            details={"status": status},
        )

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        rel = store.get_release(release_id, for_update=True)
        if rel is None:
            raise NotFoundError(resource="Release", resource_id=release_id)
        if rel["mark"] != "done":
            raise PreconditionFailedError(
                f"Release {release_id} must be marked done before responding",
                guard="release_mark_done",
            )
        if store.get_response_by_release(release_id) is not None:
            raise InvalidTransitionError(
                "respond", "Release", release_id, reason="release already has a response",
            )
        if not store.user_exists(responder_id):
            raise NotFoundError(resource="User", resource_id=responder_id)

        response_id = store.create_response(
            release_id=release_id, user_id=responder_id, status=status,
            comment=comment, attachment=attachment,
        )
        _audit(store, "response", response_id, "response.create",
               actor_user_id=responder_id, diff={"release_id": release_id, "status": status})
        result = store.get_response_by_release(release_id)

    logger.info("Release %s responded: %s", release_id, status,
                extra={"event_type": "response.create", "release_id": release_id,
                       "actor_user_id": responder_id})
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Revision loop
# ═════════════════════════════════════════════════════════════════════════════


def _apply_revision(caps, submission_id, admin_id, admin_name, comment, *, degraded: bool) -> dict:
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        sub = _require_submission(store, submission_id, for_update=True)
        status = _lifecycle_status(store, sub)
        if status not in REVISABLE_DISPLAY_STATUSES:
            raise InvalidTransitionError(
                "send_for_revision", "Submission", submission_id,
                current_status=status,
            )

        fields = {"admin_id": admin_id, "admin_name": admin_name, "comment": comment}
        revision = store.get_revision_by_submission(submission_id, for_update=True)
        if revision is None:
            revision_id = store.create_revision(submission_id=submission_id, **fields)
        else:
            revision_id = revision["id"]
            store.update_revision(revision_id, fields)

        if not degraded:
            store.set_submission_status(submission_id, "revise")
        _audit(store, "submission", submission_id, "submission.send_for_revision",
               actor_user_id=admin_id,
               diff={"revision_id": revision_id, "degraded": degraded})

        result = store.get_submission(submission_id)
        result["revision"] = store.get_revision_by_submission(submission_id)
        result["degraded"] = degraded
    return result


def send_for_revision(
    submission_id: int,
    *,
    admin_id: int,
    admin_name: str | None = None,
    comment: str | None = None,
) -> dict:
    """Return a submission to its author.

    A CHECK violation on the raw status (legacy constraint without
    ``'revise'``) triggers one widening attempt and retry, then a degraded
    write that only stores the Revision row.  DisplayStatus is "Revision"
    either way.
    """
    caps = _capabilities()
    args = (caps, submission_id, admin_id, admin_name, comment)
    log_extra = {"event_type": "submission.send_for_revision", "submission_id": submission_id,
                 "actor_user_id": admin_id}

    try:
        result = _apply_revision(*args, degraded=False)
        logger.info("Submission %s sent for revision", submission_id, extra=log_extra)
        return result
    except CheckViolationError as exc:
        logger.warning("Revision status rejected by %s; widening constraint",
                       exc.constraint or "CHECK constraint", extra=log_extra)

    widened = get_schema_adapter().ensure_check_constraint_allows(
        "submissions", "status", SUBMISSION_STATUS_CHECK_PATTERN, SUBMISSION_STATUSES,
    )
    if widened:
        try:
            result = _apply_revision(*args, degraded=False)
            logger.info("Submission %s sent for revision after widening", submission_id,
                        extra=log_extra)
            return result
        except CheckViolationError:
            logger.warning("Revision status still rejected after widening", extra=log_extra)

    try:
        result = _apply_revision(*args, degraded=True)
    except StoreError as exc:
        raise SchemaIncompatibleError(
            f"Submission {submission_id} cannot be sent for revision on this schema",
            sqlstate=exc.sqlstate,
        ) from exc

    logger.warning("Submission %s sent for revision without raw status update", submission_id,
                   extra={**log_extra, "degraded": True})
    return result


def resubmit(
    submission_id: int,
    *,
    kind: str | None = None,
    priority: str | None = None,
    note: str | None = None,
    payload: bytes | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """Clear every Revision row, reset status to pending, apply edits."""
    fields = _edit_fields(kind, priority, note, payload)

    caps = _capabilities()
    with transaction(db.session) as session:
        store = LifecycleStore(session, caps)
        _require_submission(store, submission_id, for_update=True)
        if store.get_revision_by_submission(submission_id, for_update=True) is None:
            raise InvalidTransitionError(
                "resubmit", "Submission", submission_id, reason="no revision was requested",
            )

        deleted = store.delete_revisions(submission_id)
        store.set_submission_status(submission_id, "pending")
        if fields:
            store.update_submission_fields(submission_id, fields)
        _audit(store, "submission", submission_id, "submission.resubmit",
               actor_user_id=actor_user_id,
               diff={"revisions_deleted": deleted,
                     "fields": sorted(fields)})
        result = store.get_submission(submission_id)

    logger.info("Submission %s resubmitted", submission_id,
                extra={"event_type": "submission.resubmit", "submission_id": submission_id})
    return result
