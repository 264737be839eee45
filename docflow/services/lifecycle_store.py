"""
Document Flow
Lifecycle Store — typed reads/writes over the six lifecycle tables.

The store never probes the schema itself.  It is built per transaction from
the session and the process-wide ``SchemaCapabilities`` and only ever names
columns the capability set says exist: selects, inserts and updates are all
built from a filtered column list.

Reads return plain dicts (``None`` when nothing matches).  Blob columns are
not selected unless asked for; projections carry ``has_payload`` /
``payload_size`` instead.

Usage:
    store = LifecycleStore(db.session, caps)
    sub = store.get_submission(submission_id, for_update=True)
"""

import logging
from datetime import datetime, timezone

import sqlalchemy as sa

from docflow.models.lifecycle import (
    DEFAULT_SUBMISSION_STATUS,
    DISPLAY_REVISION,
    RELEASE_CANDIDATE_COLUMNS,
    Approval,
    Record,
    Release,
    Response,
    Revision,
    Submission,
)
from docflow.models.org import User

logger = logging.getLogger(__name__)

SUBMISSIONS = Submission.__table__
APPROVALS = Approval.__table__
RECORDS = Record.__table__
RELEASES = Release.__table__
RESPONSES = Response.__table__
REVISIONS = Revision.__table__

# Binary columns never selected by default
_BLOB_COLUMNS = {"payload", "attachment"}

_EDITABLE_SUBMISSION_FIELDS = ("kind", "priority", "note", "payload")


def _utcnow():
    return datetime.now(timezone.utc)


def _row(row) -> dict | None:
    return dict(row._mapping) if row is not None else None


class LifecycleStore:
    def __init__(self, session, caps):
        self.session = session
        self.caps = caps

    # ── Column filtering ─────────────────────────────────────────────────

    def has_column(self, table: str, column: str) -> bool:
        """Whether the capability set says *table.column* exists."""
        if column == "override":
            return self.caps.has_override(table)
        if (table, column) == ("submissions", "status"):
            return self.caps.submission_status
        if (table, column) == ("approvals", "forwarded_at"):
            return self.caps.approval_forwarded_at
        if (table, column) == ("records", "recorded_at"):
            return self.caps.record_recorded_at
        if table == "releases" and column in RELEASE_CANDIDATE_COLUMNS:
            return column in self.caps.release_columns
        return True

    def _present(self, table, values: dict) -> dict:
        return {k: v for k, v in values.items() if self.has_column(table.name, k)}

    def _columns(self, table, include_blobs: bool = False) -> list:
        cols = []
        for col in table.c:
            if not self.has_column(table.name, col.name):
                continue
            if col.name in _BLOB_COLUMNS:
                if include_blobs:
                    cols.append(col)
                cols.append(sa.func.coalesce(sa.func.length(col), 0).label(f"{col.name}_size"))
                continue
            cols.append(col)
        return cols

    def _one(self, stmt, for_update: bool, table) -> dict | None:
        if for_update:
            stmt = stmt.with_for_update(of=table)
        return _row(self.session.execute(stmt).first())

    def _insert(self, table, values: dict) -> int:
        result = self.session.execute(sa.insert(table).values(**self._present(table, values)))
        return result.inserted_primary_key[0]

    def _update(self, table, pk: int, values: dict) -> int:
        values = self._present(table, values)
        if not values:
            return 0
        result = self.session.execute(sa.update(table).where(table.c.id == pk).values(**values))
        return result.rowcount

    # ── Users (owner / responder lookups) ────────────────────────────────

    def user_exists(self, user_id: int) -> bool:
        users = User.__table__
        return self.session.execute(
            sa.select(users.c.id).where(users.c.id == user_id)
        ).first() is not None

    def find_user_id_by_name(self, full_name: str) -> int | None:
        """Case-insensitive full-name lookup (first match by id)."""
        users = User.__table__
        return self.session.execute(
            sa.select(users.c.id)
            .where(sa.func.lower(users.c.full_name) == full_name.strip().lower())
            .order_by(users.c.id)
            .limit(1)
        ).scalar()

    # ── Submissions ──────────────────────────────────────────────────────

    def display_status_expr(self):
        """SQL expression for DisplayStatus: Revision > raw status > 'pending'."""
        revision_exists = sa.exists().where(REVISIONS.c.submission_id == SUBMISSIONS.c.id)
        if self.caps.submission_status:
            fallback = sa.func.coalesce(SUBMISSIONS.c.status, DEFAULT_SUBMISSION_STATUS)
        else:
            fallback = sa.literal(DEFAULT_SUBMISSION_STATUS)
        return sa.case((revision_exists, DISPLAY_REVISION), else_=fallback)

    def _submission_select(self, include_payload: bool = False):
        return sa.select(
            *self._columns(SUBMISSIONS, include_blobs=include_payload),
            self.display_status_expr().label("display_status"),
        )

    def create_submission(self, *, user_id: int, kind: str, priority: str,
                          payload: bytes | None = None, note: str | None = None) -> int:
        return self._insert(SUBMISSIONS, {
            "user_id": user_id,
            "kind": kind,
            "priority": priority,
            "payload": payload,
            "note": note,
            "status": DEFAULT_SUBMISSION_STATUS,
        })

    def get_submission(self, submission_id: int, *, for_update: bool = False,
                       include_payload: bool = False) -> dict | None:
        stmt = self._submission_select(include_payload).where(SUBMISSIONS.c.id == submission_id)
        sub = self._one(stmt, for_update, SUBMISSIONS)
        if sub is not None and not self.caps.submission_status:
            sub["status"] = None
        return sub

    def list_submissions(self, *, user_id: int | None = None,
                         display_status: str | None = None) -> list[dict]:
        stmt = self._submission_select().order_by(SUBMISSIONS.c.id)
        if user_id is not None:
            stmt = stmt.where(SUBMISSIONS.c.user_id == user_id)
        if display_status is not None:
            stmt = stmt.where(self.display_status_expr() == display_status)
        return [_row(r) for r in self.session.execute(stmt)]

    def set_submission_status(self, submission_id: int, status: str) -> bool:
        """Write the raw status.  False (no-op) when the column is absent."""
        if not self.caps.submission_status:
            return False
        self._update(SUBMISSIONS, submission_id, {"status": status})
        return True

    def update_submission_fields(self, submission_id: int, fields: dict) -> int:
        values = {k: v for k, v in fields.items() if k in _EDITABLE_SUBMISSION_FIELDS}
        return self._update(SUBMISSIONS, submission_id, values)

    # ── Approvals ────────────────────────────────────────────────────────

    def get_approval(self, approval_id: int, *, for_update: bool = False) -> dict | None:
        stmt = sa.select(*self._columns(APPROVALS)).where(APPROVALS.c.id == approval_id)
        return self._one(stmt, for_update, APPROVALS)

    def get_approval_by_submission(self, submission_id: int, *,
                                   for_update: bool = False) -> dict | None:
        stmt = (
            sa.select(*self._columns(APPROVALS))
            .where(APPROVALS.c.submission_id == submission_id)
            .order_by(APPROVALS.c.id)
            .limit(1)
        )
        return self._one(stmt, for_update, APPROVALS)

    def create_approval(self, *, submission_id: int, user_id: int, admin_id: int | None,
                        admin_name: str | None, status: str = "not_forwarded") -> int:
        return self._insert(APPROVALS, {
            "submission_id": submission_id,
            "user_id": user_id,
            "admin_id": admin_id,
            "admin_name": admin_name,
            "status": status,
            "approved_at": _utcnow(),
        })

    def update_approval(self, approval_id: int, fields: dict) -> int:
        return self._update(APPROVALS, approval_id, fields)

    # ── Records ──────────────────────────────────────────────────────────

    def get_record(self, record_id: int, *, for_update: bool = False) -> dict | None:
        stmt = sa.select(*self._columns(RECORDS)).where(RECORDS.c.id == record_id)
        return self._one(stmt, for_update, RECORDS)

    def get_record_by_approval(self, approval_id: int, *, for_update: bool = False) -> dict | None:
        stmt = sa.select(*self._columns(RECORDS)).where(RECORDS.c.approval_id == approval_id)
        return self._one(stmt, for_update, RECORDS)

    def create_record(self, *, approval_id: int, recorder_id: int | None, status: str,
                      comment: str | None = None, recorded_at: datetime | None = None) -> int:
        return self._insert(RECORDS, {
            "approval_id": approval_id,
            "recorder_id": recorder_id,
            "status": status,
            "comment": comment,
            "recorded_at": recorded_at,
        })

    def update_record(self, record_id: int, fields: dict) -> int:
        return self._update(RECORDS, record_id, fields)

    # ── Releases ─────────────────────────────────────────────────────────

    def create_release(
        self,
        *,
        priority: str | None,
        released_by: int | None,
        record_id: int | None = None,
        approval_id: int | None = None,
        submission_id: int | None = None,
        kind: str | None = None,
        payload: bytes | None = None,
        status: str | None = "released",
        department: str | None = None,
        division: str | None = None,
    ) -> int:
        """Insert one Release built from the candidate columns that exist."""
        candidates = {
            "record_id": record_id,
            "approval_id": approval_id,
            "submission_id": submission_id,
            "kind": kind,
            "payload": payload,
            "status": status,
            "department": department,
            "division": division,
        }
        values = {k: v for k, v in candidates.items() if k in self.caps.release_columns}
        values.update({
            "priority": priority,
            "mark": "not_done",
            "released_by": released_by,
            "released_at": _utcnow(),
        })
        return self._insert(RELEASES, values)

    def get_release(self, release_id: int, *, for_update: bool = False) -> dict | None:
        stmt = sa.select(*self._columns(RELEASES)).where(RELEASES.c.id == release_id)
        return self._one(stmt, for_update, RELEASES)

    def list_releases_for_record(self, record_id: int, approval_id: int | None = None) -> list[dict]:
        """Releases linked to a record (via approval_id when record_id is absent)."""
        stmt = sa.select(*self._columns(RELEASES)).order_by(RELEASES.c.id)
        if "record_id" in self.caps.release_columns:
            stmt = stmt.where(RELEASES.c.record_id == record_id)
        elif approval_id is not None and "approval_id" in self.caps.release_columns:
            stmt = stmt.where(RELEASES.c.approval_id == approval_id)
        else:
            return []
        return [_row(r) for r in self.session.execute(stmt)]

    def set_release_mark(self, release_id: int, mark: str) -> int:
        return self._update(RELEASES, release_id, {"mark": mark})

    # ── Responses ────────────────────────────────────────────────────────

    def get_response_by_release(self, release_id: int) -> dict | None:
        stmt = (
            sa.select(*self._columns(RESPONSES))
            .where(RESPONSES.c.release_id == release_id)
            .order_by(RESPONSES.c.id)
            .limit(1)
        )
        return self._one(stmt, False, RESPONSES)

    def create_response(self, *, release_id: int, user_id: int, status: str,
                        comment: str | None = None, attachment: bytes | None = None) -> int:
        return self._insert(RESPONSES, {
            "release_id": release_id,
            "user_id": user_id,
            "status": status,
            "comment": comment,
            "attachment": attachment,
            "responded_at": _utcnow(),
        })

    # ── Revisions ────────────────────────────────────────────────────────

    def get_revision_by_submission(self, submission_id: int, *,
                                   for_update: bool = False) -> dict | None:
        stmt = (
            sa.select(*self._columns(REVISIONS))
            .where(REVISIONS.c.submission_id == submission_id)
            .order_by(REVISIONS.c.id.desc())
            .limit(1)
        )
        return self._one(stmt, for_update, REVISIONS)

    def create_revision(self, *, submission_id: int, admin_id: int | None,
                        admin_name: str | None, comment: str | None) -> int:
        return self._insert(REVISIONS, {
            "submission_id": submission_id,
            "admin_id": admin_id,
            "admin_name": admin_name,
            "comment": comment,
            "created_at": _utcnow(),
        })

    def update_revision(self, revision_id: int, fields: dict) -> int:
        return self._update(REVISIONS, revision_id, fields)

    def delete_revisions(self, submission_id: int) -> int:
        result = self.session.execute(
            sa.delete(REVISIONS).where(REVISIONS.c.submission_id == submission_id)
        )
        return result.rowcount
