"""
Document Flow
Document lifecycle domain model.

Models:
    - Submission: the document as authored, with its raw status.
    - Approval:   admin decision + forwarding state (one per submission).
    - Record:     recorder's ledger entry (unique per approval).
    - Release:    one outbound copy per target department/division.
    - Response:   target department's reply to a release.
    - Revision:   admin's return-for-revision note (hard-deleted on resubmit).

Optional columns:
    Deployments may predate some columns.  Those are declared with a
    *server* default only, never a Python-side default, so an INSERT built
    from a capability-filtered column list never names a missing column.
    ``ENSURABLE_COLUMNS`` lists the ones the schema adapter may add at
    runtime; ``submissions.status`` and the Release candidates are only
    probed, never added.
"""

from datetime import datetime, timezone

from docflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Status vocabularies ──────────────────────────────────────────────────────

SUBMISSION_STATUSES = ("pending", "approved", "revise")
APPROVAL_STATUSES = ("not_forwarded", "forwarded", "recorded", "released")
RECORD_STATUSES = ("recorded", "not_recorded", "released")
RELEASE_MARKS = ("done", "not_done")
RESPONSE_STATUSES = ("actioned", "not actioned")

DISPLAY_REVISION = "Revision"
DEFAULT_SUBMISSION_STATUS = "pending"

# Approval status reachable by each transition (approve/forward/record/release)
APPROVAL_TRANSITIONS = {
    "approve": {"from": [None, "not_forwarded"], "to": "not_forwarded"},
    "forward": {"from": ["not_forwarded"], "to": "forwarded"},
    "record": {"from": ["forwarded", "recorded"], "to": "recorded"},
    "release": {"from": ["recorded"], "to": "released"},
}

LIFECYCLE_TABLES = (
    "submissions",
    "approvals",
    "records",
    "releases",
    "responses",
    "revisions",
)

# Release insert is built from whichever of these exist on the live table
RELEASE_CANDIDATE_COLUMNS = (
    "record_id",
    "approval_id",
    "submission_id",
    "kind",
    "payload",
    "status",
    "department",
    "division",
)

# (table, column) -> (SQLAlchemy type, server default) for runtime ADD COLUMN
ENSURABLE_COLUMNS = {
    ("approvals", "forwarded_at"): (db.DateTime(timezone=True), None),
    ("records", "recorded_at"): (db.DateTime(timezone=True), None),
    **{(table, "override"): (db.Boolean(), db.false()) for table in LIFECYCLE_TABLES},
}


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ═════════════════════════════════════════════════════════════════════════════
# Tables
# ═════════════════════════════════════════════════════════════════════════════


class Submission(db.Model):
    """The originally authored document.  Never deleted."""

    __tablename__ = "submissions"
    __table_args__ = (
        db.CheckConstraint(_in_clause("status", SUBMISSION_STATUSES), name="ck_submissions_status"),
        db.Index("ix_submissions_user", "user_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    kind = db.Column(db.String(100), nullable=False, comment="Document type, e.g. memo | letter")
    priority = db.Column(db.String(30), nullable=False)
    payload = db.Column(db.LargeBinary, nullable=True, comment="Opaque document bytes")
    note = db.Column(db.Text, nullable=True)
    # Optional: older schemas have no status column at all
    status = db.Column(db.String(20), nullable=True, server_default=DEFAULT_SUBMISSION_STATUS)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())

    def __repr__(self) -> str:
        return f"<Submission {self.id}: {self.kind}>"


class Approval(db.Model):
    """Admin decision and forwarding state.

    submission_id is the natural key but is deliberately not unique-enforced:
    some deployments lack the constraint, so upserts lock the row instead.
    """

    __tablename__ = "approvals"
    __table_args__ = (
        db.CheckConstraint(_in_clause("status", APPROVAL_STATUSES), name="ck_approvals_status"),
        db.Index("ix_approvals_submission", "submission_id"),
        db.Index("ix_approvals_admin", "admin_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, comment="Submission owner")
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_name = db.Column(db.String(200), nullable=True, comment="Approving admin identity string")
    status = db.Column(db.String(20), nullable=False, default="not_forwarded")
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    forwarded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())


class Record(db.Model):
    """Recorder's ledger entry, one per approval."""

    __tablename__ = "records"
    __table_args__ = (
        db.CheckConstraint(_in_clause("status", RECORD_STATUSES), name="ck_records_status"),
        db.UniqueConstraint("approval_id", name="uq_records_approval_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(db.Integer, db.ForeignKey("approvals.id", ondelete="CASCADE"), nullable=False)
    recorder_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="recorded")
    comment = db.Column(db.Text, nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())


class Release(db.Model):
    """One outbound copy of a recorded document for a department/division."""

    __tablename__ = "releases"
    __table_args__ = (
        db.CheckConstraint(_in_clause("mark", RELEASE_MARKS), name="ck_releases_mark"),
        db.Index("ix_releases_record", "record_id"),
        db.Index("ix_releases_department", "department"),
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey("records.id", ondelete="CASCADE"), nullable=True)
    approval_id = db.Column(db.Integer, db.ForeignKey("approvals.id", ondelete="CASCADE"), nullable=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=True)
    kind = db.Column(db.String(100), nullable=True)
    payload = db.Column(db.LargeBinary, nullable=True)
    status = db.Column(db.String(20), nullable=True, server_default="released")
    department = db.Column(db.String(120), nullable=True)
    division = db.Column(db.String(120), nullable=True)
    priority = db.Column(db.String(30), nullable=True, comment="Priority at release time")
    mark = db.Column(db.String(10), nullable=False, server_default="not_done")
    released_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())


class Response(db.Model):
    """Target department's reply to a release.  Immutable once written."""

    __tablename__ = "responses"
    __table_args__ = (
        db.CheckConstraint(_in_clause("status", RESPONSE_STATUSES), name="ck_responses_status"),
        db.Index("ix_responses_release", "release_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    release_id = db.Column(db.Integer, db.ForeignKey("releases.id", ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, comment="Responder")
    status = db.Column(db.String(20), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    attachment = db.Column(db.LargeBinary, nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())


class Revision(db.Model):
    """Return-for-revision note.  Its existence alone drives DisplayStatus."""

    __tablename__ = "revisions"
    __table_args__ = (
        db.Index("ix_revisions_submission", "submission_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_name = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    override = db.Column(db.Boolean, nullable=False, server_default=db.false())
