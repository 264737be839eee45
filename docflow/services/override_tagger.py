"""
Document Flow
Override Tagger — flags historical lifecycle rows attributable to a user.

Triggered by user management (status/role change, impersonation).  One
transaction issues one ``UPDATE … SET override = true`` per lifecycle table
that has the column.  A row matches when it carries the user's id, when its
admin identity string equals the user's full name, or (records, releases,
responses) when it links back through Record → Approval to a matching
Approval.

Flags are monotonic: rows already flagged are not touched again.

Matching by name also tags rows of any other user who shares the same full
name.  This is kept for compatibility with rows that only carry
``admin_name``.

Failures never reach the caller: they are logged and ``mark_override``
returns ``None``.
"""

import logging
import threading

import sqlalchemy as sa
from flask import current_app

from docflow.models import db
from docflow.models.lifecycle import (
    ENSURABLE_COLUMNS,
    LIFECYCLE_TABLES,
    Approval,
    Record,
    Release,
    Response,
    Revision,
    Submission,
)
from docflow.services.helpers.transaction import transaction
from docflow.services.schema_adapter import get_schema_adapter

logger = logging.getLogger(__name__)

_TABLES = {
    "submissions": Submission.__table__,
    "approvals": Approval.__table__,
    "records": Record.__table__,
    "releases": Release.__table__,
    "responses": Response.__table__,
    "revisions": Revision.__table__,
}


def _match_conditions(user_id: int, full_name: str | None, release_columns) -> dict:
    """table name -> WHERE clause selecting rows attributable to the user."""
    approvals = _TABLES["approvals"]
    records = _TABLES["records"]
    releases = _TABLES["releases"]
    responses = _TABLES["responses"]
    submissions = _TABLES["submissions"]
    revisions = _TABLES["revisions"]

    approval_terms = [approvals.c.user_id == user_id, approvals.c.admin_id == user_id]
    revision_terms = [revisions.c.admin_id == user_id]
    if full_name:
        approval_terms.append(approvals.c.admin_name == full_name)
        revision_terms.append(revisions.c.admin_name == full_name)

    matching_approvals = sa.select(approvals.c.id).where(sa.or_(*approval_terms))
    matching_records = sa.select(records.c.id).where(records.c.approval_id.in_(matching_approvals))

    if "record_id" in release_columns:
        release_linkage = releases.c.record_id.in_(matching_records)
    elif "approval_id" in release_columns:
        release_linkage = releases.c.approval_id.in_(matching_approvals)
    else:
        release_linkage = sa.false()
    linked_releases = sa.select(releases.c.id).where(release_linkage)

    return {
        "submissions": submissions.c.user_id == user_id,
        "approvals": sa.or_(*approval_terms),
        "records": sa.or_(
            records.c.recorder_id == user_id,
            records.c.approval_id.in_(matching_approvals),
        ),
        "releases": sa.or_(releases.c.released_by == user_id, release_linkage),
        "responses": sa.or_(
            responses.c.user_id == user_id,
            responses.c.release_id.in_(linked_releases),
        ),
        "revisions": sa.or_(*revision_terms),
    }


def mark_override(user_id: int, full_name: str | None = None) -> dict[str, int] | None:
    """Flag every lifecycle row attributable to *user_id* / *full_name*.

    Returns:
        {table_name: rows_flagged} for each table carrying the column,
        or None when the sweep failed.
    """
    extra = {"event_type": "override.tag", "user_id": user_id}
    try:
        adapter = get_schema_adapter()
        tables = [
            name for name in LIFECYCLE_TABLES
            if adapter.ensure_column(name, "override", *ENSURABLE_COLUMNS[(name, "override")])
        ]
        caps = adapter.capabilities()
        conditions = _match_conditions(user_id, full_name, caps.release_columns)

        counts = {}
        with transaction(db.session) as session:
            for name in tables:
                table = _TABLES[name]
                not_flagged = sa.or_(table.c.override.is_(None), table.c.override == sa.false())
                result = session.execute(
                    sa.update(table)
                    .where(conditions[name], not_flagged)
                    .values(override=sa.true())
                )
                counts[name] = result.rowcount
    except Exception:
        logger.exception("Override tagging failed for user %s", user_id, extra=extra)
        return None

    logger.info("Override tagging for user %s flagged %d row(s)", user_id, sum(counts.values()),
                extra=extra)
    return counts


def _run_in_app_context(app, user_id: int, full_name: str | None) -> None:
    with app.app_context():
        mark_override(user_id, full_name)


def schedule_override_tagging(user_id: int, full_name: str | None = None) -> dict[str, int] | None:
    """Fire-and-forget dispatch of ``mark_override``.

    Runs on a daemon thread when OVERRIDE_TAGGER_ASYNC is set (returns None),
    inline otherwise (returns the counts).
    """
    app = current_app._get_current_object()
    if not app.config.get("OVERRIDE_TAGGER_ASYNC", True):
        return mark_override(user_id, full_name)

    thread = threading.Thread(
        target=_run_in_app_context,
        args=(app, user_id, full_name),
        name=f"override-tagger-{user_id}",
        daemon=True,
    )
    thread.start()
    return None
