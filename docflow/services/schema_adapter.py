"""
Document Flow
Schema Adapter — runtime tolerance for schemas that predate optional columns.

Lets the lifecycle engine run against databases where some optional columns
(``approvals.forwarded_at``, ``records.recorded_at``, the ``override`` flags)
or widened CHECK constraints do not exist yet, without a migration step
before deploy.

Every probe and every DDL attempt is single-flight per key: the first caller
runs it, concurrent callers block on the same ``Future`` and reuse its result,
later callers get the memoized value.  Failed attempts are not memoized,
and neither is a capability set assembled while any lookup was failing.

All operations fail open: errors are logged and turned into ``False``, never
raised.  A genuinely missing column then surfaces on the next DML as a normal,
classified database error.

DDL always runs on its own connection (``engine.begin()``) and must not be
called while the session holds uncommitted writes.

Usage:
    from docflow.services.schema_adapter import get_schema_adapter

    caps = get_schema_adapter().capabilities()
    store = LifecycleStore(db.session, caps)
"""

import logging
import re
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from docflow.models import db
from docflow.models.lifecycle import (
    ENSURABLE_COLUMNS,
    LIFECYCLE_TABLES,
    RELEASE_CANDIDATE_COLUMNS,
)

logger = logging.getLogger(__name__)

EXTENSION_KEY = "schema_adapter"

# Quoted literals inside a CHECK clause, e.g. status IN ('pending', 'approved')
_LITERAL_RE = re.compile(r"'((?:[^']|'')*)'")


@dataclass(frozen=True)
class SchemaCapabilities:
    """Which optional columns/tables the live schema supports.

    Resolved once per process and passed by value into ``LifecycleStore``.
    Defaults describe a fully migrated schema.
    """

    submission_status: bool = True
    approval_forwarded_at: bool = True
    record_recorded_at: bool = True
    release_columns: frozenset = field(default_factory=lambda: frozenset(RELEASE_CANDIDATE_COLUMNS))
    override_tables: frozenset = field(default_factory=lambda: frozenset(LIFECYCLE_TABLES))
    audit_log: bool = True

    def has_override(self, table: str) -> bool:
        return table in self.override_tables

    def to_dict(self) -> dict:
        return {
            "submission_status": self.submission_status,
            "approval_forwarded_at": self.approval_forwarded_at,
            "record_recorded_at": self.record_recorded_at,
            "release_columns": sorted(self.release_columns),
            "override_tables": sorted(self.override_tables),
            "audit_log": self.audit_log,
        }


class _PartialCapabilities(Exception):
    """Carries a capability set built while some lookups were failing."""

    def __init__(self, caps: SchemaCapabilities):
        super().__init__("schema capabilities incomplete")
        self.caps = caps


class SingleFlight:
    """Lock-protected table of Futures; one in-flight computation per key."""

    def __init__(self):
        self._lock = threading.Lock()
        self._futures: dict[tuple, Future] = {}

    def do(self, key: tuple, fn):
        """Return fn()'s result for *key*, computing it at most once.

        If fn raises, every waiter sees the exception and the key is
        forgotten so a later call retries.
        """
        with self._lock:
            future = self._futures.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._futures[key] = future

        if owner:
            try:
                future.set_result(fn())
            except BaseException as exc:
                with self._lock:
                    self._futures.pop(key, None)
                future.set_exception(exc)
                raise
        return future.result()

    def set(self, key: tuple, value) -> None:
        future = Future()
        future.set_result(value)
        with self._lock:
            self._futures[key] = future

    def forget(self, key: tuple | None = None) -> None:
        with self._lock:
            if key is None:
                self._futures.clear()
            else:
                self._futures.pop(key, None)

    def __contains__(self, key: tuple) -> bool:
        with self._lock:
            return key in self._futures


class SchemaAdapter:
    """Lazily discovers and adapts optional schema features.

    Args:
        engine: Engine to probe; defaults to the Flask-SQLAlchemy engine of
            the current app context.
        auto_adapt: When False, ``capabilities()`` only probes and never
            issues ``ALTER TABLE``.
    """

    def __init__(self, engine=None, *, auto_adapt: bool = True):
        self._engine = engine
        self.auto_adapt = auto_adapt
        self._flight = SingleFlight()

    def init_app(self, app) -> None:
        self.auto_adapt = app.config.get("SCHEMA_AUTO_ADAPT", self.auto_adapt)
        app.extensions[EXTENSION_KEY] = self

    @property
    def engine(self):
        return self._engine if self._engine is not None else db.engine

    def reset(self) -> None:
        """Forget every memoized outcome (tests, out-of-band migrations)."""
        self._flight.forget()

    # ── Probes ───────────────────────────────────────────────────────────

    def column_exists(self, table: str, column: str) -> bool:
        try:
            return self._column_exists(table, column)
        except SQLAlchemyError as exc:
            logger.warning(
                "Column probe failed for %s.%s: %s", table, column, exc,
                extra={"event_type": "schema.probe_failed", "table": table, "column": column},
            )
            return False

    def table_exists(self, table: str) -> bool:
        try:
            return self._table_exists(table)
        except SQLAlchemyError as exc:
            logger.warning(
                "Table probe failed for %s: %s", table, exc,
                extra={"event_type": "schema.probe_failed", "table": table},
            )
            return False

    def _column_exists(self, table: str, column: str) -> bool:
        return self._flight.do(("column", table, column), lambda: self._probe_column(table, column))

    def _table_exists(self, table: str) -> bool:
        return self._flight.do(("table", table), lambda: self._probe_table(table))

    def _probe_column(self, table: str, column: str) -> bool:
        with self.engine.connect() as conn:
            if conn.dialect.name == "postgresql":
                row = conn.execute(
                    sa.text(
                        "SELECT 1 FROM information_schema.columns "
                        "WHERE table_schema = current_schema() "
                        "AND table_name = :table AND column_name = :column"
                    ),
                    {"table": table, "column": column},
                ).first()
                return row is not None
            insp = sa.inspect(conn)
            if not insp.has_table(table):
                return False
            return any(col["name"] == column for col in insp.get_columns(table))

    def _probe_table(self, table: str) -> bool:
        with self.engine.connect() as conn:
            if conn.dialect.name == "postgresql":
                row = conn.execute(
                    sa.text(
                        "SELECT 1 FROM information_schema.tables "
                        "WHERE table_schema = current_schema() AND table_name = :table"
                    ),
                    {"table": table},
                ).first()
                return row is not None
            return sa.inspect(conn).has_table(table)

    # ── Adaptation ───────────────────────────────────────────────────────

    def ensure_column(self, table: str, column: str, type_, server_default=None) -> bool:
        """Add *column* to *table* if missing.  Returns presence afterwards."""
        try:
            return self._ensure_column(table, column, type_, server_default)
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not add column %s.%s: %s", table, column, exc,
                extra={"event_type": "schema.ensure_failed", "table": table, "column": column},
            )
            return False

    def _ensure_column(self, table: str, column: str, type_, server_default=None) -> bool:
        key = ("ensure", table, column)
        try:
            return self._flight.do(key, lambda: self._add_column(table, column, type_, server_default))
        except SQLAlchemyError:
            # Re-probe next time; another process may have added it meanwhile
            self._flight.forget(("column", table, column))
            raise

    def _add_column(self, table: str, column: str, type_, server_default) -> bool:
        if self._column_exists(table, column):
            return True
        if not self._table_exists(table):
            return False

        dialect = self.engine.dialect
        prep = dialect.identifier_preparer
        col_type = type_.compile(dialect=dialect)
        default = ""
        if server_default is not None:
            compiled = server_default.compile(dialect=dialect, compile_kwargs={"literal_binds": True})
            default = f" DEFAULT {compiled}"
        if_not_exists = " IF NOT EXISTS" if dialect.name == "postgresql" else ""

        ddl = (
            f"ALTER TABLE {prep.quote(table)} "
            f"ADD COLUMN{if_not_exists} {prep.quote(column)} {col_type}{default}"
        )
        with self.engine.begin() as conn:
            conn.execute(sa.text(ddl))

        self._flight.set(("column", table, column), True)
        logger.info(
            "Added missing column %s.%s", table, column,
            extra={"event_type": "schema.column_added", "table": table, "column": column},
        )
        return True

    def ensure_check_constraint_allows(
        self,
        table: str,
        column: str,
        name_pattern: str,
        required_values,
    ) -> bool:
        """Widen the CHECK constraint on *column* so it accepts *required_values*.

        The constraint is located by a regex over constraint names.  Existing
        literals are always kept (the constraint is never narrowed).  Returns
        True when the constraint already allows the values, was rebuilt, or
        does not exist; False when the dialect cannot alter it in place or the
        DDL failed.
        """
        required = tuple(dict.fromkeys(required_values))
        key = ("check", table, column, name_pattern, required)
        try:
            return self._flight.do(
                key, lambda: self._widen_check(table, column, name_pattern, required),
            )
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not widen CHECK on %s.%s: %s", table, column, exc,
                extra={"event_type": "schema.widen_failed", "table": table, "column": column},
            )
            return False

    def _widen_check(self, table: str, column: str, name_pattern: str, required: tuple) -> bool:
        pattern = re.compile(name_pattern)
        with self.engine.connect() as conn:
            dialect_name = conn.dialect.name
            constraints = sa.inspect(conn).get_check_constraints(table)

        match = next(
            (c for c in constraints if c.get("name") and pattern.search(c["name"])),
            None,
        )
        if match is None:
            return True

        existing = [lit.replace("''", "'") for lit in _LITERAL_RE.findall(match["sqltext"])]
        missing = [v for v in required if v not in existing]
        if not missing:
            return True

        if dialect_name != "postgresql":
            logger.warning(
                "Cannot alter CHECK %s in place on %s", match["name"], dialect_name,
                extra={"event_type": "schema.widen_unsupported", "table": table, "column": column},
            )
            return False

        prep = self.engine.dialect.identifier_preparer
        allowed = ", ".join(
            "'{}'".format(v.replace("'", "''")) for v in dict.fromkeys(existing + missing)
        )
        name = prep.quote(match["name"])
        with self.engine.begin() as conn:
            conn.execute(sa.text(f"ALTER TABLE {prep.quote(table)} DROP CONSTRAINT {name}"))
            conn.execute(sa.text(
                f"ALTER TABLE {prep.quote(table)} ADD CONSTRAINT {name} "
                f"CHECK ({prep.quote(column)} IN ({allowed}))"
            ))

        logger.info(
            "Widened CHECK %s to allow %s", match["name"], ", ".join(missing),
            extra={"event_type": "schema.check_widened", "table": table, "column": column},
        )
        return True

    # ── Capability set ───────────────────────────────────────────────────

    def capabilities(self) -> SchemaCapabilities:
        """Resolve the capability set once and memoize it.

        When any lookup failed, the partial set is returned to this call (and
        to concurrent waiters) but not memoized, so the next call resolves
        again instead of pinning a transient failure for the process.
        """
        try:
            return self._flight.do(("capabilities",), self._resolve_capabilities)
        except _PartialCapabilities as partial:
            return partial.caps

    def _resolve_capabilities(self) -> SchemaCapabilities:
        failed = []

        def attempt(check, table, *args):
            try:
                return check(table, *args)
            except SQLAlchemyError as exc:
                failed.append(".".join((table,) + args[:1]))
                logger.warning(
                    "Capability lookup failed for %s: %s", failed[-1], exc,
                    extra={"event_type": "schema.probe_failed", "table": table},
                )
                return False

        if self.auto_adapt:
            for (table, column), (type_, server_default) in ENSURABLE_COLUMNS.items():
                attempt(self._ensure_column, table, column, type_, server_default)

        caps = SchemaCapabilities(
            submission_status=attempt(self._column_exists, "submissions", "status"),
            approval_forwarded_at=attempt(self._column_exists, "approvals", "forwarded_at"),
            record_recorded_at=attempt(self._column_exists, "records", "recorded_at"),
            release_columns=frozenset(
                col for col in RELEASE_CANDIDATE_COLUMNS
                if attempt(self._column_exists, "releases", col)
            ),
            override_tables=frozenset(
                table for table in LIFECYCLE_TABLES
                if attempt(self._column_exists, table, "override")
            ),
            audit_log=attempt(self._table_exists, "audit_logs"),
        )
        if failed:
            logger.warning(
                "Schema capabilities incomplete (%s); resolving again on next use",
                ", ".join(failed), extra={"event_type": "schema.capabilities_partial"},
            )
            raise _PartialCapabilities(caps)

        logger.info(
            "Schema capabilities resolved: %s", caps.to_dict(),
            extra={"event_type": "schema.capabilities"},
        )
        return caps


def get_schema_adapter() -> SchemaAdapter:
    """Return the adapter registered on the current app."""
    return current_app.extensions[EXTENSION_KEY]
