"""CLI command tests."""

import json

import sqlalchemy as sa

from docflow.models import db


def test_adapt_schema_reports_capabilities(app):
    result = app.test_cli_runner().invoke(args=["adapt-schema"])

    assert result.exit_code == 0, result.output
    caps = json.loads(result.stdout)
    assert caps["submission_status"] is True
    assert caps["audit_log"] is True
    assert "releases" in caps["override_tables"]


def test_adapt_schema_adds_missing_column(app):
    with db.engine.begin() as conn:
        conn.execute(sa.text("DROP TABLE revisions"))
        conn.execute(sa.text(
            "CREATE TABLE revisions ("
            " id INTEGER NOT NULL PRIMARY KEY,"
            " submission_id INTEGER NOT NULL REFERENCES submissions (id),"
            " comment TEXT, admin_id INTEGER, admin_name VARCHAR(200),"
            " created_at DATETIME NOT NULL)"
        ))

    result = app.test_cli_runner().invoke(args=["adapt-schema"])

    assert result.exit_code == 0, result.output
    assert "revisions" in json.loads(result.stdout)["override_tables"]
    with db.engine.connect() as conn:
        columns = {c["name"] for c in sa.inspect(conn).get_columns("revisions")}
    assert "override" in columns
