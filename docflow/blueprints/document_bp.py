"""
Document lifecycle blueprint.

Endpoints:
    POST   /api/v1/submissions                         — submit a document
    GET    /api/v1/submissions/<id>                    — submission + DisplayStatus
    PUT    /api/v1/submissions/<id>                    — edit while pending/revision
    POST   /api/v1/submissions/<id>/approve            — admin approval
    POST   /api/v1/submissions/<id>/forward            — head forwards approval
    POST   /api/v1/submissions/<id>/record             — recorder logs it
    POST   /api/v1/submissions/<id>/revision           — send back for revision
    POST   /api/v1/submissions/<id>/resubmit           — author resubmits
    POST   /api/v1/records/<id>/release                — release to targets
    POST   /api/v1/releases/<id>/mark-done             — target marks done
    POST   /api/v1/releases/<id>/respond               — target responds

Acting identity comes from the JSON body; authentication is handled upstream.
The service layer owns all business rules and commits.
"""

import logging

from flask import Blueprint, jsonify

from docflow.blueprints import decode_base64, json_body, optional_int, project, require_int
from docflow.services import transition_engine as engine
from docflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1")
register_error_handlers(document_bp)


def _edit_kwargs(data: dict) -> dict:
    return {
        "kind": data.get("kind"),
        "priority": data.get("priority"),
        "note": data.get("note"),
        "payload": decode_base64(data, "payload"),
    }


# ═════════════════════════════════════════════════════════════════════════
# Submissions
# ═════════════════════════════════════════════════════════════════════════


@document_bp.route("/submissions", methods=["POST"])
def create_submission():
    """Body: {kind, priority, user_id | sender_name, note?, payload? (base64)}"""
    data = json_body()
    sub = engine.submit(
        kind=data.get("kind"),
        priority=data.get("priority"),
        user_id=optional_int(data, "user_id"),
        sender_name=data.get("sender_name"),
        payload=decode_base64(data, "payload"),
        note=data.get("note"),
    )
    return jsonify(project(sub)), 201


@document_bp.route("/submissions/<int:submission_id>", methods=["GET"])
def get_submission(submission_id):
    return jsonify(project(engine.get_submission(submission_id))), 200


@document_bp.route("/submissions/<int:submission_id>", methods=["PUT"])
def update_submission(submission_id):
    data = json_body()
    sub = engine.update_submission(
        submission_id, actor_user_id=optional_int(data, "user_id"), **_edit_kwargs(data),
    )
    return jsonify(project(sub)), 200


@document_bp.route("/submissions/<int:submission_id>/approve", methods=["POST"])
def approve_submission(submission_id):
    """Body: {admin_id, admin_name?}"""
    data = json_body()
    approval = engine.approve(
        submission_id, admin_id=require_int(data, "admin_id"), admin_name=data.get("admin_name"),
    )
    return jsonify(project(approval)), 200


@document_bp.route("/submissions/<int:submission_id>/forward", methods=["POST"])
def forward_submission(submission_id):
    """Body: {head_id?}"""
    data = json_body()
    approval = engine.forward(submission_id, head_id=optional_int(data, "head_id"))
    return jsonify(project(approval)), 200


@document_bp.route("/submissions/<int:submission_id>/record", methods=["POST"])
def record_submission(submission_id):
    """Body: {recorder_id, record_status? (recorded | not_recorded), comment?}"""
    data = json_body()
    rec = engine.record(
        submission_id,
        recorder_id=require_int(data, "recorder_id"),
        record_status=data.get("record_status") or "recorded",
        comment=data.get("comment"),
    )
    return jsonify(project(rec)), 200


@document_bp.route("/submissions/<int:submission_id>/revision", methods=["POST"])
def send_for_revision(submission_id):
    """Body: {admin_id, admin_name?, comment?}"""
    data = json_body()
    sub = engine.send_for_revision(
        submission_id,
        admin_id=require_int(data, "admin_id"),
        admin_name=data.get("admin_name"),
        comment=data.get("comment"),
    )
    return jsonify(project(sub)), 200


@document_bp.route("/submissions/<int:submission_id>/resubmit", methods=["POST"])
def resubmit_submission(submission_id):
    data = json_body()
    sub = engine.resubmit(
        submission_id, actor_user_id=optional_int(data, "user_id"), **_edit_kwargs(data),
    )
    return jsonify(project(sub)), 200


# ═════════════════════════════════════════════════════════════════════════
# Records & releases
# ═════════════════════════════════════════════════════════════════════════


@document_bp.route("/records/<int:record_id>/release", methods=["POST"])
def release_record(record_id):
    """Body: {releaser_id, priority?, targets: [{department, division?}, ...]}"""
    data = json_body()
    releases = engine.release(
        record_id,
        releaser_id=require_int(data, "releaser_id"),
        targets=data.get("targets") or [],
        priority=data.get("priority"),
    )
    return jsonify({"items": [project(r) for r in releases], "total": len(releases)}), 200


@document_bp.route("/releases/<int:release_id>/mark-done", methods=["POST"])
def mark_release_done(release_id):
    data = json_body()
    rel = engine.mark_done(release_id, actor_user_id=optional_int(data, "user_id"))
    return jsonify(project(rel)), 200


@document_bp.route("/releases/<int:release_id>/respond", methods=["POST"])
def respond_to_release(release_id):
    """Body: {responder_id, status (actioned | not actioned), comment?, attachment? (base64)}"""
    data = json_body()
    response = engine.respond(
        release_id,
        responder_id=require_int(data, "responder_id"),
        status=data.get("status"),
        comment=data.get("comment"),
        attachment=decode_base64(data, "attachment"),
    )
    return jsonify(project(response)), 201
