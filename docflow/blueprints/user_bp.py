"""
User management blueprint.

Endpoints:
    POST   /api/v1/users                        — create user
    PATCH  /api/v1/users/<id>/status            — activate / deactivate
    PATCH  /api/v1/users/<id>/role              — change role
    POST   /api/v1/users/<id>/impersonate       — admin acts as user

Status, role and impersonation schedule override tagging for the user.
"""

from flask import Blueprint, jsonify

from docflow.blueprints import json_body, optional_int, require_int
from docflow.core.exceptions import ValidationError
from docflow.services import user_service
from docflow.utils.errors import register_error_handlers

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["POST"])
def create_user():
    """Body: {full_name, username, password, role?, email?, id_number?, gender?,
    department?, division?}"""
    data = json_body()
    user = user_service.create_user(
        full_name=data.get("full_name"),
        username=data.get("username"),
        password=data.get("password"),
        role=data.get("role") or "Employee",
        email=data.get("email"),
        id_number=data.get("id_number"),
        gender=data.get("gender"),
        department=data.get("department"),
        division=data.get("division"),
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/<int:user_id>/status", methods=["PATCH"])
def set_status(user_id):
    """Body: {active: bool, admin_id?}"""
    data = json_body()
    active = data.get("active")
    if not isinstance(active, bool):
        raise ValidationError("active must be a boolean", details={"active": "invalid"})
    user = user_service.set_user_status(user_id, active=active, admin_id=optional_int(data, "admin_id"))
    return jsonify(user.to_dict()), 200


@user_bp.route("/<int:user_id>/role", methods=["PATCH"])
def set_role(user_id):
    """Body: {role, admin_id?}"""
    data = json_body()
    user = user_service.set_user_role(
        user_id, role=data.get("role"), admin_id=optional_int(data, "admin_id"),
    )
    return jsonify(user.to_dict()), 200


@user_bp.route("/<int:user_id>/impersonate", methods=["POST"])
def impersonate(user_id):
    """Body: {admin_id}"""
    data = json_body()
    target = user_service.impersonate_user(require_int(data, "admin_id"), user_id)
    return jsonify({"impersonating": target}), 200
