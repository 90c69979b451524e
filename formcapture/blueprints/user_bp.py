"""
User administration endpoints (admin, superadmin).

  GET  /api/v1/users          — list (filters: role, department; paginated)
  POST /api/v1/users          — create
  GET  /api/v1/users/<id>     — detail
  PUT  /api/v1/users/<id>     — update profile / role / password / active flag
"""

from flask import Blueprint, jsonify, request

from formcapture.auth import get_current_user, require_roles
from formcapture.blueprints import register_error_handlers
from formcapture.models.auth import ADMIN_ROLES, ROLE_SUPERADMIN
from formcapture.services import user_service
from formcapture.utils.errors import E, api_error

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["GET"])
@require_roles(*ADMIN_ROLES)
def list_users():
    page = request.args.get("page", 1, type=int)
    per_page = min(request.args.get("per_page", 50, type=int), 200)
    result = user_service.list_users(
        role=request.args.get("role"),
        department=request.args.get("department"),
        page=max(page, 1),
        per_page=max(per_page, 1),
    )
    return jsonify(result), 200


@user_bp.route("", methods=["POST"])
@require_roles(*ADMIN_ROLES)
def create_user():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("username", "password", "name", "role") if not data.get(k)]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED, "Missing required fields", details={"missing": missing},
        )
    actor = get_current_user()
    # Only a superadmin can mint another superadmin
    if data["role"] == ROLE_SUPERADMIN and actor.role != ROLE_SUPERADMIN:
        return api_error(E.FORBIDDEN, "Only superadmin may create superadmin users")

    user = user_service.create_user(
        username=data["username"],
        password=data["password"],
        name=data["name"],
        role=data["role"],
        email=data.get("email"),
        department=data.get("department"),
        created_by=actor.id,
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/<int:user_id>", methods=["GET"])
@require_roles(*ADMIN_ROLES)
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200


@user_bp.route("/<int:user_id>", methods=["PUT"])
@require_roles(*ADMIN_ROLES)
def update_user(user_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    actor = get_current_user()
    target = user_service.get_user(user_id)
    if actor.role != ROLE_SUPERADMIN and (
        target.role == ROLE_SUPERADMIN or data.get("role") == ROLE_SUPERADMIN
    ):
        return api_error(E.FORBIDDEN, "Only superadmin may manage superadmin users")

    user = user_service.update_user(user_id, data, updated_by=actor.id)
    return jsonify(user.to_dict()), 200
