"""
Form template endpoints.

  GET    /api/v1/form-templates                                   — list
  GET    /api/v1/form-templates/<id>                              — detail
  POST   /api/v1/form-templates                                   — create (superadmin)
  PUT    /api/v1/form-templates/<id>                              — update (superadmin)
  DELETE /api/v1/form-templates/<id>                              — delete (superadmin, 409 if used)
  POST   /api/v1/form-templates/<id>/clone                        — clone (superadmin)
  PATCH  /api/v1/form-templates/<id>/fields/<field_id>/display-name (superadmin)
  GET    /api/v1/form-templates/<id>/next-folio                   — next folio preview
"""

from flask import Blueprint, jsonify, request

from formcapture.auth import get_current_user, require_auth, require_roles
from formcapture.blueprints import register_error_handlers
from formcapture.models.auth import ADMIN_ROLES, ROLE_SUPERADMIN
from formcapture.services import template_service
from formcapture.utils.errors import E, api_error

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1/form-templates")
register_error_handlers(template_bp)


@template_bp.route("", methods=["GET"])
@require_auth
def list_templates():
    user = get_current_user()
    include_inactive = (
        request.args.get("include_inactive", "0") in ("1", "true")
        and user.role in ADMIN_ROLES
    )
    templates = template_service.list_templates(
        department=request.args.get("department"),
        include_inactive=include_inactive,
    )
    return jsonify([t.to_dict(include_structure=False) for t in templates]), 200


@template_bp.route("/<int:template_id>", methods=["GET"])
@require_auth
def get_template(template_id):
    return jsonify(template_service.get_template(template_id).to_dict()), 200


@template_bp.route("", methods=["POST"])
@require_roles(ROLE_SUPERADMIN)
def create_template():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    template = template_service.create_template(data, get_current_user())
    return jsonify(template.to_dict()), 201


@template_bp.route("/<int:template_id>", methods=["PUT"])
@require_roles(ROLE_SUPERADMIN)
def update_template(template_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    template = template_service.update_template(template_id, data, get_current_user())
    return jsonify(template.to_dict()), 200


@template_bp.route("/<int:template_id>", methods=["DELETE"])
@require_roles(ROLE_SUPERADMIN)
def delete_template(template_id):
    template_service.delete_template(template_id, get_current_user())
    return jsonify({"message": "Template deleted", "id": template_id}), 200


@template_bp.route("/<int:template_id>/clone", methods=["POST"])
@require_roles(ROLE_SUPERADMIN)
def clone_template(template_id):
    clone = template_service.clone_template(template_id, get_current_user())
    return jsonify(clone.to_dict()), 201


@template_bp.route("/<int:template_id>/fields/<field_id>/display-name", methods=["PATCH"])
@require_roles(ROLE_SUPERADMIN)
def update_display_name(template_id, field_id):
    data = request.get_json(silent=True) or {}
    display_name = data.get("displayName", data.get("display_name"))
    if display_name is None:
        return api_error(E.VALIDATION_REQUIRED, "displayName is required")
    result = template_service.update_field_display_name(
        template_id, field_id, display_name, get_current_user(),
    )
    return jsonify(result), 200


@template_bp.route("/<int:template_id>/next-folio", methods=["GET"])
@require_auth
def next_folio(template_id):
    return jsonify(template_service.next_folio(template_id)), 200
