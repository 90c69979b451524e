"""
Form entry endpoints.

  GET    /api/v1/form-entries                       — list (template_id, status; visibility-scoped)
  POST   /api/v1/form-entries                       — create
  GET    /api/v1/form-entries/<id>                  — detail
  GET    /api/v1/form-entries/<id>/view             — render descriptors for the caller
  PUT    /api/v1/form-entries/<id>/data             — save data {data, submit}
  GET    /api/v1/form-entries/<id>/transitions      — allowed status moves
  POST   /api/v1/form-entries/<id>/transition       — change status
  POST   /api/v1/form-entries/<id>/advance-stage    — next workflow stage
  PATCH  /api/v1/form-entries/<id>/folio            — edit a folio field
  DELETE /api/v1/form-entries/<id>/folio/<field_id> — clear a folio field
  DELETE /api/v1/form-entries/<id>                  — delete (superadmin)
"""

from flask import Blueprint, jsonify, request

from formcapture.auth import get_current_user, require_auth, require_roles
from formcapture.blueprints import register_error_handlers
from formcapture.models.auth import ROLE_SUPERADMIN
from formcapture.services import entry_service, workflow_engine
from formcapture.services.form_renderer import build_form_view
from formcapture.utils.errors import E, api_error

entry_bp = Blueprint("entries", __name__, url_prefix="/api/v1/form-entries")
register_error_handlers(entry_bp)


@entry_bp.route("", methods=["GET"])
@require_auth
def list_entries():
    page = request.args.get("page", 1, type=int)
    per_page = min(request.args.get("per_page", 50, type=int), 200)
    result = entry_service.list_entries(
        get_current_user(),
        template_id=request.args.get("template_id", type=int),
        status=request.args.get("status"),
        page=max(page, 1),
        per_page=max(per_page, 1),
    )
    return jsonify(result), 200


@entry_bp.route("", methods=["POST"])
@require_auth
def create_entry():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    template_id = data.get("form_template_id")
    if isinstance(template_id, bool) or not isinstance(template_id, int):
        return api_error(E.VALIDATION_REQUIRED, "form_template_id (integer) is required")

    entry, ignored = entry_service.create_entry(data, get_current_user())
    return jsonify({**entry.to_dict(), "ignored_fields": ignored}), 201


@entry_bp.route("/<int:entry_id>", methods=["GET"])
@require_auth
def get_entry(entry_id):
    return jsonify(entry_service.get_entry(entry_id, get_current_user()).to_dict()), 200


@entry_bp.route("/<int:entry_id>/view", methods=["GET"])
@require_auth
def view_entry(entry_id):
    user = get_current_user()
    entry = entry_service.get_entry(entry_id, user)
    return jsonify(build_form_view(entry.template, entry, user)), 200


@entry_bp.route("/<int:entry_id>/data", methods=["PUT"])
@require_auth
def save_data(entry_id):
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        return api_error(E.VALIDATION_REQUIRED, "data (object) is required")
    result = entry_service.save_entry_data(
        entry_id, body["data"], get_current_user(), submit=bool(body.get("submit")),
    )
    return jsonify(result), 200


@entry_bp.route("/<int:entry_id>/transitions", methods=["GET"])
@require_auth
def list_transitions(entry_id):
    user = get_current_user()
    entry = entry_service.get_entry(entry_id, user)
    return jsonify({
        "entry_id": entry.id,
        "status": entry.status,
        "transitions": workflow_engine.available_transitions(entry.status, user.role),
    }), 200


@entry_bp.route("/<int:entry_id>/transition", methods=["POST"])
@require_auth
def transition(entry_id):
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    target = body.get("status")
    if not target or not isinstance(target, str):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    for key in ("lot_number", "signature", "comment"):
        if body.get(key) is not None and not isinstance(body[key], str):
            return api_error(E.VALIDATION_INVALID, f"{key} must be a string")
    user = get_current_user()
    # Hidden entries look missing before any permission question is asked
    entry_service.get_entry(entry_id, user)
    result = workflow_engine.transition_entry(
        entry_id,
        target,
        user,
        lot_number=body.get("lot_number"),
        signature=body.get("signature"),
        comment=body.get("comment"),
    )
    return jsonify(result), 200


@entry_bp.route("/<int:entry_id>/advance-stage", methods=["POST"])
@require_auth
def advance_stage(entry_id):
    return jsonify(entry_service.advance_stage(entry_id, get_current_user())), 200


@entry_bp.route("/<int:entry_id>/folio", methods=["PATCH"])
@require_auth
def update_folio(entry_id):
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    field_id = body.get("field_id")
    if not field_id or "folio_value" not in body:
        return api_error(E.VALIDATION_REQUIRED, "field_id and folio_value are required")
    entry = entry_service.update_folio(entry_id, field_id, body["folio_value"], get_current_user())
    return jsonify(entry.to_dict()), 200


@entry_bp.route("/<int:entry_id>/folio/<field_id>", methods=["DELETE"])
@require_auth
def delete_folio(entry_id, field_id):
    entry = entry_service.delete_folio(entry_id, field_id, get_current_user())
    return jsonify(entry.to_dict()), 200


@entry_bp.route("/<int:entry_id>", methods=["DELETE"])
@require_roles(ROLE_SUPERADMIN)
def delete_entry(entry_id):
    entry_service.delete_entry(entry_id, get_current_user())
    return jsonify({"message": "Entry deleted", "id": entry_id}), 200
