"""
Activity log and dashboard endpoints.

  GET /api/v1/activity          — recent activity (admin, superadmin)
        ?limit=<n>&resource_type=&resource_id=&user_id=
  GET /api/v1/dashboard/stats   — counters scoped to the caller's visibility
"""

from flask import Blueprint, jsonify, request

from formcapture.auth import get_current_user, require_auth, require_roles
from formcapture.blueprints import register_error_handlers
from formcapture.models.audit import ActivityLog
from formcapture.models.auth import ADMIN_ROLES
from formcapture.services.entry_service import entry_stats

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")
register_error_handlers(activity_bp)


@activity_bp.route("/activity", methods=["GET"])
@require_roles(*ADMIN_ROLES)
def list_activity():
    limit = min(max(request.args.get("limit", 10, type=int), 1), 500)
    q = ActivityLog.query
    resource_type = request.args.get("resource_type")
    if resource_type:
        q = q.filter_by(resource_type=resource_type)
    resource_id = request.args.get("resource_id", type=int)
    if resource_id is not None:
        q = q.filter_by(resource_id=resource_id)
    user_id = request.args.get("user_id", type=int)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    logs = q.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
    return jsonify([log.to_dict() for log in logs]), 200


@activity_bp.route("/dashboard/stats", methods=["GET"])
@require_auth
def dashboard_stats():
    return jsonify(entry_stats(get_current_user())), 200
