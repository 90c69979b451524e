"""
Auth Blueprint — login and current profile.

  POST /api/v1/auth/login   — username + password → JWT access token
  GET  /api/v1/auth/me      — current user profile
"""

import logging

from flask import Blueprint, jsonify, request

from formcapture.auth import get_current_user, require_auth
from formcapture.blueprints import register_error_handlers
from formcapture.services.jwt_service import issue_token
from formcapture.services.user_service import authenticate
from formcapture.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "username": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return api_error(E.VALIDATION_REQUIRED, "username and password are required")

    user = authenticate(username, password)
    if user is None:
        logger.warning("Failed login attempt", extra={"remote_addr": request.remote_addr})
        return api_error(E.UNAUTHORIZED, "Invalid username or password")

    return jsonify({**issue_token(user), "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return jsonify(get_current_user().to_dict()), 200
