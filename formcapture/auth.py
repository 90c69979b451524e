"""
Form Capture Platform
Authentication & Authorization helpers.

Provides:
    - Resolution of the acting user for each API request
    - ``require_auth`` / ``require_roles`` decorators for blueprints

Identity sources (first match wins):
    1. JWT bearer token (decoded by middleware.jwt_auth into g.jwt_user_id)
    2. ``X-User-Id`` header — only when API_AUTH_ENABLED is false
       (development and tests)

Configuration (env / app config):
    API_AUTH_ENABLED  — "false" accepts X-User-Id without a token
"""

import functools
import logging
import os

from flask import current_app, g, request

from formcapture.models import db
from formcapture.models.auth import User
from formcapture.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _is_auth_enabled() -> bool:
    """Check whether token authentication is enforced (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
        "false", "0", "no", "off",
    )


def _load_user(raw_id) -> User | None:
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user() -> User | None:
    """Return the acting user for this request (cached on ``g``)."""
    if getattr(g, "_current_user_resolved", False):
        return g.current_user

    user = None
    jwt_user_id = getattr(g, "jwt_user_id", None)
    if jwt_user_id is not None:
        user = _load_user(jwt_user_id)
    elif not _is_auth_enabled():
        header = request.headers.get("X-User-Id", "").strip()
        if header:
            user = _load_user(header)

    g.current_user = user
    g._current_user_resolved = True
    return user


# ── Decorators ───────────────────────────────────────────────────────────────

def require_auth(f):
    """
    Decorator: require an authenticated, active user.

    Sets ``g.current_user``; responds 401 otherwise.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_user() is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)

    return decorated


def require_roles(*roles):
    """
    Decorator: require the acting user's role to be one of ``roles``.

    Usage:
        @bp.route("/users")
        @require_roles("admin", "superadmin")
        def list_users(): ...
    """
    allowed = set(roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if user is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if user.role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access %s",
                    user.role, request.path,
                )
                return api_error(E.FORBIDDEN, "Insufficient role for this operation")
            return f(*args, **kwargs)

        return decorated

    return decorator


def init_auth(app):
    """Reset per-request identity state."""

    @app.before_request
    def _reset_identity():
        g.current_user = None
        g._current_user_resolved = False
