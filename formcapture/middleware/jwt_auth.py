"""
JWT Auth Middleware — parses the bearer token, sets g.jwt_*.

Invalid or expired tokens leave ``g.jwt_user_id`` unset; the
``require_auth`` decorator then answers 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from formcapture.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
            g.jwt_user_id = payload.get("sub")
            g.jwt_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token", extra={"path": path})
