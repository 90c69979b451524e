"""
Rate limiting with Flask-Limiter.

The Limiter instance is created in ``formcapture/__init__.py`` with no
default limits; this module applies per-blueprint limits after the
blueprints are registered.

Limits (per remote IP):
    - auth (login):  LOGIN_RATE_LIMIT, default 10/minute
    - exports:       30/minute (workbook generation is CPU bound)
    - other API:     200/minute
    - health:        exempt

Rate limiting is skipped in testing mode.
"""

import logging

logger = logging.getLogger(__name__)

EXPORT_LIMIT = "30/minute"
API_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints."""
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    login_limit = app.config.get("LOGIN_RATE_LIMIT", "10/minute")
    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(login_limit, methods=["POST"])(bp)

    bp = app.blueprints.get("export")
    if bp:
        limiter.limit(EXPORT_LIMIT)(bp)

    for bp_name in ("users", "templates", "entries", "activity"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(API_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, export: %s, api: %s",
        login_limit, EXPORT_LIMIT, API_LIMIT,
    )
