"""
API blueprints.

``register_error_handlers`` maps the service exception hierarchy onto HTTP
responses for one blueprint:

    PermissionDeniedError → 403    NotFoundError → 404
    TransitionError       → 409    ConflictError → 409
    ValidationError       → 422    anything else → 500 (logged)
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from formcapture.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from formcapture.models import db
from formcapture.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Attach the standard exception → response handlers to ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        db.session.rollback()
        logger.warning(
            "Permission denied: %s", error,
            extra={"role": error.role, "path": request.path},
        )
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(TransitionError)
    def _handle_transition(error: TransitionError):
        db.session.rollback()
        return api_error(
            E.TRANSITION_NOT_PERMITTED, str(error),
            details={"from": error.from_status, "to": error.to_status},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
