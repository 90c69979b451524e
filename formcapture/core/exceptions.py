"""
Application-wide exception hierarchy.

Services raise these types and never return HTTP tuples.  Each blueprint
registers handlers against them once (see ``formcapture.blueprints.register_error_handlers``)
so the same failure always yields the same status code:

    PermissionDeniedError → 403
    NotFoundError         → 404
    TransitionError       → 409
    ConflictError         → 409
    ValidationError       → 422

Usage:
    from formcapture.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FormEntry", resource_id=42)
    raise ValidationError("Missing required fields", details={"missing": [...]})
"""


class NotFoundError(Exception):
    """Raised when a requested template, entry or user does not exist.

    Also used when an entry exists but is outside the caller's visibility,
    so the response does not confirm its existence.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Examples: required fields left empty on submit, a number field holding
    text, a transition into ``in_progress`` without a lot number.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown (missing fields, bad shapes).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised on duplicate unique values or on deleting a referenced resource."""

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised when the acting role may not perform an operation.

    Args:
        message: Human-readable reason.
        role: The acting role, kept for logging.
        action: Short name of the attempted operation.
    """

    def __init__(self, message: str, role: str | None = None, action: str | None = None) -> None:
        self.role = role
        self.action = action
        super().__init__(message)


class TransitionError(Exception):
    """Raised when no edge ``from_status → to_status`` exists for any role."""

    def __init__(self, from_status: str, to_status: str, message: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message or f"Transition not permitted: {from_status} → {to_status}")
