"""
Workflow Status Engine — role-gated FormEntry status transitions.

The allowed moves live in a single edge table
(``formcapture.models.form.WORKFLOW_TRANSITIONS``); this module only queries
it.  Every write of ``FormEntry.status`` goes through ``transition_entry``.

    initiated ─▶ in_progress ─▶ pending_quality ─▶ completed ─▶ signed
                      ▲               │   ▲            │
                      └── rework ─────┘   └─ reversal ─┘

Usage:
    from formcapture.services.workflow_engine import transition_entry

    result = transition_entry(entry_id=7, target_status="in_progress",
                              actor=user, lot_number="L-2024-001")
"""

import logging
from datetime import datetime, timezone

from formcapture.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from formcapture.models import db
from formcapture.models.audit import write_activity
from formcapture.models.form import (
    ENTRY_STATUSES,
    STATUS_APPROVED,
    STATUS_SIGNED,
    WORKFLOW_TRANSITIONS,
    FormEntry,
    normalize_status,
)

logger = logging.getLogger(__name__)

_REQUIREMENT_LABELS = {
    "lot_number": "Número de lote",
}


def _edges_from(status: str):
    return [edge for edge in WORKFLOW_TRANSITIONS if edge.from_status == status]


def find_edge(from_status: str, to_status: str):
    """Return the edge ``from_status → to_status`` or None."""
    for edge in WORKFLOW_TRANSITIONS:
        if edge.from_status == from_status and edge.to_status == to_status:
            return edge
    return None


def available_transitions(status: str, role: str) -> list[dict]:
    """List the moves ``role`` may make from ``status``.

    Returns:
        [{"status", "label", "requires", "override"}] in table order; empty
        when the role has no edge out of the status.
    """
    current = normalize_status(status)
    return [
        {
            "status": edge.to_status,
            "label": edge.label,
            "requires": list(edge.requires),
            "override": edge.override,
        }
        for edge in _edges_from(current)
        if role in edge.roles
    ]


def validate_transition(status: str, target: str, role: str, entry_fields: dict | None = None):
    """
    Check that ``role`` may move an entry from ``status`` to ``target``.

    ``entry_fields`` holds the values supplied for edge requirements
    (``lot_number``).

    Returns:
        The matching edge.

    Raises:
        TransitionError:       no edge exists for any role
        PermissionDeniedError: the edge exists but not for ``role``
        ValidationError:       the edge requires data that is empty
    """
    current = normalize_status(status)
    wanted = normalize_status(target)

    edge = find_edge(current, wanted) if wanted in ENTRY_STATUSES else None
    if edge is None:
        raise TransitionError(current, wanted or str(target))

    if role not in edge.roles:
        raise PermissionDeniedError(
            f"Role '{role}' may not move an entry from '{current}' to '{wanted}'",
            role=role,
            action="transition",
        )

    supplied = entry_fields or {}
    missing = [
        {"id": name, "label": _REQUIREMENT_LABELS.get(name, name)}
        for name in edge.requires
        if not str(supplied.get(name) or "").strip()
    ]
    if missing:
        raise ValidationError("Missing required data", details={"missing": missing})

    return edge


def transition_entry(
    entry_id: int,
    target_status: str,
    actor,
    *,
    lot_number: str | None = None,
    signature: str | None = None,
    comment: str | None = None,
) -> dict:
    """
    Execute a status transition for a form entry.

    Args:
        entry_id: FormEntry primary key
        target_status: Requested status (aliases accepted)
        actor: Acting User
        lot_number: Required when entering ``in_progress``; falls back to the
                    entry's stored lot number
        signature: Optional image data URL stored when entering ``signed``
        comment: Free text kept in the activity log

    Returns:
        {"entry_id", "previous_status", "new_status", "entry"}

    Raises:
        NotFoundError, TransitionError, PermissionDeniedError, ValidationError
    """
    entry = db.session.get(FormEntry, entry_id)
    if not entry:
        raise NotFoundError(resource="FormEntry", resource_id=entry_id)

    lot = (lot_number or "").strip() or entry.lot_number
    edge = validate_transition(
        entry.status, target_status, actor.role, {"lot_number": lot},
    )

    now = datetime.now(timezone.utc)
    previous_status = normalize_status(entry.status)
    entry.status = edge.to_status
    entry.last_updated_by = actor.id
    entry.updated_at = now

    # Side effects
    if "lot_number" in edge.requires:
        entry.lot_number = lot
    if edge.to_status == STATUS_SIGNED:
        if signature:
            entry.signature = signature
        entry.signed_by = actor.id
        entry.signed_at = now
    elif edge.to_status == STATUS_APPROVED:
        entry.approved_by = actor.id
        entry.approved_at = now

    details = {"from": previous_status, "to": entry.status}
    if comment:
        details["comment"] = comment
    if edge.override:
        details["override"] = True
    write_activity(
        user_id=actor.id,
        action="transitioned",
        resource_type="form_entry",
        resource_id=entry.id,
        details=details,
    )
    db.session.commit()

    logger.info(
        "Entry status changed",
        extra={
            "entry_id": entry.id,
            "from_status": previous_status,
            "to_status": entry.status,
            "actor_id": actor.id,
            "role": actor.role,
        },
    )
    return {
        "entry_id": entry.id,
        "previous_status": previous_status,
        "new_status": entry.status,
        "entry": entry.to_dict(),
    }
