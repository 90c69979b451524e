"""
Entry Service — FormEntry capture, visibility, data saving, workflow
stages and folio management.

Status changes are NOT made here; they go through
``formcapture.services.workflow_engine.transition_entry``.

Visibility:
    superadmin / admin  → every entry
    everyone else       → entries they created or from their own department
"""

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import or_

from formcapture.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
    ValidationError,
)
from formcapture.models import db
from formcapture.models.audit import ActivityLog, write_activity
from formcapture.models.auth import (
    ADMIN_ROLES,
    ENTRY_CREATOR_ROLES,
    ROLE_SUPERADMIN,
    ROLE_VIEWER,
    User,
)
from formcapture.models.form import (
    ENTRY_STATUSES,
    FOLIO_DELETER_ROLES,
    FOLIO_EDITOR_ROLES,
    STAGE_INIT,
    STAGE_ROLES,
    STATUS_ALIASES,
    STATUS_APPROVED,
    STATUS_INITIATED,
    STATUS_REJECTED,
    STATUS_SIGNED,
    WORKFLOW_STAGES,
    FormEntry,
    FormTemplate,
    format_folio,
    normalize_status,
)
from formcapture.services import field_permissions
from formcapture.services.template_service import get_template, next_folio_number

logger = logging.getLogger(__name__)

# Entries in these statuses no longer accept data edits (superadmin excepted)
LOCKED_STATUSES = frozenset({STATUS_SIGNED, STATUS_APPROVED, STATUS_REJECTED})

_FOLIO_NUMBER_RE = re.compile(r"(?:-F)?(\d+)$")


# ═════════════════════════════════════════════════════════════════════════════
# Visibility
# ═════════════════════════════════════════════════════════════════════════════


def can_view_entry(entry: FormEntry, user) -> bool:
    if user.role in ADMIN_ROLES:
        return True
    if entry.created_by == user.id:
        return True
    return bool(user.department) and entry.department == user.department


def _visible_query(user):
    q = FormEntry.query
    if user.role in ADMIN_ROLES:
        return q
    conditions = [FormEntry.created_by == user.id]
    if user.department:
        conditions.append(FormEntry.department == user.department)
    return q.filter(or_(*conditions))


def get_entry(entry_id: int, user) -> FormEntry:
    """Load an entry the user may see; invisible entries look missing."""
    entry = db.session.get(FormEntry, entry_id)
    if not entry or not can_view_entry(entry, user):
        raise NotFoundError(resource="FormEntry", resource_id=entry_id)
    return entry


def list_entries(
    user,
    template_id: int = None,
    status: str = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    q = _visible_query(user)
    if template_id:
        q = q.filter(FormEntry.form_template_id == template_id)
    if status:
        wanted = normalize_status(status)
        if wanted not in ENTRY_STATUSES:
            raise ValidationError(f"Unknown status: {status}", details={"status": status})
        aliases = [alias for alias, target in STATUS_ALIASES.items() if target == wanted]
        q = q.filter(FormEntry.status.in_([wanted] + aliases))
    q = q.order_by(FormEntry.created_at.desc(), FormEntry.id.desc())

    total = q.count()
    entries = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [e.to_dict() for e in entries],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


def visible_entries(user, entry_ids, template_id: int = None) -> list[FormEntry]:
    """Subset of ``entry_ids`` the user may see, newest first."""
    if not entry_ids:
        return []
    q = _visible_query(user).filter(FormEntry.id.in_(entry_ids))
    if template_id:
        q = q.filter(FormEntry.form_template_id == template_id)
    return q.order_by(FormEntry.created_at.desc(), FormEntry.id.desc()).all()


# ═════════════════════════════════════════════════════════════════════════════
# Capture
# ═════════════════════════════════════════════════════════════════════════════


def _stage_for(template, entry):
    return entry.workflow_stage if template.workflow_enabled else None


def create_entry(data: dict, actor) -> tuple[FormEntry, list[str]]:
    """
    Start a new entry for a template; returns ``(entry, ignored_fields)``.

    The entry starts ``initiated`` in stage ``init``; submitted values are
    merged through the field policy, and folio fields receive the next
    per-template folio.
    """
    if actor.role not in ENTRY_CREATOR_ROLES:
        raise PermissionDeniedError(
            f"Role '{actor.role}' may not create entries", role=actor.role, action="create_entry",
        )
    template = get_template(data["form_template_id"])
    if not template.is_active:
        raise ValidationError("Template is inactive", details={"form_template_id": template.id})

    initial = data.get("data") or {}
    if not isinstance(initial, dict):
        raise ValidationError("data must be an object", details={"data": "invalid"})

    stage = STAGE_INIT if template.workflow_enabled else None
    merged = field_permissions.merge_edits(template, {}, initial, actor.role, stage)

    folio = next_folio_number(template.id)
    values = dict(merged.data)
    for field in template.fields:
        if field.get("type") == "folio" and field.get("id"):
            values[field["id"]] = format_folio(template.name, folio)

    entry = FormEntry(
        form_template_id=template.id,
        data=values,
        status=STATUS_INITIATED,
        workflow_stage=STAGE_INIT,
        department=data.get("department") or actor.department,
        lot_number=(data.get("lot_number") or None),
        folio_number=folio,
        created_by=actor.id,
        last_updated_by=actor.id,
    )
    db.session.add(entry)
    db.session.flush()
    write_activity(
        user_id=actor.id, action="created", resource_type="form_entry",
        resource_id=entry.id,
        details={"form_template_id": template.id, "folio_number": folio},
    )
    db.session.commit()
    logger.info(
        "Entry created",
        extra={"entry_id": entry.id, "template_id": template.id, "actor_id": actor.id},
    )
    return entry, merged.ignored_fields


def save_entry_data(entry_id: int, edits: dict, actor, submit: bool = False) -> dict:
    """
    Merge ``edits`` into the entry's data map.

    Only fields editable for the actor (at the entry's stage) are written;
    the rest are reported back as ``ignored_fields``.  With ``submit`` every
    editable required field must be filled, otherwise nothing is saved.

    Returns:
        {"entry", "applied_fields", "ignored_fields", "submitted"}
    """
    entry = get_entry(entry_id, actor)
    template = entry.template

    if actor.role == ROLE_VIEWER:
        raise PermissionDeniedError("Viewers cannot edit entries", role=actor.role, action="save_data")
    if normalize_status(entry.status) in LOCKED_STATUSES and actor.role != ROLE_SUPERADMIN:
        raise PermissionDeniedError(
            f"Entry is {entry.status} and can no longer be edited",
            role=actor.role, action="save_data",
        )
    if not isinstance(edits, dict):
        raise ValidationError("data must be an object", details={"data": "invalid"})

    stage = _stage_for(template, entry)
    merged = field_permissions.merge_edits(template, entry.data or {}, edits, actor.role, stage)
    if submit:
        field_permissions.validate_required(template, merged.data, actor.role, stage)

    entry.data = merged.data
    entry.last_updated_by = actor.id
    entry.updated_at = datetime.now(timezone.utc)
    write_activity(
        user_id=actor.id,
        action="submitted" if submit else "data_saved",
        resource_type="form_entry",
        resource_id=entry.id,
        details={"fields": merged.applied_fields, "ignored": merged.ignored_fields},
    )
    db.session.commit()
    return {
        "entry": entry.to_dict(),
        "applied_fields": merged.applied_fields,
        "ignored_fields": merged.ignored_fields,
        "submitted": bool(submit),
    }


def advance_stage(entry_id: int, actor) -> dict:
    """
    Move a workflow entry to its next data-entry stage.

    The actor must hold one of the current stage's roles and every required
    field of the current stage must be filled.
    """
    entry = get_entry(entry_id, actor)
    template = entry.template
    if not template.workflow_enabled:
        raise ValidationError(
            "Template has no workflow stages", details={"form_template_id": template.id},
        )

    current = entry.workflow_stage or STAGE_INIT
    index = WORKFLOW_STAGES.index(current) if current in WORKFLOW_STAGES else 0
    if index >= len(WORKFLOW_STAGES) - 1:
        raise TransitionError(current, current, "Entry is already in the final stage")
    if actor.role not in STAGE_ROLES.get(current, ()):
        raise PermissionDeniedError(
            f"Role '{actor.role}' may not close stage '{current}'",
            role=actor.role, action="advance_stage",
        )

    missing = field_permissions.missing_stage_fields(template, entry.data or {}, current)
    if missing:
        raise ValidationError("Missing required fields", details={"missing": missing})

    target = WORKFLOW_STAGES[index + 1]
    entry.workflow_stage = target
    entry.last_updated_by = actor.id
    entry.updated_at = datetime.now(timezone.utc)
    write_activity(
        user_id=actor.id, action="stage_advanced", resource_type="form_entry",
        resource_id=entry.id, details={"from": current, "to": target},
    )
    db.session.commit()
    logger.info(
        "Entry stage advanced",
        extra={"entry_id": entry.id, "from_stage": current, "to_stage": target, "actor_id": actor.id},
    )
    return {"entry_id": entry.id, "previous_stage": current, "new_stage": target,
            "entry": entry.to_dict()}


def delete_entry(entry_id: int, actor) -> None:
    if actor.role != ROLE_SUPERADMIN:
        raise PermissionDeniedError("Only superadmin may delete entries", role=actor.role,
                                    action="delete_entry")
    entry = db.session.get(FormEntry, entry_id)
    if not entry:
        raise NotFoundError(resource="FormEntry", resource_id=entry_id)
    template_id = entry.form_template_id
    db.session.delete(entry)
    write_activity(
        user_id=actor.id, action="deleted", resource_type="form_entry",
        resource_id=entry_id, details={"form_template_id": template_id},
    )
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Folio
# ═════════════════════════════════════════════════════════════════════════════


def _folio_field(template, field_id: str) -> dict:
    field = template.get_field(field_id)
    if not field:
        raise NotFoundError(resource="Field", resource_id=field_id)
    if field.get("type") != "folio":
        raise ValidationError("Field is not a folio field", details={"field_id": field_id})
    return field


def update_folio(entry_id: int, field_id: str, folio_value, actor) -> FormEntry:
    if actor.role not in FOLIO_EDITOR_ROLES:
        raise PermissionDeniedError("Role may not edit folios", role=actor.role, action="update_folio")
    entry = get_entry(entry_id, actor)
    _folio_field(entry.template, field_id)

    value = str(folio_value if folio_value is not None else "").strip()
    if not value:
        raise ValidationError("folio_value is required", details={"folio_value": "required"})

    data = dict(entry.data or {})
    old = data.get(field_id)
    data[field_id] = value
    entry.data = data
    match = _FOLIO_NUMBER_RE.search(value)
    if match:
        entry.folio_number = int(match.group(1))
    entry.last_updated_by = actor.id
    write_activity(
        user_id=actor.id, action="folio_updated", resource_type="form_entry",
        resource_id=entry.id, details={"field_id": field_id, "old": old, "new": value},
    )
    db.session.commit()
    return entry


def delete_folio(entry_id: int, field_id: str, actor) -> FormEntry:
    if actor.role not in FOLIO_DELETER_ROLES:
        raise PermissionDeniedError("Role may not delete folios", role=actor.role, action="delete_folio")
    entry = get_entry(entry_id, actor)
    _folio_field(entry.template, field_id)

    data = dict(entry.data or {})
    old = data.pop(field_id, None)
    entry.data = data
    entry.last_updated_by = actor.id
    write_activity(
        user_id=actor.id, action="folio_deleted", resource_type="form_entry",
        resource_id=entry.id, details={"field_id": field_id, "old": old},
    )
    db.session.commit()
    return entry


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard
# ═════════════════════════════════════════════════════════════════════════════


def entry_stats(user) -> dict:
    """Counters for the dashboard, scoped to the user's visible entries."""
    visible = _visible_query(user)
    by_status = {}
    for entry_status, count in (
        visible.with_entities(FormEntry.status, db.func.count(FormEntry.id))
        .group_by(FormEntry.status)
        .all()
    ):
        key = normalize_status(entry_status)
        by_status[key] = by_status.get(key, 0) + count

    exports = ActivityLog.query.filter(
        ActivityLog.action.in_(("exported", "exported_consolidated"))
    )
    if user.role not in ADMIN_ROLES:
        exports = exports.filter(ActivityLog.user_id == user.id)

    return {
        "users": User.query.filter_by(is_active=True).count(),
        "templates": FormTemplate.query.filter_by(is_active=True).count(),
        "entries": sum(by_status.values()),
        "entries_by_status": by_status,
        "exports": exports.count(),
    }
