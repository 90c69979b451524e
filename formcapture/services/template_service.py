"""
Template Service — FormTemplate CRUD, structure validation, clone,
field display names and folio numbering.
"""

import copy
import logging

from sqlalchemy import func

from formcapture.core.exceptions import ConflictError, NotFoundError, ValidationError
from formcapture.models import db
from formcapture.models.audit import write_activity
from formcapture.models.auth import VALID_ROLES
from formcapture.models.form import (
    FIELD_TYPES,
    TABLE_FIELD_TYPES,
    WORKFLOW_STAGES,
    FormEntry,
    FormTemplate,
    format_folio,
)

logger = logging.getLogger(__name__)

CLONE_SUFFIX = " (Copia)"


# ═════════════════════════════════════════════════════════════════════════════
# Structure validation
# ═════════════════════════════════════════════════════════════════════════════


def _normalize_field(field, position: int, errors: list, seen: set) -> dict | None:
    if not isinstance(field, dict):
        errors.append({"position": position, "error": "field must be an object"})
        return None
    fid = field.get("id")
    if not isinstance(fid, str) or not fid.strip():
        errors.append({"position": position, "error": "field id is required"})
        return None
    if fid in seen:
        errors.append({"id": fid, "error": "duplicate field id"})
        return None
    seen.add(fid)

    if field.get("type") not in FIELD_TYPES:
        errors.append({"id": fid, "error": f"unknown field type: {field.get('type')!r}"})
        return None
    stage = field.get("workflowStage")
    if stage is not None and stage not in WORKFLOW_STAGES:
        errors.append({"id": fid, "error": f"unknown workflow stage: {stage!r}"})
        return None
    roles = field.get("allowedRoles")
    if roles is not None:
        if not isinstance(roles, list) or any(r not in VALID_ROLES for r in roles):
            errors.append({"id": fid, "error": "allowedRoles must list valid roles"})
            return None
    if field.get("options") is not None and not isinstance(field["options"], list):
        errors.append({"id": fid, "error": "options must be a list"})
        return None
    if field["type"] in TABLE_FIELD_TYPES and field.get("columns") is not None \
            and not isinstance(field["columns"], list):
        errors.append({"id": fid, "error": "columns must be a list"})
        return None

    normalized = dict(field)
    if not normalized.get("displayName"):
        normalized["displayName"] = normalized.get("label") or fid
    if not isinstance(normalized.get("displayOrder"), (int, float)) \
            or isinstance(normalized.get("displayOrder"), bool):
        normalized["displayOrder"] = position
    return normalized


def validate_structure(structure) -> dict:
    """
    Validate and normalize a template structure.

    Field ids must be unique across top-level fields and section fields;
    types must be known.  Missing ``displayName`` falls back to ``label``,
    missing ``displayOrder`` to the declaration position.

    Raises:
        ValidationError listing every offending field.
    """
    if not isinstance(structure, dict):
        raise ValidationError("structure must be an object", details={"structure": "invalid"})
    fields = structure.get("fields", [])
    sections = structure.get("sections", [])
    if not isinstance(fields, list) or not isinstance(sections, list):
        raise ValidationError(
            "structure.fields and structure.sections must be lists",
            details={"structure": "invalid"},
        )

    errors, seen = [], set()
    position = 0
    normalized = dict(structure)

    new_fields = []
    for field in fields:
        item = _normalize_field(field, position, errors, seen)
        position += 1
        if item:
            new_fields.append(item)
    normalized["fields"] = new_fields

    if sections:
        new_sections = []
        for section in sections:
            if not isinstance(section, dict):
                errors.append({"error": "section must be an object"})
                continue
            section_fields = []
            for field in section.get("fields") or []:
                item = _normalize_field(field, position, errors, seen)
                position += 1
                if item:
                    section_fields.append(item)
            new_sections.append({**section, "fields": section_fields})
        normalized["sections"] = new_sections

    if errors:
        raise ValidationError("Invalid template structure", details={"fields": errors})
    return normalized


def validate_section_permissions(permissions) -> list:
    if permissions is None:
        return []
    if not isinstance(permissions, list):
        raise ValidationError(
            "section_permissions must be a list",
            details={"section_permissions": "invalid"},
        )
    for perm in permissions:
        if not isinstance(perm, dict) or not (perm.get("sectionId") or perm.get("sectionName")):
            raise ValidationError(
                "Each section permission needs sectionId or sectionName",
                details={"section_permissions": "invalid"},
            )
        roles = perm.get("allowedRoles") or []
        if not isinstance(roles, list) or any(r not in VALID_ROLES for r in roles):
            raise ValidationError(
                "allowedRoles must list valid roles",
                details={"section_permissions": perm.get("sectionId") or perm.get("sectionName")},
            )
    return permissions


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


def get_template(template_id: int) -> FormTemplate:
    template = db.session.get(FormTemplate, template_id)
    if not template:
        raise NotFoundError(resource="FormTemplate", resource_id=template_id)
    return template


def list_templates(department: str = None, include_inactive: bool = False) -> list[FormTemplate]:
    q = FormTemplate.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    if department:
        q = q.filter_by(department=department)
    return q.order_by(FormTemplate.name.asc()).all()


def create_template(data: dict, actor) -> FormTemplate:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    structure = validate_structure(data.get("structure") or {})

    template = FormTemplate(
        name=name,
        description=data.get("description"),
        department=data.get("department"),
        structure=structure,
        section_permissions=validate_section_permissions(data.get("section_permissions")),
        workflow_enabled=bool(data.get("workflow_enabled", structure.get("workflowEnabled", False))),
        is_active=bool(data.get("is_active", True)),
        created_by=actor.id,
    )
    db.session.add(template)
    db.session.flush()
    write_activity(
        user_id=actor.id, action="created", resource_type="form_template",
        resource_id=template.id, details={"name": template.name},
    )
    db.session.commit()
    logger.info("Template created", extra={"template_id": template.id, "actor_id": actor.id})
    return template


def update_template(template_id: int, data: dict, actor) -> FormTemplate:
    template = get_template(template_id)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        template.name = name
    if "structure" in data:
        template.structure = validate_structure(data["structure"])
    if "section_permissions" in data:
        template.section_permissions = validate_section_permissions(data["section_permissions"])
    for key in ("description", "department"):
        if key in data:
            setattr(template, key, data[key])
    if "workflow_enabled" in data:
        template.workflow_enabled = bool(data["workflow_enabled"])
    if "is_active" in data:
        template.is_active = bool(data["is_active"])

    write_activity(
        user_id=actor.id, action="updated", resource_type="form_template",
        resource_id=template.id, details={"fields": sorted(data.keys())},
    )
    db.session.commit()
    return template


def delete_template(template_id: int, actor) -> None:
    """Delete a template; refused while any entry references it."""
    template = get_template(template_id)
    count = FormEntry.query.filter_by(form_template_id=template.id).count()
    if count:
        raise ConflictError(
            "FormTemplate", "entries", str(count),
            message=f"Template has {count} entries and cannot be deleted; deactivate it instead",
        )
    name = template.name
    db.session.delete(template)
    write_activity(
        user_id=actor.id, action="deleted", resource_type="form_template",
        resource_id=template_id, details={"name": name},
    )
    db.session.commit()
    logger.info("Template deleted", extra={"template_id": template_id, "actor_id": actor.id})


def clone_template(template_id: int, actor) -> FormTemplate:
    """Copy a template under the name ``"<name> (Copia)"``."""
    original = get_template(template_id)
    clone = FormTemplate(
        name=f"{original.name}{CLONE_SUFFIX}",
        description=original.description,
        department=original.department,
        structure=copy.deepcopy(original.structure or {}),
        section_permissions=copy.deepcopy(original.section_permissions or []),
        workflow_enabled=original.workflow_enabled,
        is_active=True,
        created_by=actor.id,
    )
    db.session.add(clone)
    db.session.flush()
    write_activity(
        user_id=actor.id, action="cloned", resource_type="form_template",
        resource_id=clone.id,
        details={"name": clone.name, "original_id": original.id, "original_name": original.name},
    )
    db.session.commit()
    return clone


def update_field_display_name(template_id: int, field_id: str, display_name: str, actor) -> dict:
    """Rename one field's ``displayName`` wherever it sits in the structure."""
    template = get_template(template_id)
    display_name = str(display_name if display_name is not None else "").strip()
    if not display_name:
        raise ValidationError("displayName is required", details={"displayName": "required"})

    structure = copy.deepcopy(template.structure or {})
    containers = [structure.get("fields") or []]
    containers += [s.get("fields") or [] for s in structure.get("sections") or [] if isinstance(s, dict)]

    old_value = None
    found = False
    for fields in containers:
        for field in fields:
            if isinstance(field, dict) and field.get("id") == field_id:
                old_value = field.get("displayName")
                field["displayName"] = display_name
                found = True
    if not found:
        raise NotFoundError(resource="Field", resource_id=field_id)

    # Reassign so the JSON column is flagged dirty
    template.structure = structure
    write_activity(
        user_id=actor.id, action="updated", resource_type="form_template",
        resource_id=template.id,
        details={"field_id": field_id, "old": old_value, "display_name": display_name},
    )
    db.session.commit()
    return {"template_id": template.id, "field_id": field_id, "displayName": display_name}


# ═════════════════════════════════════════════════════════════════════════════
# Folio numbering
# ═════════════════════════════════════════════════════════════════════════════


def next_folio_number(template_id: int) -> int:
    """Highest folio used by the template's entries plus one (starts at 1)."""
    current = (
        db.session.query(func.max(FormEntry.folio_number))
        .filter(FormEntry.form_template_id == template_id)
        .scalar()
    )
    return (current or 0) + 1


def next_folio(template_id: int) -> dict:
    template = get_template(template_id)
    number = next_folio_number(template.id)
    return {"next_folio": number, "formatted_folio": format_folio(template.name, number)}
