"""
Field Permission Service — server-side editability of template fields.

Two policies, selected by template type:

    LegacyFieldPolicy          (workflow_enabled = False)
        A field is editable unless a section permission covering its section
        excludes the role (or marks the section read-only).

    WorkflowStageFieldPolicy   (workflow_enabled = True)
        A field is editable only while the entry sits in the field's
        ``workflowStage`` (default "operation") and the role is in the field's
        ``allowedRoles`` (default: the stage's role set).

Rules shared by both:
    - viewer never edits
    - folio fields are system-assigned and never edited here
    - a field declared ``editable: false`` is read-only
    - superadmin edits everything else

Usage:
    from formcapture.services.field_permissions import policy_for, merge_edits

    policy = policy_for(template)
    policy.is_editable(field, role="quality_manager", stage="quality")
"""

import logging
from collections import namedtuple

from formcapture.core.exceptions import ValidationError
from formcapture.models.auth import ROLE_SUPERADMIN, ROLE_VIEWER
from formcapture.models.form import (
    DEFAULT_FIELD_STAGE,
    DEFAULT_SECTION,
    STAGE_ROLES,
    TABLE_FIELD_TYPES,
    field_label,
)
from formcapture.utils.helpers import parse_date

logger = logging.getLogger(__name__)

MergeResult = namedtuple("MergeResult", ["data", "applied_fields", "ignored_fields"])


# ═════════════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════════════


class FieldPolicy:
    """Base policy: the rules shared by every template type."""

    name = "base"

    def is_editable(self, field: dict, role: str, stage: str | None = None) -> bool:
        if role == ROLE_VIEWER:
            return False
        if field.get("type") == "folio":
            return False
        if field.get("editable") is False:
            return False
        if role == ROLE_SUPERADMIN:
            return True
        return self._role_may_edit(field, role, stage)

    def _role_may_edit(self, field, role, stage):
        return True


class LegacyFieldPolicy(FieldPolicy):
    """Section-permission policy for templates without workflow stages."""

    name = "legacy"

    def __init__(self, section_permissions=None):
        self.section_permissions = [
            p for p in (section_permissions or []) if isinstance(p, dict)
        ]

    def permission_for(self, section: str | None) -> dict | None:
        section = section or DEFAULT_SECTION
        for permission in self.section_permissions:
            if section in (permission.get("sectionId"), permission.get("sectionName")):
                return permission
        return None

    def _role_may_edit(self, field, role, stage):
        permission = self.permission_for(field.get("section"))
        if permission is None:
            return True
        if permission.get("editable") is False:
            return False
        allowed = permission.get("allowedRoles") or []
        return not allowed or role in allowed


class WorkflowStageFieldPolicy(FieldPolicy):
    """Stage-gated policy for workflow-enabled templates."""

    name = "workflow_stage"

    @staticmethod
    def field_stage(field: dict) -> str:
        return field.get("workflowStage") or DEFAULT_FIELD_STAGE

    def allowed_roles(self, field: dict):
        allowed = field.get("allowedRoles")
        if allowed:
            return set(allowed)
        return set(STAGE_ROLES.get(self.field_stage(field), ()))

    def _role_may_edit(self, field, role, stage):
        if self.field_stage(field) != stage:
            return False
        return role in self.allowed_roles(field)


def policy_for(template) -> FieldPolicy:
    """Pick the policy matching the template type."""
    if template.workflow_enabled:
        return WorkflowStageFieldPolicy()
    return LegacyFieldPolicy(template.section_permissions)


def is_field_editable(template, field: dict, role: str, stage: str | None = None) -> bool:
    return policy_for(template).is_editable(field, role, stage)


def editable_field_ids(template, role: str, stage: str | None = None) -> set[str]:
    policy = policy_for(template)
    return {
        f["id"] for f in template.fields
        if f.get("id") and policy.is_editable(f, role, stage)
    }


# ═════════════════════════════════════════════════════════════════════════════
# Value checks
# ═════════════════════════════════════════════════════════════════════════════


def is_empty_value(field: dict, value) -> bool:
    """Whether ``value`` counts as "not filled in" for the field's type."""
    if value is None:
        return True
    field_type = field.get("type")
    if field_type == "checkbox":
        if isinstance(value, list):
            return len(value) == 0
        return value is not True
    if field_type in TABLE_FIELD_TYPES:
        return not isinstance(value, list) or len(value) == 0
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _shape_error(field: dict, value) -> str | None:
    """Return the expected shape when ``value`` does not fit the field type."""
    if is_empty_value(field, value) and field.get("type") != "checkbox":
        return None
    field_type = field.get("type")
    if field_type == "number":
        if isinstance(value, bool):
            return "number"
        if isinstance(value, (int, float)):
            return None
        try:
            float(str(value).strip())
        except ValueError:
            return "number"
        return None
    if field_type == "checkbox":
        if value is None or isinstance(value, (bool, list)):
            return None
        return "boolean or list"
    if field_type == "date":
        return None if parse_date(value) else "date (YYYY-MM-DD or DD.MM.YYYY)"
    if field_type in TABLE_FIELD_TYPES:
        if isinstance(value, list) and all(isinstance(row, dict) for row in value):
            return None
        return "list of row objects"
    return None


def validate_field_shapes(template, data: dict, field_ids=None) -> None:
    """
    Check stored/submitted values against their field types.

    Args:
        field_ids: Restrict the check to these ids (default: every key in data)

    Raises:
        ValidationError listing ``{"id", "label", "expected"}`` per bad field.
    """
    invalid = []
    for field in template.fields:
        fid = field.get("id")
        if not fid or fid not in data:
            continue
        if field_ids is not None and fid not in field_ids:
            continue
        expected = _shape_error(field, data[fid])
        if expected:
            invalid.append({"id": fid, "label": field_label(field), "expected": expected})
    if invalid:
        raise ValidationError("Invalid field values", details={"invalid": invalid})


# ═════════════════════════════════════════════════════════════════════════════
# Edit merging & required-field validation
# ═════════════════════════════════════════════════════════════════════════════


def merge_edits(template, current_data: dict, edits: dict, role: str, stage: str | None) -> MergeResult:
    """
    Apply ``edits`` onto a copy of ``current_data``.

    Only fields editable for ``role`` at ``stage`` are written; edits to
    read-only or unknown field ids are dropped and reported back in
    ``ignored_fields``.  Accepted values must fit their field type.

    Raises:
        ValidationError: an accepted value has the wrong shape (nothing merged)
    """
    merged = dict(current_data or {})
    allowed = editable_field_ids(template, role, stage)

    applied, ignored = [], []
    for fid, value in (edits or {}).items():
        if fid in allowed:
            applied.append(fid)
        else:
            ignored.append(fid)

    accepted = {fid: edits[fid] for fid in applied}
    validate_field_shapes(template, accepted)
    merged.update(accepted)

    if ignored:
        logger.info(
            "Ignored edits to read-only fields",
            extra={"role": role, "stage": stage, "fields": ignored},
        )
    return MergeResult(merged, applied, ignored)


def missing_required_fields(template, data: dict, role: str, stage: str | None) -> list[dict]:
    """Required fields that are editable for ``role`` at ``stage`` but empty."""
    policy = policy_for(template)
    data = data or {}
    missing = []
    for field in template.fields:
        if not field.get("required") or not field.get("id"):
            continue
        if not policy.is_editable(field, role, stage):
            continue
        if is_empty_value(field, data.get(field["id"])):
            missing.append({"id": field["id"], "label": field_label(field)})
    return missing


def missing_stage_fields(template, data: dict, stage: str) -> list[dict]:
    """Required fields belonging to ``stage`` that are still empty (role-independent)."""
    data = data or {}
    missing = []
    for field in template.fields:
        if not field.get("required") or not field.get("id") or field.get("type") == "folio":
            continue
        if WorkflowStageFieldPolicy.field_stage(field) != stage:
            continue
        if is_empty_value(field, data.get(field["id"])):
            missing.append({"id": field["id"], "label": field_label(field)})
    return missing


def validate_required(template, data: dict, role: str, stage: str | None) -> None:
    """Raise ValidationError when any editable required field is empty."""
    missing = missing_required_fields(template, data, role, stage)
    if missing:
        raise ValidationError("Missing required fields", details={"missing": missing})
