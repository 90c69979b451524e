"""
Form Renderer — template + entry + acting user → field descriptors.

The client draws whatever ``build_form_view`` returns; every read-only flag
is decided here, on the server, by the template's field policy.
"""

from formcapture.models.form import (
    DEFAULT_SECTION,
    OPTION_FIELD_TYPES,
    STAGE_LABELS,
    STATUS_LABELS,
    field_label,
    format_folio,
    normalize_status,
    table_columns,
)
from formcapture.services.field_permissions import policy_for
from formcapture.services.workflow_engine import available_transitions

# Field type → client control
CONTROLS = {
    "text": "text-input",
    "number": "number-input",
    "date": "date-picker",
    "select": "select",
    "checkbox": "checkbox",
    "radio": "radio-group",
    "textarea": "textarea",
    "table": "table",
    "advanced-table": "advanced-table",
    "folio": "folio",
}


def control_for(field: dict) -> str:
    # A checkbox with options is a multi-choice group
    if field.get("type") == "checkbox" and field.get("options"):
        return "checkbox-group"
    return CONTROLS.get(field.get("type"), "text-input")


def _options(field: dict) -> list[dict]:
    result = []
    for option in field.get("options") or []:
        if isinstance(option, dict):
            value = option.get("value", option.get("label"))
            result.append({"value": value, "label": option.get("label", value)})
        else:
            result.append({"value": option, "label": str(option)})
    return result


def describe_field(field: dict, value, read_only: bool, template_name: str = "") -> dict:
    descriptor = {
        "id": field.get("id"),
        "label": field_label(field),
        "type": field.get("type"),
        "control": control_for(field),
        "section": field.get("section") or DEFAULT_SECTION,
        "required": bool(field.get("required")),
        "readOnly": read_only,
        "value": value,
        "options": _options(field) if field.get("type") in OPTION_FIELD_TYPES
        or field.get("type") == "checkbox" else [],
        "columns": table_columns(field),
    }
    if field.get("workflowStage"):
        descriptor["workflowStage"] = field["workflowStage"]
    if field.get("type") == "folio" and isinstance(value, int) and not isinstance(value, bool):
        descriptor["display"] = format_folio(template_name, value)
    return descriptor


def build_form_view(template, entry, user) -> dict:
    """
    Build the render descriptor for one entry as seen by ``user``.

    Returns:
        {
          "template": {...}, "entry": {...},
          "policy": "legacy" | "workflow_stage",
          "sections": [section names in first-seen order],
          "fields": [{id, label, type, control, section, required,
                      readOnly, value, options, columns}, ...],
          "transitions": [{status, label, ...}],
        }
    """
    policy = policy_for(template)
    data = entry.data or {}
    stage = entry.workflow_stage if template.workflow_enabled else None

    fields, sections = [], []
    for field in template.fields:
        fid = field.get("id")
        if not fid:
            continue
        read_only = not policy.is_editable(field, user.role, stage)
        descriptor = describe_field(field, data.get(fid), read_only, template.name)
        if descriptor["section"] not in sections:
            sections.append(descriptor["section"])
        fields.append(descriptor)

    status = normalize_status(entry.status)
    return {
        "template": {
            "id": template.id,
            "name": template.name,
            "title": (template.structure or {}).get("title") or template.name,
            "workflow_enabled": template.workflow_enabled,
        },
        "entry": {
            "id": entry.id,
            "status": status,
            "status_label": STATUS_LABELS.get(status, status),
            "workflow_stage": entry.workflow_stage,
            "workflow_stage_label": STAGE_LABELS.get(entry.workflow_stage, entry.workflow_stage),
            "lot_number": entry.lot_number,
            "folio_number": entry.folio_number,
            "folio": format_folio(template.name, entry.folio_number)
            if entry.folio_number is not None else None,
        },
        "policy": policy.name,
        "sections": sections,
        "fields": fields,
        "editable": any(not f["readOnly"] for f in fields),
        "transitions": available_transitions(status, user.role),
    }
