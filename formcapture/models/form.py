"""
Form Capture Platform
Form domain models.

Models:
    - FormTemplate: schema of a capturable form (typed fields, sections,
                    per-section role permissions)
    - FormEntry:    one filled instance of a template, carrying the data map,
                    workflow status / stage and signature metadata

Architecture:
    FormTemplate ──1:N──▶ FormEntry
    FormEntry.status only changes through services.workflow_engine.

Lifecycle states:
    FormEntry.status:          initiated → in_progress → pending_quality
                               → completed → signed  (approved / rejected terminal)
    FormEntry.workflow_stage:  init → operation → quality → completed
"""

import re
from collections import namedtuple
from datetime import datetime, timezone

from formcapture.models import db
from formcapture.models.auth import (
    ROLE_ADMIN,
    ROLE_PRODUCTION,
    ROLE_PRODUCTION_MANAGER,
    ROLE_QUALITY,
    ROLE_QUALITY_MANAGER,
    ROLE_SUPERADMIN,
)


# ── Field types ──────────────────────────────────────────────────────────────

FIELD_TYPES = frozenset({
    "text", "number", "date", "select", "checkbox", "radio",
    "textarea", "table", "advanced-table", "folio",
})

TABLE_FIELD_TYPES = frozenset({"table", "advanced-table"})
OPTION_FIELD_TYPES = frozenset({"select", "radio"})

DEFAULT_SECTION = "General"


# ── Entry statuses ───────────────────────────────────────────────────────────

STATUS_INITIATED = "initiated"
STATUS_IN_PROGRESS = "in_progress"
STATUS_PENDING_QUALITY = "pending_quality"
STATUS_COMPLETED = "completed"
STATUS_SIGNED = "signed"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

ENTRY_STATUSES = frozenset({
    STATUS_INITIATED, STATUS_IN_PROGRESS, STATUS_PENDING_QUALITY,
    STATUS_COMPLETED, STATUS_SIGNED, STATUS_APPROVED, STATUS_REJECTED,
})

# Legacy spellings still present in stored rows and older clients
STATUS_ALIASES = {
    "draft": STATUS_INITIATED,
    "pending_review": STATUS_PENDING_QUALITY,
}

STATUS_LABELS = {
    STATUS_INITIATED: "Iniciado",
    STATUS_IN_PROGRESS: "En progreso",
    STATUS_PENDING_QUALITY: "Pendiente de calidad",
    STATUS_COMPLETED: "Completado",
    STATUS_SIGNED: "Firmado",
    STATUS_APPROVED: "Aprobado",
    STATUS_REJECTED: "Rechazado",
}


def normalize_status(status):
    """Map a raw status string (any case, legacy alias) to its canonical value.

    Returns None for empty input; unknown values are returned lower-cased so
    callers can reject them explicitly.
    """
    if not status:
        return None
    value = str(status).strip().lower()
    return STATUS_ALIASES.get(value, value)


# ── Workflow transition table ────────────────────────────────────────────────
#
# One row per edge.  The engine queries this table; roles without a row for a
# (from_status, to_status) pair have no such transition.
# Every edge into in_progress requires a lot number.

Transition = namedtuple(
    "Transition",
    ["from_status", "to_status", "roles", "label", "requires", "override"],
)

_MANAGERS_OF_PRODUCTION = frozenset({ROLE_PRODUCTION_MANAGER, ROLE_ADMIN, ROLE_SUPERADMIN})
_MANAGERS_OF_QUALITY = frozenset({ROLE_QUALITY_MANAGER, ROLE_ADMIN, ROLE_SUPERADMIN})
_ADMINISTRATORS = frozenset({ROLE_ADMIN, ROLE_SUPERADMIN})

WORKFLOW_TRANSITIONS = (
    Transition(STATUS_INITIATED, STATUS_IN_PROGRESS, _MANAGERS_OF_PRODUCTION,
               "Iniciar proceso (En progreso)", ("lot_number",), False),
    Transition(STATUS_IN_PROGRESS, STATUS_PENDING_QUALITY, _MANAGERS_OF_PRODUCTION,
               "Enviar a calidad", (), False),
    Transition(STATUS_PENDING_QUALITY, STATUS_COMPLETED, _MANAGERS_OF_QUALITY,
               "Marcar como completado", (), False),
    Transition(STATUS_PENDING_QUALITY, STATUS_IN_PROGRESS, _ADMINISTRATORS,
               "Regresar a producción", ("lot_number",), False),
    Transition(STATUS_COMPLETED, STATUS_SIGNED, _ADMINISTRATORS,
               "Firmar y aprobar", (), False),
    Transition(STATUS_COMPLETED, STATUS_PENDING_QUALITY, _ADMINISTRATORS,
               "Regresar a calidad", (), False),
    # Administrative overrides: skip stages for corrections
    Transition(STATUS_INITIATED, STATUS_PENDING_QUALITY, _ADMINISTRATORS,
               "Enviar a calidad", (), True),
    Transition(STATUS_INITIATED, STATUS_COMPLETED, _ADMINISTRATORS,
               "Marcar como completado", (), True),
    Transition(STATUS_IN_PROGRESS, STATUS_COMPLETED, _ADMINISTRATORS,
               "Marcar como completado", (), True),
)


# ── Workflow stages (data-entry phases) ──────────────────────────────────────

STAGE_INIT = "init"
STAGE_OPERATION = "operation"
STAGE_QUALITY = "quality"
STAGE_COMPLETED = "completed"

WORKFLOW_STAGES = (STAGE_INIT, STAGE_OPERATION, STAGE_QUALITY, STAGE_COMPLETED)

# Stage a field belongs to when the template does not say
DEFAULT_FIELD_STAGE = STAGE_OPERATION

# Roles that may work on (edit fields of / advance out of) each stage
STAGE_ROLES = {
    STAGE_INIT: frozenset({ROLE_SUPERADMIN, ROLE_PRODUCTION_MANAGER}),
    STAGE_OPERATION: frozenset({ROLE_SUPERADMIN, ROLE_PRODUCTION, ROLE_PRODUCTION_MANAGER}),
    STAGE_QUALITY: frozenset({ROLE_SUPERADMIN, ROLE_QUALITY_MANAGER, ROLE_QUALITY}),
    STAGE_COMPLETED: frozenset({ROLE_SUPERADMIN}),
}

STAGE_LABELS = {
    STAGE_INIT: "Información General",
    STAGE_OPERATION: "Datos de Proceso",
    STAGE_QUALITY: "Control de Calidad",
    STAGE_COMPLETED: "Completado",
}


# ── Folio ────────────────────────────────────────────────────────────────────

# Template names start with a document code such as "CA-RE-01-01 - NOMBRE"
FOLIO_CODE_PATTERN = re.compile(r"^([A-Z]{2}-[A-Z]{2}-\d{2}-\d{2})")

FOLIO_EDITOR_ROLES = frozenset({ROLE_SUPERADMIN, ROLE_QUALITY_MANAGER, ROLE_PRODUCTION_MANAGER})
FOLIO_DELETER_ROLES = frozenset({ROLE_SUPERADMIN, ROLE_QUALITY_MANAGER})


def format_folio(template_name: str, number: int) -> str:
    """Return the display folio for a template: ``CODE-F<n>`` or ``<n>``."""
    match = FOLIO_CODE_PATTERN.match(template_name or "")
    if match:
        return f"{match.group(1)}-F{number}"
    return str(number)


# ── Structure helpers ────────────────────────────────────────────────────────


def iter_structure_fields(structure) -> list[dict]:
    """Flatten a template structure into its ordered field list.

    Top-level ``fields`` come first, then the fields nested under each
    ``sections[*]``; nested fields inherit the section title as ``section``
    when they do not declare one.  Ordering is by ``displayOrder`` when
    present, otherwise declaration order.
    """
    if not isinstance(structure, dict):
        return []

    collected = []
    for field in structure.get("fields") or []:
        if isinstance(field, dict):
            collected.append(dict(field))
    for section in structure.get("sections") or []:
        if not isinstance(section, dict):
            continue
        title = section.get("title") or section.get("id") or DEFAULT_SECTION
        for field in section.get("fields") or []:
            if isinstance(field, dict):
                item = dict(field)
                item.setdefault("section", title)
                collected.append(item)

    indexed = list(enumerate(collected))
    indexed.sort(key=lambda pair: (_display_order(pair[1], pair[0]), pair[0]))
    return [field for _, field in indexed]


def _display_order(field: dict, position: int):
    order = field.get("displayOrder")
    if isinstance(order, (int, float)) and not isinstance(order, bool):
        return order
    return position


def field_label(field: dict) -> str:
    return field.get("displayName") or field.get("label") or field.get("id", "")


def table_columns(field: dict) -> list[dict]:
    """Column definitions ``[{"id", "header", ...}]`` of a table field.

    Plain tables declare ``columns``; advanced tables group them under
    ``advancedTableConfig.sections[*].columns``.
    """
    raw = list(field.get("columns") or [])
    config = field.get("advancedTableConfig")
    if not raw and isinstance(config, dict):
        for section in config.get("sections") or []:
            if isinstance(section, dict):
                raw.extend(section.get("columns") or [])

    columns = []
    for column in raw:
        if isinstance(column, str):
            columns.append({"id": column, "header": column})
        elif isinstance(column, dict) and column.get("id"):
            item = dict(column)
            item.setdefault("header", column.get("label") or column["id"])
            columns.append(item)
    return columns


# ═════════════════════════════════════════════════════════════════════════════
# Models
# ═════════════════════════════════════════════════════════════════════════════


class FormTemplate(db.Model):
    """
    Capturable form definition.

    ``structure`` JSON:
        {"title": str, "fields": [Field, ...], "sections": [{"title", "fields"}]}
    ``section_permissions`` JSON:
        [{"sectionId", "sectionName", "allowedRoles": [...], "editable", "order"}]
    ``workflow_enabled`` selects the stage-gated field policy.
    """

    __tablename__ = "form_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    department = db.Column(db.String(100))
    structure = db.Column(db.JSON, nullable=False, default=dict)
    section_permissions = db.Column(db.JSON, default=list)
    workflow_enabled = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entries = db.relationship("FormEntry", back_populates="template", lazy="dynamic")

    @property
    def fields(self) -> list[dict]:
        return iter_structure_fields(self.structure)

    def get_field(self, field_id: str) -> dict | None:
        for field in self.fields:
            if field.get("id") == field_id:
                return field
        return None

    def to_dict(self, include_structure=True):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "department": self.department,
            "workflow_enabled": self.workflow_enabled,
            "section_permissions": self.section_permissions or [],
            "created_by": self.created_by,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_structure:
            d["structure"] = self.structure or {}
        return d

    def __repr__(self):
        return f"<FormTemplate {self.id}: {self.name}>"


class FormEntry(db.Model):
    """One captured instance of a FormTemplate."""

    __tablename__ = "form_entries"
    __table_args__ = (
        db.Index("idx_entry_template_status", "form_template_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    form_template_id = db.Column(
        db.Integer,
        db.ForeignKey("form_templates.id"),
        nullable=False,
        index=True,
    )
    data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(30), nullable=False, default=STATUS_INITIATED)
    workflow_stage = db.Column(db.String(20), nullable=False, default=STAGE_INIT)
    department = db.Column(db.String(100))
    lot_number = db.Column(db.String(100))
    folio_number = db.Column(db.Integer)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    last_updated_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # Signature: image data URL + signer + timestamp
    signature = db.Column(db.Text)
    signed_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    signed_at = db.Column(db.DateTime)
    approved_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    approved_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    template = db.relationship("FormTemplate", back_populates="entries")

    def to_dict(self):
        return {
            "id": self.id,
            "form_template_id": self.form_template_id,
            "data": self.data or {},
            "status": self.status,
            "status_label": STATUS_LABELS.get(self.status, self.status),
            "workflow_stage": self.workflow_stage,
            "department": self.department,
            "lot_number": self.lot_number,
            "folio_number": self.folio_number,
            "created_by": self.created_by,
            "last_updated_by": self.last_updated_by,
            "signature": self.signature,
            "signed_by": self.signed_by,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<FormEntry {self.id} template={self.form_template_id} {self.status}>"
