"""
Shared pytest fixtures for the Form Capture Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: user factory (X-User-Id identifies the actor)
    - legacy_template / workflow_template: ready-made templates
"""

import pytest

from formcapture import create_app
from formcapture.models import db as _db
from formcapture.models.form import FormTemplate
from formcapture.services.user_service import create_user


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: ``make_user("quality")`` → persisted User with that role."""
    counter = {"n": 0}

    def _make(role, department=None, username=None, password="secret123"):
        counter["n"] += 1
        return create_user(
            username or f"{role}_{counter['n']}",
            password,
            f"{role.title()} {counter['n']}",
            role,
            department=department,
        )

    return _make


@pytest.fixture()
def superadmin(make_user):
    return make_user("superadmin")


# ── Templates ────────────────────────────────────────────────────────────


LEGACY_STRUCTURE = {
    "title": "Inspección de Recepción",
    "fields": [
        {"id": "folio", "type": "folio", "label": "Folio"},
        {"id": "supplier", "type": "text", "label": "Proveedor", "required": True,
         "section": "Recepción"},
        {"id": "received", "type": "date", "label": "Fecha de recepción",
         "section": "Recepción"},
        {"id": "quantity", "type": "number", "label": "Cantidad", "section": "Recepción"},
        {"id": "accepted", "type": "checkbox", "label": "Aceptado", "required": True,
         "section": "Calidad"},
        {"id": "notes", "type": "textarea", "label": "Notas", "section": "Calidad"},
    ],
}

LEGACY_PERMISSIONS = [
    {"sectionName": "Recepción", "allowedRoles": ["production", "production_manager"]},
    {"sectionName": "Calidad", "allowedRoles": ["quality", "quality_manager"]},
]

WORKFLOW_STRUCTURE = {
    "title": "Registro de Producción",
    "sections": [
        {"title": "Datos del lote", "fields": [
            {"id": "folio", "type": "folio", "label": "Folio"},
            {"id": "product", "type": "text", "label": "Producto", "required": True,
             "workflowStage": "init"},
        ]},
        {"title": "Operación", "fields": [
            {"id": "temperature", "type": "number", "label": "Temperatura",
             "required": True, "workflowStage": "operation"},
            {"id": "readings", "type": "table", "label": "Lecturas",
             "workflowStage": "operation",
             "columns": [{"id": "hour", "header": "Hora"}, {"id": "value", "header": "Valor"}]},
        ]},
        {"title": "Calidad", "fields": [
            {"id": "sample_ok", "type": "checkbox", "label": "Muestra aprobada",
             "required": True, "workflowStage": "quality"},
        ]},
    ],
}


def _make_template(name, structure, superadmin, **extra):
    template = FormTemplate(
        name=name,
        structure=structure,
        created_by=superadmin.id,
        **extra,
    )
    _db.session.add(template)
    _db.session.commit()
    return template


@pytest.fixture()
def legacy_template(superadmin):
    return _make_template(
        "CA-RE-01-01 - Inspección de Recepción", LEGACY_STRUCTURE, superadmin,
        section_permissions=LEGACY_PERMISSIONS,
    )


@pytest.fixture()
def workflow_template(superadmin):
    return _make_template(
        "PR-OP-02-01 - Registro de Producción", WORKFLOW_STRUCTURE, superadmin,
        workflow_enabled=True,
    )
