"""
Seed users and a demo workflow template.

Usage:
    python scripts/seed_users.py                      # development DB
    python scripts/seed_users.py --env production --admin-password <pw>
    python scripts/seed_users.py --no-demo            # superadmin only

This script is idempotent — existing usernames and template names are skipped.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from formcapture import create_app
from formcapture.models import db
from formcapture.models.auth import User
from formcapture.models.form import FormTemplate
from formcapture.services import template_service, user_service


# ═══════════════════════════════════════════════════════════════
# USERS — one per role
# ═══════════════════════════════════════════════════════════════
DEMO_USERS = [
    # (username, name, role, department)
    ("admin", "Administrador", "admin", None),
    ("jefe.produccion", "Jefe de Producción", "production_manager", "Producción"),
    ("operador", "Operador de Línea", "production", "Producción"),
    ("jefe.calidad", "Jefe de Calidad", "quality_manager", "Calidad"),
    ("inspector", "Inspector de Calidad", "quality", "Calidad"),
    ("consulta", "Usuario de Consulta", "viewer", None),
]

DEMO_PASSWORD = "demo1234"


# ═══════════════════════════════════════════════════════════════
# TEMPLATE — staged production record
# ═══════════════════════════════════════════════════════════════
DEMO_TEMPLATE = {
    "name": "PRD-01 Registro de Producción",
    "description": "Registro de lote con etapas de producción y calidad",
    "department": "Producción",
    "workflow_enabled": True,
    "structure": {
        "title": "Registro de Producción",
        "sections": [
            {
                "title": "Datos del lote",
                "fields": [
                    {"id": "folio", "type": "folio", "label": "Folio"},
                    {"id": "product", "type": "text", "label": "Producto",
                     "required": True, "workflowStage": "init"},
                    {"id": "start_date", "type": "date", "label": "Fecha de inicio",
                     "workflowStage": "init"},
                ],
            },
            {
                "title": "Operación",
                "fields": [
                    {"id": "temperature", "type": "number", "label": "Temperatura (°C)",
                     "required": True, "workflowStage": "operation"},
                    {"id": "line", "type": "select", "label": "Línea",
                     "options": ["L1", "L2", "L3"], "workflowStage": "operation"},
                    {"id": "readings", "type": "table", "label": "Lecturas",
                     "workflowStage": "operation",
                     "columns": [{"id": "hour", "header": "Hora"},
                                 {"id": "value", "header": "Valor"}]},
                ],
            },
            {
                "title": "Calidad",
                "fields": [
                    {"id": "approved_sample", "type": "checkbox", "label": "Muestra aprobada",
                     "required": True, "workflowStage": "quality"},
                    {"id": "observations", "type": "textarea", "label": "Observaciones",
                     "workflowStage": "quality"},
                ],
            },
        ],
    },
}


def seed(admin_username, admin_password, with_demo):
    superadmin = User.query.filter_by(username=admin_username).first()
    if superadmin:
        print(f"  · superadmin '{admin_username}' already exists")
    else:
        superadmin = user_service.create_user(
            admin_username, admin_password, "Super Administrador", "superadmin",
        )
        print(f"  + superadmin '{admin_username}'")

    if not with_demo:
        return

    for username, name, role, department in DEMO_USERS:
        if user_service.get_user_by_username(username):
            print(f"  · {username} already exists")
            continue
        user_service.create_user(
            username, DEMO_PASSWORD, name, role,
            department=department, created_by=superadmin.id,
        )
        print(f"  + {username} ({role})")

    if FormTemplate.query.filter_by(name=DEMO_TEMPLATE["name"]).first():
        print(f"  · template '{DEMO_TEMPLATE['name']}' already exists")
    else:
        template_service.create_template(DEMO_TEMPLATE, superadmin)
        print(f"  + template '{DEMO_TEMPLATE['name']}'")


def main():
    parser = argparse.ArgumentParser(description="Seed form capture users")
    parser.add_argument("--env", default="development",
                        choices=["development", "production"])
    parser.add_argument("--admin-username", default="superadmin")
    parser.add_argument("--admin-password",
                        default=os.getenv("SEED_ADMIN_PASSWORD", "admin1234"))
    parser.add_argument("--no-demo", action="store_true",
                        help="Create only the superadmin account")
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        seed(args.admin_username, args.admin_password, not args.no_demo)
        db.session.commit()
    print("Done.")


if __name__ == "__main__":
    main()
