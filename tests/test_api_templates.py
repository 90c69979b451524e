"""
Form template API tests.

Tests cover:
  - Create with structure validation / normalization
  - Role gating (superadmin only for writes)
  - List / detail / update / delete (409 when entries exist)
  - Clone, field display names, next folio
"""

import pytest

from formcapture.models import db
from formcapture.models.audit import ActivityLog
from formcapture.models.form import FormEntry


def _h(user):
    return {"X-User-Id": str(user.id)}


def _structure():
    return {
        "title": "Control de Temperatura",
        "sections": [
            {"title": "Lecturas", "fields": [
                {"id": "folio", "type": "folio", "label": "Folio"},
                {"id": "temp", "type": "number", "label": "Temperatura", "required": True},
                {"id": "turno", "type": "select", "label": "Turno", "options": ["A", "B"]},
            ]},
        ],
    }


@pytest.fixture()
def created(client, superadmin):
    res = client.post(
        "/api/v1/form-templates",
        json={"name": "CA-RE-05-01 - Control de Temperatura", "department": "Calidad",
              "structure": _structure()},
        headers=_h(superadmin),
    )
    assert res.status_code == 201
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreateTemplate:
    def test_create_normalizes_structure(self, created):
        fields = created["structure"]["sections"][0]["fields"]
        assert [f["displayName"] for f in fields] == ["Folio", "Temperatura", "Turno"]
        assert [f["displayOrder"] for f in fields] == [0, 1, 2]
        assert created["workflow_enabled"] is False
        assert created["is_active"] is True

    def test_create_logs_activity(self, created):
        log = ActivityLog.query.filter_by(resource_type="form_template", action="created").one()
        assert log.resource_id == created["id"]

    def test_workflow_flag_from_structure(self, client, superadmin):
        structure = {**_structure(), "workflowEnabled": True}
        res = client.post("/api/v1/form-templates",
                          json={"name": "Con etapas", "structure": structure},
                          headers=_h(superadmin))
        assert res.status_code == 201
        assert res.get_json()["workflow_enabled"] is True

    def test_missing_name(self, client, superadmin):
        res = client.post("/api/v1/form-templates", json={"structure": _structure()},
                          headers=_h(superadmin))
        assert res.status_code == 400

    def test_duplicate_field_ids(self, client, superadmin):
        structure = {"fields": [
            {"id": "a", "type": "text"},
            {"id": "a", "type": "number"},
        ]}
        res = client.post("/api/v1/form-templates", json={"name": "Dup", "structure": structure},
                          headers=_h(superadmin))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert body["details"]["fields"][0]["id"] == "a"

    def test_unknown_field_type(self, client, superadmin):
        structure = {"fields": [{"id": "x", "type": "signature-pad"}]}
        res = client.post("/api/v1/form-templates", json={"name": "Bad", "structure": structure},
                          headers=_h(superadmin))
        assert res.status_code == 422

    def test_bad_section_permission_role(self, client, superadmin):
        res = client.post(
            "/api/v1/form-templates",
            json={"name": "Perms", "structure": _structure(),
                  "section_permissions": [{"sectionName": "Lecturas", "allowedRoles": ["chef"]}]},
            headers=_h(superadmin),
        )
        assert res.status_code == 422

    def test_admin_cannot_create(self, client, make_user):
        res = client.post("/api/v1/form-templates",
                          json={"name": "X", "structure": _structure()},
                          headers=_h(make_user("admin")))
        assert res.status_code == 403

    def test_anonymous_rejected(self, client):
        res = client.post("/api/v1/form-templates", json={"name": "X"})
        assert res.status_code == 401


# ═════════════════════════════════════════════════════════════════════════
# READ / UPDATE / DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestTemplateCRUD:
    def test_list_hides_inactive(self, client, superadmin, created, make_user):
        client.put(f"/api/v1/form-templates/{created['id']}", json={"is_active": False},
                   headers=_h(superadmin))
        production = make_user("production")
        res = client.get("/api/v1/form-templates", headers=_h(production))
        assert res.status_code == 200
        assert res.get_json() == []

        res = client.get("/api/v1/form-templates?include_inactive=1", headers=_h(superadmin))
        items = res.get_json()
        assert len(items) == 1
        assert "structure" not in items[0]

    def test_list_by_department(self, client, superadmin, created):
        res = client.get("/api/v1/form-templates?department=Producción", headers=_h(superadmin))
        assert res.get_json() == []
        res = client.get("/api/v1/form-templates?department=Calidad", headers=_h(superadmin))
        assert len(res.get_json()) == 1

    def test_get_detail(self, client, created, make_user):
        res = client.get(f"/api/v1/form-templates/{created['id']}",
                         headers=_h(make_user("viewer")))
        assert res.status_code == 200
        assert res.get_json()["structure"]["title"] == "Control de Temperatura"

    def test_get_missing(self, client, superadmin):
        res = client.get("/api/v1/form-templates/9999", headers=_h(superadmin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update(self, client, superadmin, created):
        res = client.put(f"/api/v1/form-templates/{created['id']}",
                         json={"description": "Nueva", "workflow_enabled": True},
                         headers=_h(superadmin))
        assert res.status_code == 200
        body = res.get_json()
        assert body["description"] == "Nueva"
        assert body["workflow_enabled"] is True

    def test_update_invalid_structure(self, client, superadmin, created):
        res = client.put(f"/api/v1/form-templates/{created['id']}",
                         json={"structure": {"fields": "nope"}}, headers=_h(superadmin))
        assert res.status_code == 422

    def test_delete_unused(self, client, superadmin, created):
        res = client.delete(f"/api/v1/form-templates/{created['id']}", headers=_h(superadmin))
        assert res.status_code == 200
        assert res.get_json()["id"] == created["id"]
        res = client.get(f"/api/v1/form-templates/{created['id']}", headers=_h(superadmin))
        assert res.status_code == 404

    def test_delete_with_entries_conflicts(self, client, superadmin, created):
        db.session.add(FormEntry(form_template_id=created["id"], data={}, created_by=superadmin.id))
        db.session.commit()
        res = client.delete(f"/api/v1/form-templates/{created['id']}", headers=_h(superadmin))
        assert res.status_code == 409
        assert "1 entries" in res.get_json()["error"]


# ═════════════════════════════════════════════════════════════════════════
# CLONE / DISPLAY NAMES / FOLIO
# ═════════════════════════════════════════════════════════════════════════

class TestTemplateExtras:
    def test_clone(self, client, superadmin, created):
        res = client.post(f"/api/v1/form-templates/{created['id']}/clone", headers=_h(superadmin))
        assert res.status_code == 201
        clone = res.get_json()
        assert clone["id"] != created["id"]
        assert clone["name"] == "CA-RE-05-01 - Control de Temperatura (Copia)"
        assert clone["structure"] == created["structure"]
        log = ActivityLog.query.filter_by(action="cloned").one()
        assert log.details["original_id"] == created["id"]

    def test_update_display_name(self, client, superadmin, created):
        res = client.patch(
            f"/api/v1/form-templates/{created['id']}/fields/temp/display-name",
            json={"displayName": "Temperatura (°C)"}, headers=_h(superadmin),
        )
        assert res.status_code == 200
        assert res.get_json() == {"template_id": created["id"], "field_id": "temp",
                                  "displayName": "Temperatura (°C)"}
        detail = client.get(f"/api/v1/form-templates/{created['id']}",
                            headers=_h(superadmin)).get_json()
        fields = detail["structure"]["sections"][0]["fields"]
        assert fields[1]["displayName"] == "Temperatura (°C)"
        assert fields[1]["label"] == "Temperatura"

    def test_display_name_unknown_field(self, client, superadmin, created):
        res = client.patch(
            f"/api/v1/form-templates/{created['id']}/fields/nope/display-name",
            json={"display_name": "X"}, headers=_h(superadmin),
        )
        assert res.status_code == 404

    def test_display_name_required(self, client, superadmin, created):
        res = client.patch(
            f"/api/v1/form-templates/{created['id']}/fields/temp/display-name",
            json={}, headers=_h(superadmin),
        )
        assert res.status_code == 400

    def test_next_folio(self, client, superadmin, created):
        res = client.get(f"/api/v1/form-templates/{created['id']}/next-folio",
                         headers=_h(superadmin))
        assert res.get_json() == {"next_folio": 1, "formatted_folio": "CA-RE-05-01-F1"}

        db.session.add(FormEntry(form_template_id=created["id"], data={}, folio_number=7,
                                 created_by=superadmin.id))
        db.session.commit()
        res = client.get(f"/api/v1/form-templates/{created['id']}/next-folio",
                         headers=_h(superadmin))
        assert res.get_json()["next_folio"] == 8
