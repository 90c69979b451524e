"""
Form entry API tests.

Tests cover:
  - Create: folio assignment, ignored read-only fields, role gating
  - Visibility by creator / department
  - Data saving and submit validation
  - Status transitions through the API (403 / 409 / 422 mapping)
  - Locked entries, workflow stage advance, folio edit/delete
  - Exports and dashboard counters
"""

import io

import pytest
from openpyxl import load_workbook

from formcapture.models import db
from formcapture.models.audit import ActivityLog
from formcapture.models.form import FormEntry

DEPT = "Producción"


def _h(user):
    return {"X-User-Id": str(user.id)}


def _create(client, user, template, data=None, **extra):
    body = {"form_template_id": template.id, "data": data or {}, **extra}
    return client.post("/api/v1/form-entries", json=body, headers=_h(user))


def _set_status(entry_id, status):
    entry = db.session.get(FormEntry, entry_id)
    entry.status = status
    db.session.commit()


@pytest.fixture()
def team(make_user):
    return {
        "production": make_user("production", department=DEPT),
        "pm": make_user("production_manager", department=DEPT),
        "quality": make_user("quality", department=DEPT),
        "qm": make_user("quality_manager", department=DEPT),
        "viewer": make_user("viewer", department=DEPT),
        "admin": make_user("admin"),
    }


# ═════════════════════════════════════════════════════════════════════════
# CREATE & READ
# ═════════════════════════════════════════════════════════════════════════

class TestCreateEntry:
    def test_create_assigns_folio(self, client, legacy_template, team):
        res = _create(client, team["production"], legacy_template, {"supplier": "ACME"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "initiated"
        assert body["status_label"] == "Iniciado"
        assert body["workflow_stage"] == "init"
        assert body["department"] == DEPT
        assert body["folio_number"] == 1
        assert body["data"] == {"supplier": "ACME", "folio": "CA-RE-01-01-F1"}

        second = _create(client, team["production"], legacy_template).get_json()
        assert second["folio_number"] == 2
        assert second["data"]["folio"] == "CA-RE-01-01-F2"

    def test_read_only_fields_reported(self, client, legacy_template, team):
        res = _create(client, team["production"], legacy_template,
                      {"supplier": "ACME", "accepted": True, "folio": "HACK-1"})
        body = res.get_json()
        assert sorted(body["ignored_fields"]) == ["accepted", "folio"]
        assert "accepted" not in body["data"]
        assert body["data"]["folio"] == "CA-RE-01-01-F1"

    def test_workflow_entry_starts_in_init(self, client, workflow_template, team):
        res = _create(client, team["pm"], workflow_template,
                      {"product": "Yogur", "temperature": 4}, lot_number="L-1")
        body = res.get_json()
        assert body["data"]["product"] == "Yogur"
        assert body["ignored_fields"] == ["temperature"]
        assert body["lot_number"] == "L-1"

    def test_viewer_cannot_create(self, client, legacy_template, team):
        res = _create(client, team["viewer"], legacy_template)
        assert res.status_code == 403

    def test_template_id_required(self, client, team):
        res = client.post("/api/v1/form-entries", json={"data": {}}, headers=_h(team["production"]))
        assert res.status_code == 400

    def test_unknown_template(self, client, team):
        res = client.post("/api/v1/form-entries", json={"form_template_id": 999},
                          headers=_h(team["production"]))
        assert res.status_code == 404

    def test_inactive_template(self, client, legacy_template, team):
        legacy_template.is_active = False
        db.session.commit()
        res = _create(client, team["production"], legacy_template)
        assert res.status_code == 422

    def test_bad_value_shape(self, client, legacy_template, team):
        res = _create(client, team["production"], legacy_template, {"quantity": "muchos"})
        assert res.status_code == 422
        assert res.get_json()["details"]["invalid"][0]["id"] == "quantity"
        assert FormEntry.query.count() == 0


class TestVisibility:
    def test_same_department_sees_entry(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}", headers=_h(team["quality"]))
        assert res.status_code == 200

    def test_other_department_gets_404(self, client, legacy_template, team, make_user):
        entry = _create(client, team["production"], legacy_template).get_json()
        outsider = make_user("quality", department="Empaque")
        res = client.get(f"/api/v1/form-entries/{entry['id']}", headers=_h(outsider))
        assert res.status_code == 404

    def test_admin_sees_all(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}", headers=_h(team["admin"]))
        assert res.status_code == 200

    def test_list_filters(self, client, legacy_template, workflow_template, team, make_user):
        _create(client, team["production"], legacy_template)
        _create(client, team["pm"], workflow_template)
        outsider = make_user("production", department="Empaque")
        _create(client, outsider, legacy_template)

        res = client.get("/api/v1/form-entries", headers=_h(team["quality"]))
        body = res.get_json()
        assert body["total"] == 2
        assert body["page"] == 1

        res = client.get(f"/api/v1/form-entries?template_id={legacy_template.id}",
                         headers=_h(team["admin"]))
        assert res.get_json()["total"] == 2

    def test_list_status_alias(self, client, legacy_template, team):
        first = _create(client, team["production"], legacy_template).get_json()
        _create(client, team["production"], legacy_template)
        _set_status(first["id"], "draft")
        res = client.get("/api/v1/form-entries?status=initiated", headers=_h(team["admin"]))
        assert res.get_json()["total"] == 2
        res = client.get("/api/v1/form-entries?status=completed", headers=_h(team["admin"]))
        assert res.get_json()["total"] == 0

    def test_list_unknown_status(self, client, team):
        res = client.get("/api/v1/form-entries?status=archived", headers=_h(team["admin"]))
        assert res.status_code == 422

    def test_view_descriptors(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}/view", headers=_h(team["quality"]))
        body = res.get_json()
        fields = {f["id"]: f for f in body["fields"]}
        assert fields["accepted"]["readOnly"] is False
        assert fields["supplier"]["readOnly"] is True
        assert fields["accepted"]["control"] == "checkbox"


# ═════════════════════════════════════════════════════════════════════════
# DATA
# ═════════════════════════════════════════════════════════════════════════

class TestSaveData:
    def test_save_merges_editable_fields(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template, {"supplier": "ACME"}).get_json()
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"accepted": True, "supplier": "Otro"}},
                         headers=_h(team["quality"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["applied_fields"] == ["accepted"]
        assert body["ignored_fields"] == ["supplier"]
        assert body["entry"]["data"]["supplier"] == "ACME"
        assert body["entry"]["data"]["accepted"] is True
        assert body["entry"]["last_updated_by"] == team["quality"].id
        assert ActivityLog.query.filter_by(action="data_saved").count() == 1

    def test_submit_requires_fields(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"notes": "ok"}, "submit": True},
                         headers=_h(team["quality"]))
        assert res.status_code == 422
        assert res.get_json()["details"]["missing"] == [{"id": "accepted", "label": "Aceptado"}]
        stored = db.session.get(FormEntry, entry["id"])
        assert "notes" not in stored.data

    def test_submit_success(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"accepted": True}, "submit": True},
                         headers=_h(team["quality"]))
        assert res.status_code == 200
        assert res.get_json()["submitted"] is True
        assert ActivityLog.query.filter_by(action="submitted").count() == 1

    def test_viewer_cannot_save(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"notes": "x"}}, headers=_h(team["viewer"]))
        assert res.status_code == 403

    def test_data_object_required(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": ["x"]}, headers=_h(team["production"]))
        assert res.status_code == 400

    def test_signed_entry_is_locked(self, client, legacy_template, team, superadmin):
        entry = _create(client, team["production"], legacy_template).get_json()
        _set_status(entry["id"], "signed")
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"supplier": "X"}}, headers=_h(team["admin"]))
        assert res.status_code == 403
        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"supplier": "X"}}, headers=_h(superadmin))
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════
# STATUS TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════

class TestTransitionsAPI:
    def test_list_transitions(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}/transitions", headers=_h(team["pm"]))
        assert [t["status"] for t in res.get_json()["transitions"]] == ["in_progress"]
        res = client.get(f"/api/v1/form-entries/{entry['id']}/transitions",
                         headers=_h(team["production"]))
        assert res.get_json()["transitions"] == []

    def test_start_requires_lot_number(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        url = f"/api/v1/form-entries/{entry['id']}/transition"
        res = client.post(url, json={"status": "in_progress"}, headers=_h(team["pm"]))
        assert res.status_code == 422
        assert res.get_json()["details"]["missing"][0]["id"] == "lot_number"

        res = client.post(url, json={"status": "in_progress", "lot_number": "L-2024-001"},
                          headers=_h(team["pm"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["new_status"] == "in_progress"
        assert body["entry"]["lot_number"] == "L-2024-001"

    def test_wrong_role_is_403(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition",
                          json={"status": "in_progress", "lot_number": "L-1"},
                          headers=_h(team["production"]))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_edge_is_409(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition",
                          json={"status": "signed"}, headers=_h(team["admin"]))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_TRANSITION_NOT_PERMITTED"
        assert body["details"] == {"from": "initiated", "to": "signed"}

    def test_status_required(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition", json={},
                          headers=_h(team["admin"]))
        assert res.status_code == 400

    def test_body_must_be_object(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition", json=["x"],
                          headers=_h(team["admin"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    @pytest.mark.parametrize("key,value", [
        ("lot_number", 123),
        ("signature", {"png": "AAA"}),
        ("comment", ["rework"]),
    ])
    def test_non_string_fields_are_400(self, client, legacy_template, team, key, value):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition",
                          json={"status": "in_progress", key: value},
                          headers=_h(team["pm"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        detail = client.get(f"/api/v1/form-entries/{entry['id']}", headers=_h(team["pm"]))
        assert detail.get_json()["status"] == "initiated"

    def test_hidden_entry_is_404(self, client, legacy_template, team, make_user):
        entry = _create(client, team["production"], legacy_template).get_json()
        outsider = make_user("production_manager", department="Empaque")
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition",
                          json={"status": "in_progress", "lot_number": "L-1"},
                          headers=_h(outsider))
        assert res.status_code == 404

    def test_sign_with_signature(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        _set_status(entry["id"], "completed")
        res = client.post(f"/api/v1/form-entries/{entry['id']}/transition",
                          json={"status": "signed", "signature": "data:image/png;base64,AAA"},
                          headers=_h(team["admin"]))
        assert res.status_code == 200
        body = res.get_json()["entry"]
        assert body["status"] == "signed"
        assert body["signed_by"] == team["admin"].id
        assert body["signature"] == "data:image/png;base64,AAA"


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW STAGES
# ═════════════════════════════════════════════════════════════════════════

class TestAdvanceStage:
    def test_advance_through_stages(self, client, workflow_template, team):
        entry = _create(client, team["pm"], workflow_template, {"product": "Yogur"}).get_json()
        url = f"/api/v1/form-entries/{entry['id']}/advance-stage"

        res = client.post(url, headers=_h(team["pm"]))
        assert res.status_code == 200
        assert res.get_json()["new_stage"] == "operation"

        # Operation stage requires temperature
        res = client.post(url, headers=_h(team["production"]))
        assert res.status_code == 422
        assert res.get_json()["details"]["missing"][0]["id"] == "temperature"

        client.put(f"/api/v1/form-entries/{entry['id']}/data",
                   json={"data": {"temperature": 4}}, headers=_h(team["production"]))
        res = client.post(url, headers=_h(team["production"]))
        assert res.get_json()["new_stage"] == "quality"

        res = client.put(f"/api/v1/form-entries/{entry['id']}/data",
                         json={"data": {"temperature": 9}}, headers=_h(team["production"]))
        assert res.get_json()["ignored_fields"] == ["temperature"]

        client.put(f"/api/v1/form-entries/{entry['id']}/data",
                   json={"data": {"sample_ok": True}}, headers=_h(team["quality"]))
        res = client.post(url, headers=_h(team["quality"]))
        assert res.get_json()["new_stage"] == "completed"

        res = client.post(url, headers=_h(team["quality"]))
        assert res.status_code == 409

    def test_missing_init_field(self, client, workflow_template, team):
        entry = _create(client, team["pm"], workflow_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/advance-stage", headers=_h(team["pm"]))
        assert res.status_code == 422

    def test_wrong_role_for_stage(self, client, workflow_template, team):
        entry = _create(client, team["pm"], workflow_template, {"product": "Yogur"}).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/advance-stage",
                          headers=_h(team["production"]))
        assert res.status_code == 403

    def test_legacy_template_has_no_stages(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.post(f"/api/v1/form-entries/{entry['id']}/advance-stage",
                          headers=_h(team["pm"]))
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# FOLIO & DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestFolioAndDelete:
    def test_quality_manager_edits_folio(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.patch(f"/api/v1/form-entries/{entry['id']}/folio",
                           json={"field_id": "folio", "folio_value": "CA-RE-01-01-F15"},
                           headers=_h(team["qm"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["data"]["folio"] == "CA-RE-01-01-F15"
        assert body["folio_number"] == 15

    def test_production_cannot_edit_folio(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.patch(f"/api/v1/form-entries/{entry['id']}/folio",
                           json={"field_id": "folio", "folio_value": "9"},
                           headers=_h(team["production"]))
        assert res.status_code == 403

    def test_folio_body_must_be_object(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.patch(f"/api/v1/form-entries/{entry['id']}/folio",
                           json=["folio", "9"], headers=_h(team["qm"]))
        assert res.status_code == 400

    def test_folio_on_non_folio_field(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.patch(f"/api/v1/form-entries/{entry['id']}/folio",
                           json={"field_id": "supplier", "folio_value": "9"},
                           headers=_h(team["qm"]))
        assert res.status_code == 422

    def test_delete_folio_roles(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        url = f"/api/v1/form-entries/{entry['id']}/folio/folio"
        assert client.delete(url, headers=_h(team["pm"])).status_code == 403
        res = client.delete(url, headers=_h(team["qm"]))
        assert res.status_code == 200
        assert "folio" not in res.get_json()["data"]

    def test_delete_entry_superadmin_only(self, client, legacy_template, team, superadmin):
        entry = _create(client, team["production"], legacy_template).get_json()
        url = f"/api/v1/form-entries/{entry['id']}"
        assert client.delete(url, headers=_h(team["admin"])).status_code == 403
        assert client.delete(url, headers=_h(superadmin)).status_code == 200
        assert client.get(url, headers=_h(superadmin)).status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# EXPORT & DASHBOARD
# ═════════════════════════════════════════════════════════════════════════

class TestExportAPI:
    def test_export_excel(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template, {"supplier": "ACME"}).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}/export?format=excel",
                         headers=_h(team["production"]))
        assert res.status_code == 200
        assert res.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        assert "attachment" in res.headers["Content-Disposition"]
        wb = load_workbook(io.BytesIO(res.data))
        assert "Formulario" in wb.sheetnames

    def test_export_pdf_is_printable_html(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}/export?format=pdf",
                         headers=_h(team["production"]))
        assert res.status_code == 200
        assert res.mimetype == "text/html"
        assert b"Sistema de Formularios" in res.data

    def test_export_unknown_format(self, client, legacy_template, team):
        entry = _create(client, team["production"], legacy_template).get_json()
        res = client.get(f"/api/v1/form-entries/{entry['id']}/export?format=docx",
                         headers=_h(team["production"]))
        assert res.status_code == 422

    def test_consolidated(self, client, legacy_template, team):
        ids = [_create(client, team["production"], legacy_template).get_json()["id"]
               for _ in range(3)]
        res = client.post("/api/v1/exports/consolidated",
                          json={"template_id": legacy_template.id, "entry_ids": ids,
                                "format": "excel"},
                          headers=_h(team["qm"]))
        assert res.status_code == 200
        wb = load_workbook(io.BytesIO(res.data))
        assert wb["Resumen"]["B3"].value == 3

    def test_consolidated_bad_ids(self, client, legacy_template, team):
        res = client.post("/api/v1/exports/consolidated",
                          json={"template_id": legacy_template.id, "entry_ids": ["a"],
                                "format": "html"},
                          headers=_h(team["qm"]))
        assert res.status_code == 400

    def test_dashboard_stats(self, client, legacy_template, team):
        first = _create(client, team["production"], legacy_template).get_json()
        _create(client, team["production"], legacy_template)
        _set_status(first["id"], "completed")
        client.get(f"/api/v1/form-entries/{first['id']}/export", headers=_h(team["production"]))

        res = client.get("/api/v1/dashboard/stats", headers=_h(team["production"]))
        body = res.get_json()
        assert body["entries"] == 2
        assert body["entries_by_status"] == {"initiated": 1, "completed": 1}
        assert body["templates"] == 1
        assert body["exports"] == 1
