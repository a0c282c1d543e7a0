"""
Case Management Tests
=====================

Case CRUD, status history, soft delete/restore, comments, attachments and
firm isolation.
"""

import re

import pytest

from conftest import idem, login, seed_firm, seed_user

CASE_NUMBER = re.compile(r"^CASE-\d{8}-\d{5}$")


def _create_case(client, headers, **overrides):
    body = {"title": "Contract dispute"}
    body.update(overrides)
    resp = client.post("/api/cases", json=body, headers=idem(headers))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestCaseCreate:
    """POST /api/cases"""

    def test_defaults(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        assert CASE_NUMBER.match(case["case_number"])
        assert case["status"] == "open"
        assert case["priority"] == "medium"
        assert case["created_by_xid"] == "X000001"
        assert case["client_id"] == firm["default_client_id"]
        assert case["client_name"] == "Acme Legal"
        assert len(case["status_history"]) == 1
        assert case["status_history"][0]["to"] == "open"

    def test_case_numbers_are_sequential(self, client, firm, admin_headers):
        first = _create_case(client, admin_headers)
        second = _create_case(client, admin_headers)
        assert int(second["case_number"][-5:]) == int(first["case_number"][-5:]) + 1

    def test_title_required(self, client, firm, admin_headers):
        resp = client.post("/api/cases", json={"title": "   "}, headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_title_max_length(self, client, firm, admin_headers):
        resp = client.post("/api/cases", json={"title": "x" * 201}, headers=idem(admin_headers))
        assert resp.status_code == 400

    @pytest.mark.parametrize("field,value", [("status", "pending"), ("priority", "critical")])
    def test_invalid_enums(self, client, firm, admin_headers, field, value):
        resp = client.post("/api/cases", json={"title": "T", field: value}, headers=idem(admin_headers))
        assert resp.status_code == 400

    def test_unknown_client(self, client, firm, admin_headers):
        resp = client.post("/api/cases", json={"title": "T", "client_id": "C999999"}, headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Client not found"

    def test_closed_on_create_sets_close_date(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers, status="closed")
        assert case["actual_close_date"] is not None

    def test_rejected_create_keeps_numbering_contiguous(self, client, firm, admin_headers):
        first = _create_case(client, admin_headers)
        resp = client.post(
            "/api/cases",
            json={"title": "T", "category_id": "missing"},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 400
        second = _create_case(client, admin_headers)
        assert int(second["case_number"][-5:]) == int(first["case_number"][-5:]) + 1


class TestCaseReadUpdate:
    """GET / PATCH /api/cases"""

    def test_get_by_id_or_case_number(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        by_id = client.get(f"/api/cases/{case['id']}", headers=admin_headers)
        by_number = client.get(f"/api/cases/{case['case_number'].lower()}", headers=admin_headers)
        assert by_id.status_code == 200
        assert by_number.status_code == 200
        assert by_number.json()["data"]["id"] == case["id"]

    def test_list_filters(self, client, firm, admin_headers):
        _create_case(client, admin_headers, priority="high")
        _create_case(client, admin_headers, priority="low")

        resp = client.get("/api/cases?priority=high", headers=admin_headers)
        body = resp.json()
        assert body["total"] == 1
        assert body["data"][0]["priority"] == "high"

    def test_update_title(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        resp = client.patch(f"/api/cases/{case['id']}", json={"title": "Renamed"}, headers=idem(admin_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["title"] == "Renamed"

    def test_update_blank_title_rejected(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        resp = client.patch(f"/api/cases/{case['id']}", json={"title": " "}, headers=idem(admin_headers))
        assert resp.status_code == 400

    @pytest.mark.parametrize("field", ["title", "priority"])
    def test_null_required_field_rejected(self, client, firm, admin_headers, field):
        case = _create_case(client, admin_headers)
        resp = client.patch(f"/api/cases/{case['id']}", json={field: None}, headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

        unchanged = client.get(f"/api/cases/{case['id']}", headers=admin_headers).json()["data"]
        assert unchanged[field] == case[field]

    def test_null_optional_field_clears_it(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers, description="Initial notes")
        resp = client.patch(f"/api/cases/{case['id']}", json={"description": None}, headers=idem(admin_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["description"] is None

    def test_employee_cannot_assign(self, client, firm, admin_headers):
        seed_user(firm["firm_id"], "emp@acme.example.com")
        emp_headers = login(client, "emp@acme.example.com")
        case = _create_case(client, emp_headers)

        resp = client.patch(
            f"/api/cases/{case['id']}",
            json={"assigned_to_xid": "X000002"},
            headers=idem(emp_headers),
        )
        assert resp.status_code == 403
        assert resp.json()["message"] == "Missing permission: CASE_ASSIGN"

        resp = client.patch(
            f"/api/cases/{case['id']}",
            json={"assigned_to_xid": "X000002"},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 200


class TestCaseStatus:
    """POST /api/cases/{id}/status"""

    def test_history_and_close_date(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)

        resp = client.post(
            f"/api/cases/{case['id']}/status",
            json={"status": "closed", "comment": "Settled"},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 200
        closed = resp.json()["data"]
        assert closed["status"] == "closed"
        assert closed["actual_close_date"] is not None
        assert closed["status_history"][-1]["from"] == "open"
        assert closed["status_history"][-1]["to"] == "closed"
        assert closed["status_history"][-1]["comment"] == "Settled"

        resp = client.post(f"/api/cases/{case['id']}/status", json={"status": "active"}, headers=idem(admin_headers))
        reopened = resp.json()["data"]
        assert reopened["actual_close_date"] is None
        assert len(reopened["status_history"]) == 3

    def test_same_status_rejected(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        resp = client.post(f"/api/cases/{case['id']}/status", json={"status": "open"}, headers=idem(admin_headers))
        assert resp.status_code == 400


class TestCaseSoftDelete:
    """DELETE + restore"""

    def test_delete_hides_and_restore_returns(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        client.post(f"/api/cases/{case['id']}/comments", json={"text": "note"}, headers=idem(admin_headers))

        resp = client.request("DELETE", f"/api/cases/{case['id']}", json={"reason": "dup"}, headers=idem(admin_headers))
        assert resp.status_code == 200

        assert client.get(f"/api/cases/{case['id']}", headers=admin_headers).status_code == 404
        assert client.get("/api/cases", headers=admin_headers).json()["total"] == 0

        resp = client.post(f"/api/cases/{case['id']}/restore", headers=idem(admin_headers))
        assert resp.status_code == 200
        restored = client.get(f"/api/cases/{case['id']}/comments", headers=admin_headers)
        assert len(restored.json()["data"]) == 1

    def test_delete_records_metadata(self, client, firm, admin_headers):
        from docket_lite.db.models import Case
        from docket_lite.db.session import get_db_session

        case = _create_case(client, admin_headers)
        client.request("DELETE", f"/api/cases/{case['id']}", json={"reason": "dup"}, headers=idem(admin_headers))

        with get_db_session() as db:
            row = db.query(Case).filter(Case.id == case["id"]).execution_options(include_deleted=True).first()
            assert row.deleted_at is not None
            assert row.deleted_by_xid == "X000001"
            assert row.delete_reason == "dup"

    def test_employee_cannot_delete(self, client, firm, admin_headers):
        seed_user(firm["firm_id"], "emp@acme.example.com")
        emp_headers = login(client, "emp@acme.example.com")
        case = _create_case(client, admin_headers)

        resp = client.delete(f"/api/cases/{case['id']}", headers=idem(emp_headers))
        assert resp.status_code == 403


class TestCaseChildren:
    """Comments and attachment metadata"""

    def test_comments(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        resp = client.post(f"/api/cases/{case['id']}/comments", json={"text": "First"}, headers=idem(admin_headers))
        assert resp.status_code == 201
        assert resp.json()["data"]["created_by_xid"] == "X000001"

        resp = client.get(f"/api/cases/{case['id']}/comments", headers=admin_headers)
        assert [c["text"] for c in resp.json()["data"]] == ["First"]

    def test_attachments(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)
        resp = client.post(
            f"/api/cases/{case['id']}/attachments",
            json={"file_name": "brief.pdf", "mime_type": "application/pdf", "size_bytes": 1024},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 201
        attachment_id = resp.json()["data"]["id"]

        resp = client.delete(f"/api/cases/{case['id']}/attachments/{attachment_id}", headers=idem(admin_headers))
        assert resp.status_code == 200
        assert client.get(f"/api/cases/{case['id']}/attachments", headers=admin_headers).json()["data"] == []

        resp = client.delete(f"/api/cases/{case['id']}/attachments/missing", headers=idem(admin_headers))
        assert resp.status_code == 404


class TestFirmIsolation:
    """One firm never sees another firm's cases"""

    def test_cross_tenant_case_is_not_found(self, client, firm, admin_headers):
        case = _create_case(client, admin_headers)

        other = seed_firm(name="Rival Partners", admin_email="boss@rival.example.com")
        rival_headers = login(client, other["admin_email"])

        assert client.get(f"/api/cases/{case['id']}", headers=rival_headers).status_code == 404
        assert client.get(f"/api/cases/{case['case_number']}", headers=rival_headers).status_code == 404
        assert client.get("/api/cases", headers=rival_headers).json()["total"] == 0

        resp = client.patch(f"/api/cases/{case['id']}", json={"title": "hijack"}, headers=idem(rival_headers))
        assert resp.status_code == 404

    def test_case_numbers_are_per_firm(self, client, firm, admin_headers):
        other = seed_firm(name="Rival Partners", admin_email="boss@rival.example.com")
        rival_headers = login(client, other["admin_email"])

        mine = _create_case(client, admin_headers)
        theirs = _create_case(client, rival_headers)
        assert mine["case_number"] == theirs["case_number"]

    def test_token_for_disabled_firm(self, client, firm, admin_headers):
        from docket_lite.db.models import Firm, FirmStatus
        from docket_lite.db.session import get_db_session

        with get_db_session() as db:
            db.query(Firm).filter(Firm.id == firm["firm_id"]).first().status = FirmStatus.SUSPENDED

        resp = client.get("/api/cases", headers=admin_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "FIRM_DISABLED"
