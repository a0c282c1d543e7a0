"""
SuperAdmin API Tests
"""

import pytest

from conftest import idem, login, seed_superadmin


@pytest.fixture
def root_headers(client):
    seed_superadmin()
    return login(client, "root@platform.example.com")


def _audit_actions():
    from docket_lite.db.models import SuperadminAuditLog
    from docket_lite.db.session import get_db_session

    with get_db_session() as db:
        return [row.action_type for row in db.query(SuperadminAuditLog).order_by(SuperadminAuditLog.created_at).all()]


class TestFirmCreation:

    def test_create_firm(self, client, root_headers):
        resp = client.post(
            "/api/superadmin/firms",
            json={"name": "Harbor Law", "admin_name": "Hana", "admin_email": "hana@harbor.example.com"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["created"] is True
        assert body["data"]["firm"]["firm_id"] == "FIRM001"
        assert body["data"]["default_client_id"] == "C000001"
        assert body["data"]["admin"]["xid"] == "X000001"
        assert body["_dev_token"]
        assert _audit_actions() == ["FIRM_CREATED"]

        # The invited admin can finish setup with the token
        resp = client.post("/api/auth/set-password", json={"token": body["_dev_token"], "password": "Harbor2026!"})
        assert resp.status_code == 200
        login(client, "hana@harbor.example.com", password="Harbor2026!")

    def test_existing_name_returns_200(self, client, firm, root_headers):
        resp = client.post(
            "/api/superadmin/firms",
            json={"name": "Acme Legal", "admin_name": "X", "admin_email": "x@acme.example.com"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 200
        assert resp.json()["created"] is False
        assert resp.json()["data"]["firm"]["id"] == firm["firm_id"]

    def test_creation_disabled(self, client, root_headers, monkeypatch):
        monkeypatch.setenv("DISABLE_FIRM_CREATION", "true")
        resp = client.post(
            "/api/superadmin/firms",
            json={"name": "Nope", "admin_name": "N", "admin_email": "n@nope.example.com"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 503
        assert resp.json()["code"] == "FIRM_CREATION_DISABLED"

    def test_malformed_admin_email(self, client, root_headers):
        resp = client.post(
            "/api/superadmin/firms",
            json={"name": "Harbor Law", "admin_name": "Hana", "admin_email": "hana@@harbor"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"
        assert _audit_actions() == []

    def test_firm_admin_cannot_use_platform_routes(self, client, firm, admin_headers):
        resp = client.get("/api/superadmin/firms", headers=admin_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "SuperAdmin access required"


class TestFirmLifecycle:

    def test_list_with_user_counts(self, client, firm, root_headers):
        resp = client.get("/api/superadmin/firms", headers=root_headers)
        firms = resp.json()["data"]
        assert [(f["firm_id"], f["user_count"]) for f in firms] == [("FIRM001", 1)]

    def test_disable_blocks_firm_users(self, client, firm, admin_headers, root_headers):
        resp = client.post(f"/api/superadmin/firms/{firm['firm_id']}/disable", headers=idem(root_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "SUSPENDED"

        resp = client.post(f"/api/superadmin/firms/{firm['firm_id']}/disable", headers=idem(root_headers))
        assert resp.status_code == 400

        resp = client.get("/api/cases", headers=admin_headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "FIRM_DISABLED"

        resp = client.post(f"/api/superadmin/firms/{firm['firm_code']}/activate", headers=idem(root_headers))
        assert resp.status_code == 200
        assert client.get("/api/cases", headers=admin_headers).status_code == 200

        assert _audit_actions() == ["FIRM_STATUS_CHANGED", "FIRM_STATUS_CHANGED"]

    def test_patch_status_limits_targets(self, client, firm, root_headers):
        url = f"/api/superadmin/firms/{firm['firm_id']}/status"
        assert client.patch(url, json={"status": "INACTIVE"}, headers=idem(root_headers)).status_code == 400
        assert client.patch(url, json={"status": "BOGUS"}, headers=idem(root_headers)).status_code == 400

        resp = client.patch(url, json={"status": "SUSPENDED"}, headers=idem(root_headers))
        assert resp.status_code == 200

    def test_deactivate(self, client, firm, root_headers):
        resp = client.post(f"/api/superadmin/firms/{firm['firm_id']}/deactivate", headers=idem(root_headers))
        assert resp.json()["data"]["status"] == "INACTIVE"

        resp = client.post("/api/auth/login", json={
            "email": firm["admin_email"], "password": "CorrectHorse42", "firm_slug": firm["slug"],
        })
        assert resp.status_code == 403
        assert resp.json()["code"] == "FIRM_INACTIVE"

    def test_unknown_firm(self, client, root_headers):
        resp = client.post("/api/superadmin/firms/FIRM999/disable", headers=idem(root_headers))
        assert resp.status_code == 404

    def test_add_admin(self, client, firm, root_headers):
        resp = client.post(
            f"/api/superadmin/firms/{firm['firm_id']}/admins",
            json={"name": "Second Admin", "email": "second@acme.example.com"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["role"] == "Admin"
        assert resp.json()["data"]["xid"] == "X000002"
        assert "FIRM_ADMIN_CREATED" in _audit_actions()


class TestImpersonationAudit:

    def test_switch_and_exit_are_audited(self, client, firm, root_headers):
        resp = client.post(
            "/api/superadmin/switch-firm",
            json={"firm_id": firm["firm_id"], "mode": "full_access"},
            headers=idem(root_headers),
        )
        session_id = resp.json()["data"]["impersonation_session_id"]
        assert resp.json()["data"]["mode"] == "FULL_ACCESS"

        resp = client.post("/api/superadmin/exit-firm", json={"session_id": session_id}, headers=idem(root_headers))
        assert resp.json()["data"] == {"scope": "GLOBAL", "session_id": session_id}

        assert _audit_actions() == ["IMPERSONATION_STARTED", "IMPERSONATION_ENDED"]

    def test_exit_without_body(self, client, root_headers):
        resp = client.post("/api/superadmin/exit-firm", headers=idem(root_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["session_id"] is None

    def test_invalid_mode(self, client, firm, root_headers):
        resp = client.post(
            "/api/superadmin/switch-firm",
            json={"firm_id": firm["firm_id"], "mode": "EVERYTHING"},
            headers=idem(root_headers),
        )
        assert resp.status_code == 400


class TestOperations:

    def test_stats(self, client, firm, admin_headers, root_headers):
        client.post("/api/cases", json={"title": "T"}, headers=idem(admin_headers))
        data = client.get("/api/superadmin/stats", headers=root_headers).json()["data"]
        assert data["firms"] == {"total": 1, "by_status": {"ACTIVE": 1, "INACTIVE": 0, "SUSPENDED": 0}}
        assert data["users"] == 1
        assert data["clients"] == 1
        assert data["cases"] == 1

    def test_metrics(self, client, root_headers):
        client.get("/api/nothing-here")
        data = client.get("/api/superadmin/metrics", headers=root_headers).json()["data"]
        assert data["requests"]["requests_total"] >= 2
        assert data["requests"]["errors_by_status"]["404"] == 1
        assert data["system_state"]["state"] == "NORMAL"
        assert "committed" in data["transactions"]

    def test_soft_delete_diagnostics(self, client, firm, admin_headers, root_headers):
        case = client.post("/api/cases", json={"title": "T"}, headers=idem(admin_headers)).json()["data"]
        client.delete(f"/api/cases/{case['id']}", headers=idem(admin_headers))

        data = client.get("/api/superadmin/soft-delete/diagnostics", headers=root_headers).json()["data"]
        cases = next(row for row in data["summary"] if row["entity"] == "Case")
        assert cases["deleted_count"] == 1
        assert cases["eligible_for_purge"] == 0

    def test_system_state_round_trip(self, client, firm, admin_headers, root_headers):
        resp = client.post(
            "/api/superadmin/system-state",
            json={"state": "DEGRADED", "reason": "maintenance"},
            headers=idem(root_headers),
        )
        assert resp.json()["data"]["state"] == "DEGRADED"
        assert resp.json()["data"]["reasons"][0]["reason"] == "maintenance"

        assert client.post("/api/cases", json={"title": "T"}, headers=idem(admin_headers)).status_code == 503

        resp = client.post("/api/superadmin/system-state", json={"state": "normal"}, headers=idem(root_headers))
        assert resp.json()["data"] == {"state": "NORMAL", "reasons": []}
        assert client.post("/api/cases", json={"title": "T"}, headers=idem(admin_headers)).status_code == 201

        assert _audit_actions() == ["SYSTEM_STATE_CHANGED", "SYSTEM_STATE_CHANGED"]

    def test_invalid_system_state(self, client, root_headers):
        resp = client.post("/api/superadmin/system-state", json={"state": "PANIC"}, headers=idem(root_headers))
        assert resp.status_code == 400
