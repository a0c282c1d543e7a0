"""
Client Tests
============

Client onboarding, approval workflow, the protected system client and
client -> case delete cascades.
"""

from conftest import idem, login, seed_user


def _create_client(client, headers, name="Globex Corp"):
    resp = client.post("/api/clients", json={"business_name": name}, headers=idem(headers))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestClientCreate:

    def test_new_client_is_pending(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        assert created["approval_status"] == "PENDING"
        assert created["status"] == "ACTIVE"
        assert created["client_id"] == "C000002"
        assert created["created_by_xid"] == "X000001"

    def test_business_name_required(self, client, firm, admin_headers):
        resp = client.post("/api/clients", json={"business_name": ""}, headers=idem(admin_headers))
        assert resp.status_code == 400

    def test_business_name_cannot_be_nulled(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        resp = client.patch(f"/api/clients/{created['id']}", json={"business_name": None}, headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_employee_cannot_create(self, client, firm):
        seed_user(firm["firm_id"], "emp@acme.example.com")
        resp = client.post("/api/clients", json={"business_name": "X"}, headers=idem(login(client, "emp@acme.example.com")))
        assert resp.status_code == 403

    def test_list_filters_by_approval(self, client, firm, admin_headers):
        _create_client(client, admin_headers)
        resp = client.get("/api/clients?approval_status=PENDING", headers=admin_headers)
        assert [c["business_name"] for c in resp.json()["data"]] == ["Globex Corp"]

        resp = client.get("/api/clients?approval_status=APPROVED", headers=admin_headers)
        assert [c["is_system_client"] for c in resp.json()["data"]] == [True]


class TestClientApproval:

    def test_approve(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        resp = client.post(f"/api/clients/{created['client_id']}/approve", headers=idem(admin_headers))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["approval_status"] == "APPROVED"
        assert data["approved_by_xid"] == "X000001"
        assert data["approved_at"] is not None

        resp = client.post(f"/api/clients/{created['client_id']}/approve", headers=idem(admin_headers))
        assert resp.status_code == 400

    def test_reject_blocks_new_cases(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        resp = client.post(
            f"/api/clients/{created['id']}/reject",
            json={"reason": "Conflict of interest"},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["approval_status"] == "REJECTED"

        resp = client.post(
            "/api/cases",
            json={"title": "T", "client_id": created["client_id"]},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Client has been rejected"

    def test_managed_admin_cannot_approve(self, client, firm, admin_headers):
        seed_user(firm["firm_id"], "junior@acme.example.com", role="Admin", manager_id=firm["admin_id"])
        created = _create_client(client, admin_headers)

        resp = client.post(
            f"/api/clients/{created['id']}/approve",
            headers=idem(login(client, "junior@acme.example.com")),
        )
        assert resp.status_code == 403

    def test_managed_admin_with_flag_can_approve(self, client, firm, admin_headers):
        seed_user(
            firm["firm_id"], "senior@acme.example.com", role="Admin",
            manager_id=firm["admin_id"], can_approve_clients=True,
        )
        created = _create_client(client, admin_headers)

        resp = client.post(
            f"/api/clients/{created['id']}/approve",
            headers=idem(login(client, "senior@acme.example.com")),
        )
        assert resp.status_code == 200


class TestClientLifecycle:

    def test_inactive_client_blocks_new_cases(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        resp = client.patch(
            f"/api/clients/{created['id']}/status",
            json={"status": "INACTIVE"},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 200

        resp = client.post(
            "/api/cases",
            json={"title": "T", "client_id": created["id"]},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Client is inactive"

    def test_system_client_is_protected(self, client, firm, admin_headers):
        default_id = firm["default_client_id"]
        resp = client.patch(f"/api/clients/{default_id}", json={"business_name": "X"}, headers=idem(admin_headers))
        assert resp.status_code == 400
        resp = client.delete(f"/api/clients/{default_id}", headers=idem(admin_headers))
        assert resp.status_code == 400

    def test_delete_cascades_to_cases(self, client, firm, admin_headers):
        created = _create_client(client, admin_headers)
        resp = client.post(
            "/api/cases",
            json={"title": "Globex v. Initech", "client_id": created["client_id"]},
            headers=idem(admin_headers),
        )
        case_id = resp.json()["data"]["id"]

        resp = client.delete(f"/api/clients/{created['id']}", headers=idem(admin_headers))
        assert resp.status_code == 200
        assert client.get(f"/api/clients/{created['id']}", headers=admin_headers).status_code == 404
        assert client.get(f"/api/cases/{case_id}", headers=admin_headers).status_code == 404

        # The case cannot come back before its client does
        resp = client.post(f"/api/cases/{case_id}/restore", headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["code"] == "SOFT_DELETE_REFUSED"

        assert client.post(f"/api/clients/{created['id']}/restore", headers=idem(admin_headers)).status_code == 200
        assert client.post(f"/api/cases/{case_id}/restore", headers=idem(admin_headers)).status_code == 200
        assert client.get(f"/api/cases/{case_id}", headers=admin_headers).status_code == 200
