"""
User Management Tests
=====================

Invites, immutable identity fields, deactivation, soft delete and the
admin routes built on users.
"""

from conftest import PASSWORD, idem, login, seed_user


def _invite(client, headers, email="new@acme.example.com", role="Employee"):
    return client.post(
        "/api/users",
        json={"email": email, "name": "New Hire", "role": role},
        headers=idem(headers),
    )


class TestUserInvite:

    def test_invite_assigns_next_xid(self, client, firm, admin_headers):
        resp = _invite(client, admin_headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["data"]["xid"] == "X000002"
        assert body["data"]["status"] == "INVITED"
        assert body["_dev_token"]

    def test_duplicate_email(self, client, firm, admin_headers):
        assert _invite(client, admin_headers).status_code == 201
        resp = _invite(client, admin_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "DUPLICATE"

    def test_role_required_and_valid(self, client, firm, admin_headers):
        assert _invite(client, admin_headers, role="").status_code == 400
        assert _invite(client, admin_headers, role="Janitor").status_code == 400
        assert _invite(client, admin_headers, role="SuperAdmin").status_code == 400

    def test_invalid_email(self, client, firm, admin_headers):
        for email in ("not-an-email", "a..b@x.com", "<a>@x.com"):
            resp = _invite(client, admin_headers, email=email)
            assert resp.status_code == 400
            assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_employee_cannot_invite(self, client, firm):
        seed_user(firm["firm_id"], "emp@acme.example.com")
        resp = _invite(client, login(client, "emp@acme.example.com"))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Admin access required"

    def test_deleted_user_xid_is_not_reused(self, client, firm, admin_headers):
        first = _invite(client, admin_headers, email="one@acme.example.com").json()["data"]
        client.delete(f"/api/users/{first['id']}", headers=idem(admin_headers))

        second = _invite(client, admin_headers, email="two@acme.example.com").json()["data"]
        assert second["xid"] == "X000003"


class TestUserUpdate:

    def test_identity_fields_are_immutable(self, client, firm, admin_headers):
        user = _invite(client, admin_headers).json()["data"]
        for change in ({"xid": "X000099"}, {"firm_id": "elsewhere"}):
            resp = client.patch(f"/api/users/{user['id']}", json=change, headers=idem(admin_headers))
            assert resp.status_code == 400
            assert resp.json()["message"] == "firm_id/xID cannot be changed"

    def test_update_by_xid(self, client, firm, admin_headers):
        _invite(client, admin_headers)
        resp = client.patch("/api/users/X000002", json={"name": "Renamed"}, headers=idem(admin_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "Renamed"

    def test_null_name_rejected(self, client, firm, admin_headers):
        user = _invite(client, admin_headers).json()["data"]
        resp = client.patch(f"/api/users/{user['id']}", json={"name": None}, headers=idem(admin_headers))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_cannot_demote_self(self, client, firm, admin_headers):
        resp = client.patch(f"/api/users/{firm['admin_id']}", json={"role": "Employee"}, headers=idem(admin_headers))
        assert resp.status_code == 400


class TestUserStatus:

    def test_deactivated_user_cannot_login(self, client, firm, admin_headers):
        emp = seed_user(firm["firm_id"], "emp@acme.example.com")
        emp_headers = login(client, "emp@acme.example.com")

        resp = client.patch(f"/api/users/{emp['id']}/status", json={"is_active": False}, headers=idem(admin_headers))
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "DISABLED"

        assert client.get("/api/cases", headers=emp_headers).status_code == 401
        resp = client.post("/api/auth/login", json={"email": "emp@acme.example.com", "password": PASSWORD})
        assert resp.status_code == 401

        resp = client.patch(f"/api/users/{emp['id']}/status", json={"is_active": True}, headers=idem(admin_headers))
        assert resp.json()["data"]["status"] == "ACTIVE"
        login(client, "emp@acme.example.com")

    def test_cannot_deactivate_self(self, client, firm, admin_headers):
        resp = client.patch(
            f"/api/users/{firm['admin_id']}/status",
            json={"is_active": False},
            headers=idem(admin_headers),
        )
        assert resp.status_code == 400


class TestUserDelete:

    def test_delete_disables_and_restore_reenables(self, client, firm, admin_headers):
        emp = seed_user(firm["firm_id"], "emp@acme.example.com")

        resp = client.delete(f"/api/users/{emp['id']}", headers=idem(admin_headers))
        assert resp.status_code == 200
        assert client.get(f"/api/users/{emp['id']}", headers=admin_headers).status_code == 404
        assert client.post("/api/auth/login", json={"email": "emp@acme.example.com", "password": PASSWORD}).status_code == 401

        resp = client.post(f"/api/users/{emp['id']}/restore", headers=idem(admin_headers))
        assert resp.status_code == 200
        login(client, "emp@acme.example.com")

    def test_primary_admin_cannot_be_deleted(self, client, firm, admin_headers):
        seed_user(firm["firm_id"], "second@acme.example.com", role="Admin")
        second_headers = login(client, "second@acme.example.com")
        resp = client.delete(f"/api/users/{firm['admin_id']}", headers=idem(second_headers))
        assert resp.status_code == 400

        resp = client.patch(
            f"/api/users/{firm['admin_id']}/status",
            json={"is_active": False},
            headers=idem(second_headers),
        )
        assert resp.status_code == 400


class TestAdminRoutes:

    def test_stats(self, client, firm, admin_headers):
        _invite(client, admin_headers)
        client.post("/api/clients", json={"business_name": "Globex"}, headers=idem(admin_headers))
        client.post("/api/cases", json={"title": "T"}, headers=idem(admin_headers))

        resp = client.get("/api/admin/stats", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["users"] == {"total": 2, "active": 1, "invited": 1}
        assert data["clients"]["pending_approval"] == 1
        assert data["cases"]["by_status"]["open"] == 1

    def test_resend_invite(self, client, firm, admin_headers):
        user = _invite(client, admin_headers).json()
        old_token = user["_dev_token"]

        resp = client.post(f"/api/admin/users/{user['data']['id']}/resend-invite", headers=idem(admin_headers))
        assert resp.status_code == 200
        new_token = resp.json()["_dev_token"]
        assert new_token != old_token

        assert client.post("/api/auth/set-password", json={"token": old_token, "password": "Whatever12"}).status_code == 400
        assert client.post("/api/auth/set-password", json={"token": new_token, "password": "Whatever12"}).status_code == 200

    def test_resend_invite_for_active_user(self, client, firm, admin_headers):
        resp = client.post(f"/api/admin/users/{firm['admin_id']}/resend-invite", headers=idem(admin_headers))
        assert resp.status_code == 400

    def test_audit_log_lists_mutations(self, client, firm, admin_headers):
        client.post("/api/cases", json={"title": "Audited"}, headers=idem(admin_headers))

        resp = client.get("/api/admin/audit-logs", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert any(entry["action"] == "POST /api/cases" for entry in body["data"])
        assert body["recent"][0]["actor"] == "X000001"
