"""
tests/test_api_clients.py -- Integration tests for /api/clients.

Coverage:
  - Permission matrix: Auditor may view but not create; Client Manager may
    create and edit but not delete; Super Admin may do everything
  - Create 201, duplicate email 409, malformed email 400
  - Partial update, email conflict on update
  - Paginated list with search and status filters
  - Delete, and 404 afterwards
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def _create_client(client: TestClient, headers: dict, name: str, email: str, **extra) -> dict:
    resp = client.post("/api/clients", json={"client_name": name, "email": email, **extra}, headers=headers)
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["data"]


class TestClientPermissions:
    def test_auditor_can_view(self, api_client: TestClient, auditor_headers: dict) -> None:
        assert api_client.get("/api/clients", headers=auditor_headers).status_code == 200

    def test_auditor_cannot_create(self, api_client: TestClient, auditor_headers: dict) -> None:
        resp = api_client.post(
            "/api/clients", json={"client_name": "Nope", "email": "nope@example.com"}, headers=auditor_headers
        )
        assert resp.status_code == 403
        assert resp.json()["message"] == "Insufficient permissions"

    def test_manager_cannot_delete(self, api_client: TestClient, manager_headers: dict) -> None:
        created = _create_client(api_client, manager_headers, "Keep Me", "keep@example.com")
        resp = api_client.delete(f"/api/clients/{created['client_id']}", headers=manager_headers)
        assert resp.status_code == 403


class TestClientCrud:
    def test_create(self, api_client: TestClient, manager_headers: dict) -> None:
        data = _create_client(
            api_client,
            manager_headers,
            "  Globex  ",
            "billing@globex.test",
            gst_registered=True,
            gst_number="29ABCDE1234F1Z5",
            default_currency="INR",
        )
        assert data["client_name"] == "Globex"
        assert data["gst_registered"] is True
        assert data["default_currency"] == "INR"
        assert data["status"] == "active"

    def test_duplicate_email_is_409(self, api_client: TestClient, manager_headers: dict) -> None:
        _create_client(api_client, manager_headers, "Initech", "ap@initech.test")
        resp = api_client.post(
            "/api/clients", json={"client_name": "Initech 2", "email": "ap@initech.test"}, headers=manager_headers
        )
        assert resp.status_code == 409
        assert resp.json()["message"] == "Client with this email already exists"

    def test_bad_email_is_400(self, api_client: TestClient, manager_headers: dict) -> None:
        resp = api_client.post("/api/clients", json={"client_name": "Bad", "email": "not-an-email"}, headers=manager_headers)
        assert resp.status_code == 400

    def test_partial_update(self, api_client: TestClient, manager_headers: dict) -> None:
        created = _create_client(api_client, manager_headers, "Umbrella", "ops@umbrella.test", phone="555-0100")
        resp = api_client.put(
            f"/api/clients/{created['client_id']}", json={"contact_person": "Alice"}, headers=manager_headers
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["contact_person"] == "Alice"
        assert data["phone"] == "555-0100"

    def test_update_to_taken_email_is_409(self, api_client: TestClient, manager_headers: dict) -> None:
        _create_client(api_client, manager_headers, "Hooli", "ap@hooli.test")
        other = _create_client(api_client, manager_headers, "Pied Piper", "ap@piedpiper.test")
        resp = api_client.put(
            f"/api/clients/{other['client_id']}", json={"email": "ap@hooli.test"}, headers=manager_headers
        )
        assert resp.status_code == 409

    def test_list_search_and_status(self, api_client: TestClient, admin_headers: dict) -> None:
        _create_client(api_client, admin_headers, "Stark Industries", "ap@stark.test")
        _create_client(api_client, admin_headers, "Stark Dormant", "old@stark.test", status="inactive")
        resp = api_client.get("/api/clients", params={"search": "stark", "status": "active"}, headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert [c["client_name"] for c in body["data"]] == ["Stark Industries"]
        assert body["pagination"]["total"] == 1

    def test_invalid_status_filter_is_400(self, api_client: TestClient, admin_headers: dict) -> None:
        resp = api_client.get("/api/clients", params={"status": "zombie"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_delete(self, api_client: TestClient, admin_headers: dict) -> None:
        created = _create_client(api_client, admin_headers, "Wayne Enterprises", "ap@wayne.test")
        resp = api_client.delete(f"/api/clients/{created['client_id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert api_client.get(f"/api/clients/{created['client_id']}", headers=admin_headers).status_code == 404
