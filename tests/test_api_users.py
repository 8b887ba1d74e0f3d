"""
tests/test_api_users.py -- Integration tests for /api/users.

Coverage:
  - Super Admin only: 401 without a session, 403 for other roles
  - Create: 201, password never echoed, 409 on duplicate email/username, 400 on bad role
  - List: pagination block, search filter
  - Update: partial changes, self-deactivation and self-demotion refused
  - Delete: soft delete revokes sessions; Super Admin and self refused
  - Sessions: self may list and terminate own sessions; others get 403
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def _role_id(client: TestClient, headers: dict, name: str) -> int:
    roles = client.get("/api/roles", headers=headers).json()["data"]
    return next(r["role_id"] for r in roles if r["role_name"] == name)


def _create(client: TestClient, headers: dict, username: str, role: str = "Auditor", password: str = "pass-word-1") -> dict:
    resp = client.post(
        "/api/users",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "role_id": _role_id(client, headers, role),
        },
        headers=headers,
    )
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()["data"]


class TestAccess:
    def test_unauthenticated(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/users")
        assert resp.status_code == 401

    def test_client_manager_forbidden(self, api_client: TestClient, manager_headers: dict) -> None:
        resp = api_client.get("/api/users", headers=manager_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "Super Admin access required"


class TestCreateAndList:
    def test_create_user(self, api_client: TestClient, admin_headers: dict) -> None:
        data = _create(api_client, admin_headers, "hannah")
        assert data["username"] == "hannah"
        assert data["role_name"] == "Auditor"
        assert data["status"] == "active"
        assert "password" not in data

    def test_new_user_can_log_in(self, api_client: TestClient, admin_headers: dict) -> None:
        _create(api_client, admin_headers, "ivan", password="ivan-pass-1")
        resp = api_client.post("/auth/login", json={"email": "ivan@example.com", "password": "ivan-pass-1"})
        assert resp.status_code == 200

    def test_duplicate_is_409(self, api_client: TestClient, admin_headers: dict) -> None:
        _create(api_client, admin_headers, "judy")
        resp = api_client.post(
            "/api/users",
            json={"username": "judy2", "email": "judy@example.com", "password": "pass-word-1", "role_id": 1},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["message"] == "User with this email or username already exists"

    def test_unknown_role_is_400(self, api_client: TestClient, admin_headers: dict) -> None:
        resp = api_client.post(
            "/api/users",
            json={"username": "kim", "email": "kim@example.com", "password": "pass-word-1", "role_id": 999},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid role_id"

    def test_short_password_is_400(self, api_client: TestClient, admin_headers: dict) -> None:
        resp = api_client.post(
            "/api/users",
            json={"username": "leo", "email": "leo@example.com", "password": "short", "role_id": 1},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_list_with_search(self, api_client: TestClient, admin_headers: dict) -> None:
        _create(api_client, admin_headers, "mallory")
        resp = api_client.get("/api/users", params={"search": "mallory", "limit": 5}, headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert [u["username"] for u in body["data"]] == ["mallory"]
        assert body["pagination"] == {"total": 1, "pages": 1, "current_page": 1, "per_page": 5}

    def test_limit_over_100_rejected(self, api_client: TestClient, admin_headers: dict) -> None:
        resp = api_client.get("/api/users", params={"limit": 101}, headers=admin_headers)
        assert resp.status_code == 400


class TestUpdateAndDelete:
    def test_partial_update(self, api_client: TestClient, admin_headers: dict) -> None:
        user = _create(api_client, admin_headers, "nina")
        resp = api_client.put(
            f"/api/users/{user['user_id']}",
            json={"role_id": _role_id(api_client, admin_headers, "Client Manager")},
            headers=admin_headers,
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["role_name"] == "Client Manager"
        assert data["email"] == "nina@example.com"

    def test_empty_update_is_400(self, api_client: TestClient, admin_headers: dict) -> None:
        user = _create(api_client, admin_headers, "oscar")
        resp = api_client.put(f"/api/users/{user['user_id']}", json={}, headers=admin_headers)
        assert resp.status_code == 400

    def test_cannot_deactivate_self(self, api_client: TestClient, admin_headers: dict) -> None:
        me = api_client.get("/auth/me", headers=admin_headers).json()["user"]
        resp = api_client.put(f"/api/users/{me['user_id']}", json={"status": "inactive"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot deactivate your own account"

    def test_deactivation_revokes_sessions(self, api_client: TestClient, admin_headers: dict) -> None:
        user = _create(api_client, admin_headers, "peggy", password="peggy-pass-1")
        sid = api_client.post("/auth/login", json={"email": "peggy", "password": "peggy-pass-1"}).json()["session_id"]
        resp = api_client.put(f"/api/users/{user['user_id']}", json={"status": "inactive"}, headers=admin_headers)
        assert resp.status_code == 200
        assert api_client.get("/auth/me", headers={"X-Session-ID": sid}).status_code == 401

    def test_soft_delete(self, api_client: TestClient, admin_headers: dict) -> None:
        user = _create(api_client, admin_headers, "quinn", password="quinn-pass-1")
        sid = api_client.post("/auth/login", json={"email": "quinn", "password": "quinn-pass-1"}).json()["session_id"]
        resp = api_client.delete(f"/api/users/{user['user_id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["message"] == "User deleted successfully"
        still_there = api_client.get(f"/api/users/{user['user_id']}", headers=admin_headers).json()["data"]
        assert still_there["status"] == "inactive"
        assert api_client.get("/auth/me", headers={"X-Session-ID": sid}).status_code == 401

    def test_cannot_delete_super_admin(self, api_client: TestClient, admin_headers: dict) -> None:
        me = api_client.get("/auth/me", headers=admin_headers).json()["user"]
        resp = api_client.delete(f"/api/users/{me['user_id']}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot delete Super Admin user"

    def test_missing_user_is_404(self, api_client: TestClient, admin_headers: dict) -> None:
        assert api_client.get("/api/users/9999", headers=admin_headers).status_code == 404
        assert api_client.delete("/api/users/9999", headers=admin_headers).status_code == 404


class TestUserSessions:
    def test_self_can_list_own_sessions(self, api_client: TestClient, login_as) -> None:
        headers = login_as("auditor")
        me = api_client.get("/auth/me", headers=headers).json()["user"]
        resp = api_client.get(f"/api/users/{me['user_id']}/sessions", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]

    def test_other_users_sessions_forbidden(self, api_client: TestClient, login_as, admin_headers: dict) -> None:
        admin_id = api_client.get("/auth/me", headers=admin_headers).json()["user"]["user_id"]
        resp = api_client.get(f"/api/users/{admin_id}/sessions", headers=login_as("auditor"))
        assert resp.status_code == 403
        assert resp.json()["message"] == "Access denied"

    def test_terminate_own_sessions(self, api_client: TestClient, login_as) -> None:
        headers = login_as("manager")
        me = api_client.get("/auth/me", headers=headers).json()["user"]
        resp = api_client.post(f"/api/users/{me['user_id']}/terminate-sessions", headers=headers)
        assert resp.status_code == 200
        assert api_client.get("/auth/me", headers=headers).status_code == 401
