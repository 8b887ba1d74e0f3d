"""
tests/test_api_dashboard.py -- Integration tests for /api/dashboard and /api/reports.

Covers:
  - Dashboard requires a session (401) and answers per role: Super Admin,
    Client Manager and Auditor each get their own metrics
  - A custom role has no dashboard (403)
  - Reports are gated by the "reports" permission; Auditor and Client Manager
    may view them, a role without the module may not
  - Revenue, GST and client-summary figures match the invoices' own totals
  - An inverted date range is rejected with 400
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="module")
def ledger(api_client: TestClient, admin_headers: dict, manager_headers: dict) -> dict:
    """One GST client with a sent invoice raised by the manager, plus an admin draft."""
    resp = api_client.post(
        "/api/clients",
        json={"client_name": "Globex", "email": "ap@globex.test", "gst_registered": True},
        headers=admin_headers,
    )
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    client_id = resp.json()["data"]["client_id"]

    items = [
        {"description": "Compute hours", "quantity": 2, "rate": 50, "discount": 10},
        {"description": "Support", "quantity": 1, "rate": 10},
    ]
    sent = api_client.post("/api/invoices", json={"client_id": client_id, "line_items": items}, headers=manager_headers)
    assert sent.status_code == 201, f"Expected 201, got {sent.status_code}: {sent.text}"
    sent_id = sent.json()["data"]["invoice_id"]
    resp = api_client.put(f"/api/invoices/{sent_id}", json={"status": "sent"}, headers=admin_headers)
    assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    draft = api_client.post(
        "/api/invoices",
        json={"client_id": client_id, "line_items": [{"description": "Setup", "quantity": 1, "rate": 10}]},
        headers=admin_headers,
    )
    assert draft.status_code == 201
    return {"client_id": client_id, "sent_id": sent_id, "draft_id": draft.json()["data"]["invoice_id"]}


@pytest.fixture(scope="module")
def outsider_headers(api_client: TestClient, admin_headers: dict) -> dict:
    """A user whose custom role can only view clients."""
    role = api_client.post(
        "/api/roles",
        json={
            "role_name": "Client Viewer",
            "permissions": {"clients": {"can_view": True, "can_create": False, "can_edit": False, "can_delete": False}},
        },
        headers=admin_headers,
    )
    assert role.status_code == 201, f"Expected 201, got {role.status_code}: {role.text}"
    user = api_client.post(
        "/api/users",
        json={
            "username": "viewer",
            "email": "viewer@example.com",
            "password": "viewer-pass-1",
            "role_id": role.json()["data"]["role_id"],
        },
        headers=admin_headers,
    )
    assert user.status_code == 201, f"Expected 201, got {user.status_code}: {user.text}"
    resp = api_client.post("/auth/login", json={"email": "viewer@example.com", "password": "viewer-pass-1"})
    assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
    return {"X-Session-ID": resp.json()["session_id"]}


class TestDashboard:
    def test_requires_session(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/dashboard")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_super_admin(self, api_client: TestClient, admin_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/dashboard", headers=admin_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["role_name"] == "Super Admin"
        metrics = data["metrics"]
        assert metrics["total_users"] >= 3
        assert metrics["total_clients"] == 1
        assert metrics["total_invoices"] == 2
        assert metrics["current_month_revenue"] == 118.0
        assert metrics["outstanding_amount"] == 118.0
        statuses = {b["label"]: b for b in data["invoice_status"]}
        assert statuses["sent"]["total"] == 118.0
        assert statuses["draft"]["total"] == 11.8
        assert len(data["revenue_trend"]) == 6
        assert data["revenue_trend"][-1]["total"] == 118.0
        assert data["top_clients"][0]["client_id"] == ledger["client_id"]
        assert data["recent_invoices"][0]["invoice_id"] == ledger["draft_id"]
        assert data["recent_invoices"][0]["totals"] == {"subtotal": 10.0, "gst_amount": 1.8, "total": 11.8}

    def test_client_manager(self, api_client: TestClient, manager_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/dashboard", headers=manager_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["role_name"] == "Client Manager"
        assert data["metrics"]["my_invoices"] == 1
        assert data["metrics"]["my_revenue"] == 118.0
        assert [i["invoice_id"] for i in data["recent_invoices"]] == [ledger["sent_id"]]
        assert data["top_clients"] == []

    def test_auditor(self, api_client: TestClient, auditor_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/dashboard", headers=auditor_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        metrics = resp.json()["data"]["metrics"]
        assert metrics["total_revenue"] == 118.0
        assert metrics["gst_invoices"] == 2
        assert metrics["gst_collected"] == 18.0

    def test_custom_role_has_no_dashboard(self, api_client: TestClient, outsider_headers: dict) -> None:
        resp = api_client.get("/api/dashboard", headers=outsider_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "No dashboard is available for this role"


class TestReports:
    def test_revenue(self, api_client: TestClient, auditor_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/reports/revenue", headers=auditor_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["summary"]["total_invoices"] == 1
        assert data["summary"]["total_revenue"] == 118.0
        assert data["summary"]["total_gst"] == 18.0
        assert [b["client_id"] for b in data["by_client"]] == [ledger["client_id"]]

    def test_revenue_for_unknown_client_is_empty(self, api_client: TestClient, auditor_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/reports/revenue", params={"client_id": 9999}, headers=auditor_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["summary"]["total_revenue"] == 0.0
        assert resp.json()["data"]["by_month"] == []

    def test_gst(self, api_client: TestClient, manager_headers: dict, ledger: dict) -> None:
        resp = api_client.get("/api/reports/gst", headers=manager_headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()["data"]
        assert data["summary"]["gst_invoices"] == 1
        assert data["summary"]["total_gst_collected"] == 18.0
        assert data["client_registration"] == {"gst_registered": 1, "non_gst": 0}

    def test_client_summary(self, api_client: TestClient, admin_headers: dict, ledger: dict) -> None:
        resp = api_client.get(
            "/api/reports/client-summary", params={"client_id": ledger["client_id"]}, headers=admin_headers
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        [row] = resp.json()["data"]
        assert row["client_name"] == "Globex"
        assert row["total_invoices"] == 2
        assert row["total_revenue"] == 118.0
        assert row["outstanding_amount"] == 118.0
        assert row["draft_amount"] == 11.8

    def test_inverted_range_is_400(self, api_client: TestClient, auditor_headers: dict) -> None:
        resp = api_client.get(
            "/api/reports/revenue",
            params={"start_date": "2026-03-31", "end_date": "2026-03-01"},
            headers=auditor_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "start_date must not be after end_date"

    def test_role_without_reports_is_403(self, api_client: TestClient, outsider_headers: dict) -> None:
        resp = api_client.get("/api/reports/gst", headers=outsider_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "Insufficient permissions"
