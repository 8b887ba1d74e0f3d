"""
tests/test_audit.py -- Unit tests for audit/recorder.py.

Covers:
  - log_user_action writes actor, entity and session details
  - Password fields never reach old_values / new_values
  - A failed write returns False instead of raising, whatever the error type
  - Task cancellation is not absorbed
"""

from __future__ import annotations

import asyncio
import json

import pytest

from audit.recorder import AuditEntry, AuditRecorder
from auth.models import AuthContext, SessionUser
from core.errors import DatabaseConnectionError
from db.executor import Database

AUTH = AuthContext(
    session_id="a" * 128,
    user=SessionUser(user_id=7, username="grace", email="grace@example.com", role_id=1, role_name="Super Admin", status="active"),
    ip_address="10.1.2.3",
    user_agent="pytest",
)


@pytest.mark.asyncio
async def test_log_user_action_writes_row(db: Database) -> None:
    audit = AuditRecorder(db)
    ok = await audit.log_user_action(AUTH, "CREATE", "client", 42, "Acme", new_values={"client_name": "Acme"})
    assert ok is True
    [row] = await audit.recent()
    assert row["user_id"] == 7
    assert row["action_type"] == "CREATE"
    assert row["entity_type"] == "client"
    assert row["entity_id"] == 42
    assert row["description"] == "CREATE client: Acme"
    assert row["ip_address"] == "10.1.2.3"
    assert row["session_id"] == AUTH.session_id
    assert json.loads(row["new_values"]) == {"client_name": "Acme"}
    assert row["old_values"] is None


@pytest.mark.asyncio
async def test_password_fields_stripped(db: Database) -> None:
    audit = AuditRecorder(db)
    await audit.log_user_action(
        AUTH,
        "UPDATE",
        "user",
        7,
        "grace",
        old_values={"username": "grace", "password_hash": "$2b$12$secret"},
        new_values={"username": "grace2", "password": "plaintext"},
    )
    [row] = await audit.recent(entity_type="user")
    assert "secret" not in row["old_values"]
    assert "plaintext" not in row["new_values"]
    assert json.loads(row["new_values"]) == {"username": "grace2"}


@pytest.mark.asyncio
async def test_failed_write_is_swallowed(db: Database, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_insert(table, fields):
        raise DatabaseConnectionError()

    monkeypatch.setattr(db, "insert", broken_insert)
    assert await AuditRecorder(db).log(AuditEntry(action_type="LOGIN")) is False


@pytest.mark.asyncio
async def test_unexpected_error_is_swallowed(db: Database, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_insert(table, fields):
        raise OSError("connection reset by peer")

    monkeypatch.setattr(db, "insert", broken_insert)
    assert await AuditRecorder(db).log(AuditEntry(action_type="DELETE", entity_type="client")) is False


@pytest.mark.asyncio
async def test_cancellation_propagates(db: Database, monkeypatch: pytest.MonkeyPatch) -> None:
    async def cancelled_insert(table, fields):
        raise asyncio.CancelledError()

    monkeypatch.setattr(db, "insert", cancelled_insert)
    with pytest.raises(asyncio.CancelledError):
        await AuditRecorder(db).log(AuditEntry(action_type="LOGIN"))
