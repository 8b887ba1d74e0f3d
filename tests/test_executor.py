"""
tests/test_executor.py -- Unit tests for db/executor.py.

Covers:
  - insert returns the new id; get_one / get_many / scalar read it back
  - Bound parameters carry hostile strings as data, never as SQL
  - update / delete return affected row counts and refuse an empty WHERE
  - Identifier validation on insert / update and ORDER BY validation on paginate
  - paginate: offset arithmetic, total and page_count, filtered counts
"""

from __future__ import annotations

import pytest

from core.errors import DatabaseError, ValidationError
from db.executor import Database, as_datetime, utcnow


async def _add_clients(db: Database, count: int) -> None:
    for i in range(count):
        await db.insert("clients", {"client_name": f"Client {i:02d}", "email": f"c{i:02d}@example.com", "created_at": utcnow()})


class TestPrimitives:
    @pytest.mark.asyncio
    async def test_insert_then_get_one(self, db: Database) -> None:
        client_id = await db.insert("clients", {"client_name": "Acme", "email": "ap@acme.test", "created_at": utcnow()})
        assert client_id > 0
        row = await db.get_one("SELECT * FROM clients WHERE client_id = :id", {"id": client_id})
        assert row["client_name"] == "Acme"

    @pytest.mark.asyncio
    async def test_get_one_missing_returns_none(self, db: Database) -> None:
        assert await db.get_one("SELECT * FROM clients WHERE client_id = :id", {"id": 999}) is None

    @pytest.mark.asyncio
    async def test_hostile_value_is_bound_as_data(self, db: Database) -> None:
        hostile = "x'); DROP TABLE clients; --"
        await db.insert("clients", {"client_name": hostile, "email": "h@example.com", "created_at": utcnow()})
        row = await db.get_one("SELECT client_name FROM clients WHERE client_name = :name", {"name": hostile})
        assert row["client_name"] == hostile
        assert await db.scalar("SELECT COUNT(*) FROM clients") == 1

    @pytest.mark.asyncio
    async def test_update_and_delete_report_counts(self, db: Database) -> None:
        await _add_clients(db, 3)
        changed = await db.update("clients", {"status": "inactive"}, "client_name LIKE :p", {"p": "Client%"})
        assert changed == 3
        removed = await db.delete("clients", "email = :email", {"email": "c00@example.com"})
        assert removed == 1
        assert await db.delete("clients", "email = :email", {"email": "nobody@example.com"}) == 0

    @pytest.mark.asyncio
    async def test_empty_where_refused(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.update("clients", {"status": "inactive"}, "")
        with pytest.raises(ValidationError):
            await db.delete("clients", "")

    @pytest.mark.asyncio
    async def test_empty_insert_refused(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.insert("clients", {})

    @pytest.mark.asyncio
    async def test_invalid_identifiers_rejected(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.insert("clients; DROP TABLE users", {"client_name": "x"})
        with pytest.raises(ValidationError):
            await db.update("clients", {"status = 'x', email": "y"}, "client_id = :id", {"id": 1})

    @pytest.mark.asyncio
    async def test_reserved_update_prefix_rejected(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.update("clients", {"status": "inactive"}, "client_id = :_set_status", {"_set_status": 1})

    @pytest.mark.asyncio
    async def test_integrity_error_translated_to_400(self, db: Database) -> None:
        await db.insert("clients", {"client_name": "A", "email": "dup@example.com", "created_at": utcnow()})
        with pytest.raises(DatabaseError) as exc_info:
            await db.insert("clients", {"client_name": "B", "email": "dup@example.com", "created_at": utcnow()})
        assert exc_info.value.status_code == 400
        assert "dup@example.com" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_ping(self, db: Database) -> None:
        assert await db.ping() is True


class TestPaginate:
    @pytest.mark.asyncio
    async def test_second_page_offsets_by_limit(self, db: Database) -> None:
        await _add_clients(db, 25)
        page = await db.paginate("clients", page=2, limit=10, order_by="client_name ASC")
        assert [r["client_name"] for r in page.rows] == [f"Client {i:02d}" for i in range(10, 20)]
        assert page.total == 25
        assert page.page_count == 3
        assert page.pagination == {"total": 25, "pages": 3, "current_page": 2, "per_page": 10}

    @pytest.mark.asyncio
    async def test_last_page_is_partial(self, db: Database) -> None:
        await _add_clients(db, 25)
        page = await db.paginate("clients", page=3, limit=10, order_by="client_name ASC")
        assert len(page.rows) == 5

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, db: Database) -> None:
        await _add_clients(db, 5)
        page = await db.paginate("clients", page=4, limit=10)
        assert page.rows == []
        assert page.total == 5

    @pytest.mark.asyncio
    async def test_empty_table(self, db: Database) -> None:
        page = await db.paginate("clients", page=1, limit=10)
        assert page.rows == []
        assert page.total == 0
        assert page.page_count == 0

    @pytest.mark.asyncio
    async def test_where_applies_to_count(self, db: Database) -> None:
        await _add_clients(db, 12)
        page = await db.paginate(
            "clients", page=1, limit=5, where="client_name LIKE :p", where_params={"p": "Client 1%"}
        )
        assert page.total == 2
        assert page.page_count == 1

    @pytest.mark.asyncio
    async def test_invalid_order_by_rejected(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.paginate("clients", order_by="client_name; DROP TABLE clients")

    @pytest.mark.asyncio
    async def test_invalid_page_rejected(self, db: Database) -> None:
        with pytest.raises(ValidationError):
            await db.paginate("clients", page=0)
        with pytest.raises(ValidationError):
            await db.paginate("clients", limit=0)


def test_as_datetime_parses_sqlite_text() -> None:
    parsed = as_datetime("2026-10-19 11:00:00.000000")
    assert parsed.year == 2026 and parsed.hour == 11
    assert parsed.tzinfo is None
    assert as_datetime(None) is None
