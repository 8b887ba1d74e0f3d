"""
db/executor.py -- Async query executor over a pooled SQLAlchemy engine.

Every store in the application talks to the database through one Database
instance (app.state.db). It exposes a handful of primitives -- execute,
get_one, get_many, insert, update, delete, paginate -- so route and store
code never opens connections or builds statements by hand.

Security:
  All variable input is passed as bound parameters (named `:param`
  placeholders). Values never reach the SQL text.

  Identifiers (table and column names) cannot be bound. insert/update/delete
  and paginate validate them against a strict pattern and raise
  ValidationError otherwise, so a field map built from a request body cannot
  smuggle SQL through its keys.

  where / joins / select fragments passed to update, delete and paginate are
  code-authored SQL. They must reference request input only through the
  accompanying where_params.

Pooling:
  One AsyncEngine per process. MySQL runs on a bounded QueuePool
  (pool_size, max_overflow=0) with an acquisition timeout so callers never
  queue forever. SQLite (tests, local dev) uses StaticPool so an in-memory
  database is shared by every checkout. Each primitive holds a connection for
  the duration of its own statement only.

Errors:
  Driver and pool failures are re-raised as DatabaseError subclasses (see
  core/errors.py). The public message never contains SQL; the original
  exception is chained and its class name is logged.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.exc import (
    DataError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from core.errors import DatabaseConnectionError, DatabaseError, ValidationError
from db.schema import metadata

logger = logging.getLogger("billing.db")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# "users" or "users u"
_TABLE_REF = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?: [A-Za-z_][A-Za-z0-9_]*)?$")
# "created_at DESC" or "u.created_at DESC, u.user_id"
_ORDER_TERM = r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?(?: (?:ASC|DESC))?"
_ORDER_BY = re.compile(rf"^{_ORDER_TERM}(?:, ?{_ORDER_TERM})*$", re.IGNORECASE)

# MySQL client error codes that mean "could not talk to the server at all":
# access denied, can't connect (socket / TCP), server gone away, lost connection.
_MYSQL_CONNECTION_CODES = {1045, 2002, 2003, 2006, 2013}

_UPDATE_PREFIX = "_set_"


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DATETIME column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_datetime(value: Any) -> Optional[datetime]:
    """Normalize a DATETIME column value to a naive datetime.

    MySQL drivers hand back datetime objects; SQLite hands back the ISO text
    it stored. Row mappers call this so domain objects always hold datetimes.
    """
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class Page:
    """One page of a paginated query plus the counts needed to render a pager."""

    rows: list[Any]  # dicts from the executor; stores may map them to domain objects
    total: int
    page: int
    limit: int
    page_count: int

    @property
    def pagination(self) -> dict:
        return {
            "total": self.total,
            "pages": self.page_count,
            "current_page": self.page,
            "per_page": self.limit,
        }


@dataclass
class _Outcome:
    rows: list[dict] = field(default_factory=list)
    rowcount: int = 0
    lastrowid: Optional[int] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid identifier: {name!r}")
    return name


def _check_table_ref(table: str) -> str:
    if not isinstance(table, str) or not _TABLE_REF.match(table):
        raise ValidationError(f"Invalid table reference: {table!r}")
    return table


def _bind(sql: str, params: Optional[Mapping[str, Any]]):
    """Build a text() clause whose parameters carry types inferred from their values.

    Typed binds let SQLAlchemy render datetimes and booleans the way each
    dialect stores them (SQLite keeps DATETIME as ISO text), instead of
    handing raw Python objects to the driver.
    """
    clause = text(sql)
    if params:
        clause = clause.bindparams(*(bindparam(key, value) for key, value in params.items()))
    return clause


def _is_connection_failure(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (PoolTimeoutError, InterfaceError)):
        return True
    if isinstance(exc, OperationalError):
        if exc.connection_invalidated:
            return True
        orig = getattr(exc, "orig", None)
        if isinstance(orig, (ConnectionError, OSError)):
            return True
        args = getattr(orig, "args", ())
        if args and isinstance(args[0], int) and args[0] in _MYSQL_CONNECTION_CODES:
            return True
    return False


def _translate(exc: SQLAlchemyError) -> DatabaseError:
    """Map a SQLAlchemy exception onto the public error hierarchy."""
    if _is_connection_failure(exc):
        return DatabaseConnectionError()
    if isinstance(exc, (IntegrityError, DataError, ProgrammingError)):
        return DatabaseError(status_code=400)
    return DatabaseError()


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class Database:
    """Pooled async query executor.

    Usage:
        db = Database("mysql+aiomysql://user:pw@host/billing")
        await db.create_schema()
        row = await db.get_one("SELECT * FROM users WHERE email = :email", {"email": email})
        new_id = await db.insert("clients", {"client_name": "Acme", "email": "ops@acme.test"})
        page = await db.paginate("clients", page=2, limit=10, order_by="client_name ASC")
        await db.dispose()
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
    ) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=0,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=True,
            )
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_schema(self) -> None:
        """Create any missing tables. Existing tables are left untouched."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as exc:
            logger.error("Schema creation failed (%s)", type(exc).__name__)
            raise _translate(exc) from exc

    async def ping(self) -> bool:
        """Return True if a pooled connection can run SELECT 1."""
        try:
            await self._run("SELECT 1", None)
        except DatabaseError:
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Core primitive
    # ------------------------------------------------------------------

    async def _run(self, sql: str, params: Optional[Mapping[str, Any]]) -> _Outcome:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(_bind(sql, params))
                if result.returns_rows:
                    return _Outcome(rows=[dict(r) for r in result.mappings().all()], rowcount=result.rowcount)
                return _Outcome(rowcount=result.rowcount, lastrowid=result.lastrowid)
        except SQLAlchemyError as exc:
            orig = getattr(exc, "orig", None)
            logger.error(
                "Query failed: %s%s",
                type(exc).__name__,
                f" ({type(orig).__name__})" if orig is not None else "",
            )
            raise _translate(exc) from exc

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        """Run one statement with bound parameters and return its rows (empty for DML)."""
        outcome = await self._run(sql, params)
        return outcome.rows

    async def get_one(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[dict]:
        rows = await self.execute(sql, params)
        return rows[0] if rows else None

    async def get_many(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> list[dict]:
        return await self.execute(sql, params)

    async def scalar(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Return the first column of the first row, or None."""
        row = await self.get_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()), None)

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    async def insert(self, table: str, fields: Mapping[str, Any]) -> int:
        """INSERT one row built from a column -> value map and return the new id.

        Tables keyed by a non-integer primary key (sessions) still get the
        driver's lastrowid back; callers that chose the key ignore it.
        """
        if not fields:
            raise ValidationError(f"Cannot insert an empty record into {table}")
        _check_identifier(table)
        columns = [_check_identifier(c) for c in fields]
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(':' + c for c in columns)})"  # noqa: S608
        outcome = await self._run(sql, dict(fields))
        return outcome.lastrowid or 0

    async def update(
        self,
        table: str,
        fields: Mapping[str, Any],
        where: str,
        where_params: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """UPDATE rows matching `where` and return the affected row count.

        SET values are bound under a reserved prefix so they can never collide
        with the names used in where_params.
        """
        if not fields:
            raise ValidationError(f"No fields to update in {table}")
        if not where:
            raise ValidationError("UPDATE requires a WHERE clause")
        _check_identifier(table)
        params: dict[str, Any] = {}
        assignments = []
        for column, value in fields.items():
            _check_identifier(column)
            assignments.append(f"{column} = :{_UPDATE_PREFIX}{column}")
            params[f"{_UPDATE_PREFIX}{column}"] = value
        for key, value in (where_params or {}).items():
            if key.startswith(_UPDATE_PREFIX):
                raise ValidationError(f"where parameter {key!r} uses a reserved prefix")
            params[key] = value
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {where}"  # noqa: S608
        outcome = await self._run(sql, params)
        return outcome.rowcount

    async def delete(self, table: str, where: str, where_params: Optional[Mapping[str, Any]] = None) -> int:
        """DELETE rows matching `where`. An empty WHERE is refused outright."""
        if not where:
            raise ValidationError("DELETE requires a WHERE clause")
        _check_identifier(table)
        outcome = await self._run(f"DELETE FROM {table} WHERE {where}", where_params)  # noqa: S608
        return outcome.rowcount

    async def paginate(
        self,
        table: str,
        *,
        page: int = 1,
        limit: int = 10,
        where: str = "1=1",
        where_params: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        select: str = "*",
        joins: str = "",
    ) -> Page:
        """Fetch one 1-based page of `table` plus the total matching row count.

        The COUNT query and the page query share the same joins and WHERE
        clause, so total always describes the filtered set the page is cut
        from. offset = (page - 1) * limit; page_count = ceil(total / limit).
        """
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if limit < 1:
            raise ValidationError("limit must be 1 or greater")
        _check_table_ref(table)
        if order_by is not None and not _ORDER_BY.match(order_by):
            raise ValidationError(f"Invalid ORDER BY clause: {order_by!r}")
        params = dict(where_params or {})
        if "_limit" in params or "_offset" in params:
            raise ValidationError("where_params may not define _limit or _offset")

        source = f"{table} {joins}".strip()
        count_sql = f"SELECT COUNT(*) AS total FROM {source} WHERE {where}"  # noqa: S608
        total = int(await self.scalar(count_sql, params) or 0)

        order_clause = f" ORDER BY {order_by}" if order_by else ""
        page_sql = f"SELECT {select} FROM {source} WHERE {where}{order_clause} LIMIT :_limit OFFSET :_offset"  # noqa: S608
        rows = await self.get_many(page_sql, {**params, "_limit": limit, "_offset": (page - 1) * limit})

        return Page(
            rows=rows,
            total=total,
            page=page,
            limit=limit,
            page_count=math.ceil(total / limit),
        )
