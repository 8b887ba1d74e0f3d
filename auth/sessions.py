"""
auth/sessions.py -- Server-side session rows: create, validate, extend, revoke.

A session is a row in `sessions` keyed by an opaque random token (see
auth/tokens.generate_session_id). The token is the only thing the client
holds; revoking the row revokes the token.

A session authorizes a request iff all three hold at the same instant:
  sessions.is_active
  sessions.expires_at > now
  the owning user's status = 'active'

validate_session() checks all three in a single join, so an inactive user's
leftover sessions stop working the moment the user is deactivated, even
before destroy_user_sessions() runs.

Lifecycle:
  created -> active -> (extended)* -> active -> destroyed | expired
destroyed and expired are terminal. Nothing sets is_active back to true.

Layer rule: no imports from api/, billing/, or audit/.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from auth.models import SessionContext, SessionSummary, SessionUser
from auth.tokens import generate_session_id
from core.errors import DatabaseError, PersistenceError
from db.executor import Database, as_datetime, utcnow

logger = logging.getLogger("billing.auth")

DEFAULT_SESSION_TIMEOUT = 8 * 60 * 60

# user_agent is VARCHAR(512); browsers occasionally send longer strings.
_MAX_USER_AGENT = 512


class SessionStore:
    """Repository for session rows.

    Usage:
        sessions = SessionStore(db, timeout_seconds=28800)
        sid = await sessions.create_session(user.user_id, "10.0.0.5", "Mozilla/5.0")
        ctx = await sessions.validate_session(sid)
        await sessions.destroy_session(sid)
    """

    def __init__(self, db: Database, timeout_seconds: int = DEFAULT_SESSION_TIMEOUT) -> None:
        self.db = db
        self.timeout = timedelta(seconds=timeout_seconds)

    async def create_session(self, user_id: int, ip_address: Optional[str], user_agent: Optional[str]) -> str:
        """Insert a new active session for user_id and return its token.

        Raises PersistenceError if the row could not be written. The caller
        must not hand out a token that has no row behind it.
        """
        session_id = generate_session_id()
        now = utcnow()
        try:
            await self.db.insert(
                "sessions",
                {
                    "session_id": session_id,
                    "user_id": user_id,
                    "ip_address": ip_address,
                    "user_agent": (user_agent or "")[:_MAX_USER_AGENT] or None,
                    "created_at": now,
                    "last_activity": now,
                    "expires_at": now + self.timeout,
                    "is_active": True,
                },
            )
        except DatabaseError as exc:
            logger.error("Could not create session for user_id=%s", user_id)
            raise PersistenceError("Failed to create session", status_code=exc.status_code) from exc
        return session_id

    async def validate_session(self, session_id: Optional[str]) -> Optional[SessionContext]:
        """Resolve a token to its session and user, or None if it does not authorize.

        On a hit, last_activity is refreshed. Database failures propagate:
        an unreachable database is a 503, not an anonymous request.
        """
        if not session_id:
            return None
        row = await self.db.get_one(
            """
            SELECT s.session_id, s.expires_at,
                   u.user_id, u.username, u.email, u.role_id, u.status, r.role_name
            FROM sessions s
            JOIN users u ON s.user_id = u.user_id
            JOIN roles r ON u.role_id = r.role_id
            WHERE s.session_id = :session_id
              AND s.is_active = :active
              AND s.expires_at > :now
              AND u.status = 'active'
            """,
            {"session_id": session_id, "active": True, "now": utcnow()},
        )
        if row is None:
            return None

        await self.db.update(
            "sessions",
            {"last_activity": utcnow()},
            "session_id = :session_id",
            {"session_id": session_id},
        )
        return SessionContext(
            session_id=row["session_id"],
            expires_at=as_datetime(row["expires_at"]),
            user=SessionUser(
                user_id=row["user_id"],
                username=row["username"],
                email=row["email"],
                role_id=row["role_id"],
                role_name=row["role_name"],
                status=row["status"],
            ),
        )

    async def destroy_session(self, session_id: str) -> bool:
        """Mark one session inactive. Destroying an already-dead session is a no-op."""
        await self.db.update(
            "sessions",
            {"is_active": False},
            "session_id = :session_id",
            {"session_id": session_id},
        )
        return True

    async def destroy_user_sessions(self, user_id: int) -> bool:
        """Revoke every active session belonging to user_id."""
        revoked = await self.db.update(
            "sessions",
            {"is_active": False},
            "user_id = :user_id AND is_active = :active",
            {"user_id": user_id, "active": True},
        )
        if revoked:
            logger.info("Revoked %d session(s) for user_id=%s", revoked, user_id)
        return True

    async def clean_expired_sessions(self) -> bool:
        """Deactivate every active session whose expires_at has passed."""
        swept = await self.db.update(
            "sessions",
            {"is_active": False},
            "expires_at < :now AND is_active = :active",
            {"now": utcnow(), "active": True},
        )
        if swept:
            logger.info("Swept %d expired session(s)", swept)
        return True

    async def extend_session(self, session_id: str) -> bool:
        """Push expires_at to now + timeout. Returns False for a dead or expired session."""
        now = utcnow()
        affected = await self.db.update(
            "sessions",
            {"expires_at": now + self.timeout, "last_activity": now},
            "session_id = :session_id AND is_active = :active AND expires_at > :now",
            {"session_id": session_id, "active": True, "now": now},
        )
        return affected > 0

    async def get_user_sessions(self, user_id: int) -> list[SessionSummary]:
        """Active, unexpired sessions for user_id, most recently used first."""
        rows = await self.db.get_many(
            """
            SELECT session_id, ip_address, user_agent, created_at, last_activity, expires_at
            FROM sessions
            WHERE user_id = :user_id AND is_active = :active AND expires_at > :now
            ORDER BY last_activity DESC
            """,
            {"user_id": user_id, "active": True, "now": utcnow()},
        )
        return [_row_to_summary(r) for r in rows]

    async def list_active_sessions(self) -> list[dict]:
        """Every live session across all users, with owner details, newest activity first."""
        rows = await self.db.get_many(
            """
            SELECT s.session_id, s.ip_address, s.user_agent, s.created_at,
                   s.last_activity, s.expires_at,
                   u.user_id, u.username, u.email, r.role_name
            FROM sessions s
            JOIN users u ON s.user_id = u.user_id
            JOIN roles r ON u.role_id = r.role_id
            WHERE s.is_active = :active AND s.expires_at > :now
            ORDER BY s.last_activity DESC
            """,
            {"active": True, "now": utcnow()},
        )
        for row in rows:
            for key in ("created_at", "last_activity", "expires_at"):
                row[key] = as_datetime(row[key])
        return rows


def _row_to_summary(row: dict) -> SessionSummary:
    return SessionSummary(
        session_id=row["session_id"],
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        created_at=as_datetime(row.get("created_at")),
        last_activity=as_datetime(row.get("last_activity")),
        expires_at=as_datetime(row.get("expires_at")),
    )
