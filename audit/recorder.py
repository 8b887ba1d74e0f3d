"""
audit/recorder.py -- Best-effort audit log writer.

Every mutating route calls AuditRecorder after its own write has succeeded.
The audit row is a separate statement: a failure here is logged and
swallowed, never turned into an error response, and never rolls back the
mutation it describes. Audit failures are the one error category the API
deliberately absorbs.

Snapshots (old_values / new_values) are stored as JSON text with sorted keys
so two snapshots of the same record diff cleanly. Password fields are removed
before serialization, whatever their value.

Layer rule: no imports from api/ or billing/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from auth.models import AuthContext
from db.executor import Database, utcnow

logger = logging.getLogger("billing.audit")

_SENSITIVE_KEYS = frozenset({"password", "password_hash"})


@dataclass
class AuditEntry:
    action_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    entity_name: Optional[str] = None
    description: Optional[str] = None
    user_id: Optional[int] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None


def _snapshot(values: Optional[dict[str, Any]]) -> Optional[str]:
    if values is None:
        return None
    clean = {k: v for k, v in values.items() if k not in _SENSITIVE_KEYS}
    return json.dumps(clean, sort_keys=True, default=str)


class AuditRecorder:
    """Writes AuditEntry rows to audit_logs.

    Usage:
        audit = AuditRecorder(db)
        await audit.log_user_action(auth, "CREATE", "client", client_id, "Acme", new_values=body)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def log(self, entry: AuditEntry) -> bool:
        """Persist one entry. Returns False (and logs a warning) instead of raising."""
        try:
            await self.db.insert(
                "audit_logs",
                {
                    "user_id": entry.user_id,
                    "action_type": entry.action_type,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "entity_name": entry.entity_name,
                    "description": entry.description,
                    "old_values": _snapshot(entry.old_values),
                    "new_values": _snapshot(entry.new_values),
                    "ip_address": entry.ip_address,
                    "user_agent": entry.user_agent,
                    "session_id": entry.session_id,
                    "created_at": utcnow(),
                },
            )
        except Exception as exc:
            logger.warning(
                "Audit write failed for %s %s:%s (%s)",
                entry.action_type,
                entry.entity_type,
                entry.entity_id,
                type(exc).__name__,
            )
            return False
        return True

    async def log_user_action(
        self,
        context: AuthContext,
        action: str,
        entity_type: str,
        entity_id: Optional[int],
        entity_name: Optional[str],
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Record an action taken by the authenticated user in `context`."""
        return await self.log(
            AuditEntry(
                action_type=action,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                description=f"{action} {entity_type}: {entity_name}",
                user_id=context.user.user_id,
                old_values=old_values,
                new_values=new_values,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                session_id=context.session_id,
            )
        )

    async def recent(self, limit: int = 50, entity_type: Optional[str] = None) -> list[dict]:
        """Newest audit rows first, optionally filtered to one entity type."""
        where = "1=1"
        params: dict[str, Any] = {"limit": limit}
        if entity_type:
            where = "entity_type = :entity_type"
            params["entity_type"] = entity_type
        return await self.db.get_many(
            f"SELECT * FROM audit_logs WHERE {where} ORDER BY audit_id DESC LIMIT :limit",  # noqa: S608
            params,
        )
