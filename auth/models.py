"""
auth/models.py -- Domain dataclasses for authentication and authorization.

Pattern: Data class (pure data container, near-zero logic). Stores build
these from rows; dependencies and routes pass them around. The one piece of
behaviour kept here is ModulePermissions.allows(), because the mapping from
an Action to its flag is part of the permission shape itself.

Layer rule: no imports from api/, billing/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

SUPER_ADMIN = "Super Admin"
CLIENT_MANAGER = "Client Manager"
AUDITOR = "Auditor"

# Modules that carry a row in role_permissions. Routes pass one of these to
# require_permission(); the login response reports the matrix over them.
MODULES: tuple[str, ...] = (
    "users",
    "roles",
    "clients",
    "invoices",
    "reports",
)


class Action(str, Enum):
    view = "view"
    create = "create"
    edit = "edit"
    delete = "delete"


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"


@dataclass
class User:
    """A stored user account joined with its role name.

    password_hash is the bcrypt hash. It never leaves the auth layer: route
    handlers map User onto response models that have no password field.
    """

    username: str
    email: str
    role_id: int
    user_id: Optional[int] = None
    role_name: str = ""
    status: str = UserStatus.active.value
    password_hash: Optional[str] = None
    login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active.value


@dataclass(frozen=True)
class SessionUser:
    """The identity a valid session resolves to."""

    user_id: int
    username: str
    email: str
    role_id: int
    role_name: str
    status: str

    @property
    def is_super_admin(self) -> bool:
        return self.role_name == SUPER_ADMIN


@dataclass(frozen=True)
class SessionContext:
    """Result of a successful SessionStore.validate_session() call."""

    session_id: str
    user: SessionUser
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class AuthContext:
    """Per-request identity passed explicitly through the dependency chain.

    Built by require_auth() and handed to permission checks, route handlers
    and AuditRecorder.log_user_action(). Nothing is attached to request.state.
    """

    session_id: str
    user: SessionUser
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class SessionSummary:
    """One row of a user's "signed-in devices" list."""

    session_id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[datetime]
    last_activity: Optional[datetime]
    expires_at: Optional[datetime]


@dataclass
class ModulePermissions:
    """Allowed actions on one module for one role."""

    module: str
    can_view: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def allows(self, action: Action) -> bool:
        flags = {
            Action.view: self.can_view,
            Action.create: self.can_create,
            Action.edit: self.can_edit,
            Action.delete: self.can_delete,
        }
        return flags[action]

    def to_dict(self) -> dict[str, bool]:
        return {
            "can_view": self.can_view,
            "can_create": self.can_create,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
        }

    @classmethod
    def full(cls, module: str) -> ModulePermissions:
        return cls(module=module, can_view=True, can_create=True, can_edit=True, can_delete=True)


@dataclass
class Role:
    role_name: str
    role_id: Optional[int] = None
    description: Optional[str] = None
    is_system_role: bool = False
    created_at: Optional[datetime] = None
    user_count: int = 0
    permissions: dict[str, ModulePermissions] = field(default_factory=dict)
