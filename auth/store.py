"""
auth/store.py -- Persistence for users, roles, and the permission matrix.

Pattern: Repository + Data Mapper. UserStore and RoleStore are the
repositories; _row_to_user / _row_to_role / _row_to_permissions are the
mappers. Route and dependency code never touches SQL directly.

Security:
  All queries go through db.executor.Database with bound parameters.

  Permission lookups select all four can_* columns and let
  ModulePermissions.allows() pick the flag for an Action. No column name is
  ever assembled from the requested action.

Layer rule: no imports from api/, billing/, or audit/.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from auth.models import AUDITOR, CLIENT_MANAGER, SUPER_ADMIN, ModulePermissions, Role, User
from db.executor import Database, Page, as_datetime, utcnow

_USER_SELECT = """
    SELECT u.user_id, u.username, u.email, u.password, u.role_id, u.status,
           u.login_attempts, u.locked_until, u.last_login, u.created_by,
           u.created_at, u.updated_at, r.role_name
    FROM users u
    JOIN roles r ON u.role_id = r.role_id
"""

# Seeded on first start (see RoleStore.ensure_default_roles). Super Admin has
# no permission rows: require_permission() lets it through unconditionally.
DEFAULT_ROLES: dict[str, dict] = {
    SUPER_ADMIN: {
        "description": "Full access to every module, user and role.",
        "permissions": {},
    },
    CLIENT_MANAGER: {
        "description": "Manages clients and their invoices.",
        "permissions": {
            "clients": ModulePermissions("clients", True, True, True, False),
            "invoices": ModulePermissions("invoices", True, True, True, False),
            "reports": ModulePermissions("reports", can_view=True),
        },
    },
    AUDITOR: {
        "description": "Read-only access for compliance review.",
        "permissions": {
            module: ModulePermissions(module, can_view=True) for module in ("clients", "invoices", "reports")
        },
    },
}


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(db)
        user_id = await store.create_user("admin", "admin@example.com", hash_password("secret"), role_id=1)
        user = await store.get_by_login("admin@example.com")
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_by_id(self, user_id: int) -> Optional[User]:
        row = await self.db.get_one(f"{_USER_SELECT} WHERE u.user_id = :user_id", {"user_id": user_id})
        return _row_to_user(row) if row is not None else None

    async def get_active_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by id, returning None unless the account is active."""
        row = await self.db.get_one(
            f"{_USER_SELECT} WHERE u.user_id = :user_id AND u.status = 'active'",
            {"user_id": user_id},
        )
        return _row_to_user(row) if row is not None else None

    async def get_by_login(self, login: str) -> Optional[User]:
        """Look up a user by email or username (the login form accepts either)."""
        row = await self.db.get_one(
            f"{_USER_SELECT} WHERE u.email = :login OR u.username = :login",
            {"login": login},
        )
        return _row_to_user(row) if row is not None else None

    async def find_conflict(self, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> Optional[str]:
        """Return "email" or "username" if another user already holds that value."""
        params = {"exclude_id": exclude_id or 0}
        if email:
            taken = await self.db.get_one(
                "SELECT user_id FROM users WHERE email = :email AND user_id != :exclude_id",
                {**params, "email": email},
            )
            if taken:
                return "email"
        if username:
            taken = await self.db.get_one(
                "SELECT user_id FROM users WHERE username = :username AND user_id != :exclude_id",
                {**params, "username": username},
            )
            if taken:
                return "username"
        return None

    async def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        role_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> Page:
        """Return one page of users (newest first) with role names, without password hashes."""
        where = "1=1"
        params: dict = {}
        if search:
            where += " AND (u.username LIKE :search OR u.email LIKE :search)"
            params["search"] = f"%{search}%"
        if role_id is not None:
            where += " AND u.role_id = :role_id"
            params["role_id"] = role_id
        if status:
            where += " AND u.status = :status"
            params["status"] = status
        result = await self.db.paginate(
            "users u",
            joins="JOIN roles r ON u.role_id = r.role_id",
            select=(
                "u.user_id, u.username, u.email, u.status, u.role_id, r.role_name, "
                "u.last_login, u.login_attempts, u.locked_until, u.created_at, u.updated_at"
            ),
            where=where,
            where_params=params,
            order_by="u.created_at DESC, u.user_id DESC",
            page=page,
            limit=limit,
        )
        result.rows = [_row_to_user(r) for r in result.rows]
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        role_id: int,
        status: str = "active",
        created_by: Optional[int] = None,
    ) -> int:
        """Insert a user and return its id. Callers check find_conflict() first."""
        return await self.db.insert(
            "users",
            {
                "username": username,
                "email": email,
                "password": password_hash,
                "role_id": role_id,
                "status": status,
                "login_attempts": 0,
                "created_by": created_by,
                "created_at": utcnow(),
            },
        )

    async def update_user(self, user_id: int, **fields) -> bool:
        """Update columns on a user. Pass password_hash= to change the password.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "password_hash" in fields:
            fields["password"] = fields.pop("password_hash")
        fields["updated_at"] = utcnow()
        return await self.db.update("users", fields, "user_id = :user_id", {"user_id": user_id}) > 0

    async def record_failed_login(self, user_id: int, max_attempts: int, lockout_minutes: int) -> bool:
        """Count one failed password. Returns True if this attempt locked the account.

        Locking resets the counter, so the user gets a fresh set of attempts
        once the lockout window closes.
        """
        await self.db.execute(
            "UPDATE users SET login_attempts = login_attempts + 1 WHERE user_id = :user_id",
            {"user_id": user_id},
        )
        attempts = await self.db.scalar("SELECT login_attempts FROM users WHERE user_id = :user_id", {"user_id": user_id})
        if attempts is not None and int(attempts) >= max_attempts:
            await self.db.update(
                "users",
                {"login_attempts": 0, "locked_until": utcnow() + timedelta(minutes=lockout_minutes)},
                "user_id = :user_id",
                {"user_id": user_id},
            )
            return True
        return False

    async def record_successful_login(self, user_id: int) -> None:
        await self.db.update(
            "users",
            {"last_login": utcnow(), "login_attempts": 0, "locked_until": None},
            "user_id = :user_id",
            {"user_id": user_id},
        )


class RoleStore:
    """Repository for roles and their role_permissions rows."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def list_roles(self) -> list[Role]:
        """Return every role with its count of active users, ordered by name."""
        rows = await self.db.get_many(
            """
            SELECT r.role_id, r.role_name, r.description, r.is_system_role, r.created_at,
                   COUNT(u.user_id) AS user_count
            FROM roles r
            LEFT JOIN users u ON r.role_id = u.role_id AND u.status = 'active'
            GROUP BY r.role_id, r.role_name, r.description, r.is_system_role, r.created_at
            ORDER BY r.role_name
            """
        )
        return [_row_to_role(r) for r in rows]

    async def get_role(self, role_id: int) -> Optional[Role]:
        """Fetch a role with its full permission matrix. Returns None if not found."""
        row = await self.db.get_one(
            "SELECT role_id, role_name, description, is_system_role, created_at FROM roles WHERE role_id = :role_id",
            {"role_id": role_id},
        )
        if row is None:
            return None
        role = _row_to_role(row)
        role.permissions = await self.get_permissions(role_id)
        role.user_count = await self.count_active_users(role_id)
        return role

    async def role_exists(self, role_id: int) -> bool:
        row = await self.db.get_one("SELECT role_id FROM roles WHERE role_id = :role_id", {"role_id": role_id})
        return row is not None

    async def get_by_name(self, role_name: str) -> Optional[Role]:
        row = await self.db.get_one(
            "SELECT role_id, role_name, description, is_system_role, created_at FROM roles WHERE role_name = :role_name",
            {"role_name": role_name},
        )
        return _row_to_role(row) if row is not None else None

    async def create_role(
        self,
        role_name: str,
        description: Optional[str] = None,
        permissions: Optional[dict[str, ModulePermissions]] = None,
        is_system_role: bool = False,
    ) -> int:
        role_id = await self.db.insert(
            "roles",
            {
                "role_name": role_name,
                "description": description,
                "is_system_role": is_system_role,
                "created_at": utcnow(),
            },
        )
        if permissions:
            await self.replace_permissions(role_id, permissions)
        return role_id

    async def update_role(self, role_id: int, **fields) -> bool:
        fields["updated_at"] = utcnow()
        return await self.db.update("roles", fields, "role_id = :role_id", {"role_id": role_id}) > 0

    async def delete_role(self, role_id: int) -> bool:
        """Delete a role and its permission rows. Callers enforce system-role and active-user rules."""
        await self.db.delete("role_permissions", "role_id = :role_id", {"role_id": role_id})
        return await self.db.delete("roles", "role_id = :role_id", {"role_id": role_id}) > 0

    async def count_active_users(self, role_id: int) -> int:
        count = await self.db.scalar(
            "SELECT COUNT(*) AS total FROM users WHERE role_id = :role_id AND status = 'active'",
            {"role_id": role_id},
        )
        return int(count or 0)

    async def count_users(self, role_id: int) -> int:
        """All users on the role, inactive included. users.role_id is a foreign key."""
        count = await self.db.scalar("SELECT COUNT(*) AS total FROM users WHERE role_id = :role_id", {"role_id": role_id})
        return int(count or 0)

    async def ensure_default_roles(self) -> int:
        """Create any missing DEFAULT_ROLES as system roles. Returns how many were created.

        Idempotent -- safe to call on every startup.
        """
        created = 0
        for name, definition in DEFAULT_ROLES.items():
            if await self.get_by_name(name) is None:
                await self.create_role(name, definition["description"], definition["permissions"], is_system_role=True)
                created += 1
        return created

    # ------------------------------------------------------------------
    # Permission matrix
    # ------------------------------------------------------------------

    async def get_permissions(self, role_id: int) -> dict[str, ModulePermissions]:
        rows = await self.db.get_many(
            """
            SELECT module_name, can_view, can_create, can_edit, can_delete
            FROM role_permissions
            WHERE role_id = :role_id
            ORDER BY module_name
            """,
            {"role_id": role_id},
        )
        return {r["module_name"]: _row_to_permissions(r) for r in rows}

    async def get_module_permissions(self, role_id: int, module: str) -> Optional[ModulePermissions]:
        """Return the (role, module) row, or None when the role has no entry for the module."""
        row = await self.db.get_one(
            """
            SELECT module_name, can_view, can_create, can_edit, can_delete
            FROM role_permissions
            WHERE role_id = :role_id AND module_name = :module
            """,
            {"role_id": role_id, "module": module},
        )
        return _row_to_permissions(row) if row is not None else None

    async def replace_permissions(self, role_id: int, permissions: dict[str, ModulePermissions]) -> None:
        """Swap the role's permission rows for the given matrix.

        Delete-then-insert is not atomic; a concurrent permission check may
        briefly see an empty matrix and deny.
        """
        await self.db.delete("role_permissions", "role_id = :role_id", {"role_id": role_id})
        for module, perms in permissions.items():
            await self.db.insert(
                "role_permissions",
                {
                    "role_id": role_id,
                    "module_name": module,
                    "can_view": perms.can_view,
                    "can_create": perms.can_create,
                    "can_edit": perms.can_edit,
                    "can_delete": perms.can_delete,
                },
            )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row: dict) -> User:
    return User(
        user_id=row["user_id"],
        username=row["username"],
        email=row["email"],
        role_id=row["role_id"],
        role_name=row.get("role_name") or "",
        status=row["status"],
        password_hash=row.get("password"),
        login_attempts=int(row.get("login_attempts") or 0),
        locked_until=as_datetime(row.get("locked_until")),
        last_login=as_datetime(row.get("last_login")),
        created_by=row.get("created_by"),
        created_at=as_datetime(row.get("created_at")),
        updated_at=as_datetime(row.get("updated_at")),
    )


def _row_to_role(row: dict) -> Role:
    return Role(
        role_id=row["role_id"],
        role_name=row["role_name"],
        description=row.get("description"),
        is_system_role=bool(row.get("is_system_role")),
        created_at=as_datetime(row.get("created_at")),
        user_count=int(row.get("user_count") or 0),
    )


def _row_to_permissions(row: dict) -> ModulePermissions:
    return ModulePermissions(
        module=row["module_name"],
        can_view=bool(row["can_view"]),
        can_create=bool(row["can_create"]),
        can_edit=bool(row["can_edit"]),
        can_delete=bool(row["can_delete"]),
    )
