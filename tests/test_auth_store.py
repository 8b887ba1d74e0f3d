"""
tests/test_auth_store.py -- Unit tests for auth/store.py and auth/tokens.py login.

Covers:
  - Default roles are seeded once (idempotent) with the expected matrices
  - get_by_login accepts email or username
  - find_conflict reports which unique field is taken
  - authenticate_user: success resets counters, wrong password counts,
    the Nth failure locks, a locked account refuses even the right password
  - Unknown and inactive accounts fail with the same message
  - Role permission replace / lookup
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import SUPER_ADMIN, Action, ModulePermissions
from auth.store import RoleStore, UserStore
from auth.tokens import authenticate_user, hash_password, verify_password
from core.config import get_settings
from core.errors import AccountLockedError, AuthenticationError
from db.executor import Database, utcnow


async def _make_user(db: Database, username: str = "carol", password: str = "correct-horse") -> int:
    role = await RoleStore(db).get_by_name("Auditor")
    return await UserStore(db).create_user(username, f"{username}@example.com", hash_password(password), role.role_id)


def test_hash_and_verify() -> None:
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret-pass", "not-a-bcrypt-hash")


class TestRoles:
    @pytest.mark.asyncio
    async def test_default_roles_idempotent(self, db: Database) -> None:
        roles = RoleStore(db)
        assert await roles.ensure_default_roles() == 0
        names = {r.role_name for r in await roles.list_roles()}
        assert {SUPER_ADMIN, "Client Manager", "Auditor"} <= names
        assert all(r.is_system_role for r in await roles.list_roles())

    @pytest.mark.asyncio
    async def test_seeded_matrices(self, db: Database) -> None:
        roles = RoleStore(db)
        manager = await roles.get_by_name("Client Manager")
        perms = await roles.get_module_permissions(manager.role_id, "clients")
        assert perms.allows(Action.edit)
        assert not perms.allows(Action.delete)
        auditor = await roles.get_by_name("Auditor")
        assert await roles.get_module_permissions(auditor.role_id, "users") is None
        assert (await roles.get_module_permissions(auditor.role_id, "invoices")).allows(Action.view)
        admin = await roles.get_by_name(SUPER_ADMIN)
        assert await roles.get_permissions(admin.role_id) == {}

    @pytest.mark.asyncio
    async def test_replace_permissions(self, db: Database) -> None:
        roles = RoleStore(db)
        role_id = await roles.create_role("Billing Clerk", "Invoices only", {"invoices": ModulePermissions.full("invoices")})
        await roles.replace_permissions(role_id, {"clients": ModulePermissions("clients", can_view=True)})
        matrix = await roles.get_permissions(role_id)
        assert set(matrix) == {"clients"}
        assert matrix["clients"].to_dict() == {"can_view": True, "can_create": False, "can_edit": False, "can_delete": False}

    @pytest.mark.asyncio
    async def test_user_counts(self, db: Database) -> None:
        roles = RoleStore(db)
        user_id = await _make_user(db)
        auditor = await roles.get_by_name("Auditor")
        assert await roles.count_active_users(auditor.role_id) == 1
        await UserStore(db).update_user(user_id, status="inactive")
        assert await roles.count_active_users(auditor.role_id) == 0
        assert await roles.count_users(auditor.role_id) == 1


class TestUserLookups:
    @pytest.mark.asyncio
    async def test_login_by_email_or_username(self, db: Database) -> None:
        user_id = await _make_user(db)
        store = UserStore(db)
        assert (await store.get_by_login("carol")).user_id == user_id
        assert (await store.get_by_login("carol@example.com")).user_id == user_id
        assert await store.get_by_login("nobody") is None

    @pytest.mark.asyncio
    async def test_find_conflict(self, db: Database) -> None:
        user_id = await _make_user(db)
        store = UserStore(db)
        assert await store.find_conflict("someone", "carol@example.com") == "email"
        assert await store.find_conflict("carol", "new@example.com") == "username"
        assert await store.find_conflict("carol", "carol@example.com", exclude_id=user_id) is None

    @pytest.mark.asyncio
    async def test_list_users_filters(self, db: Database) -> None:
        await _make_user(db, "dave")
        await _make_user(db, "erin")
        store = UserStore(db)
        page = await store.list_users(search="dav")
        assert [u.username for u in page.rows] == ["dave"]
        assert page.rows[0].role_name == "Auditor"
        assert page.rows[0].password_hash is None


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_success_resets_attempts(self, db: Database) -> None:
        user_id = await _make_user(db)
        store = UserStore(db)
        with pytest.raises(AuthenticationError):
            await authenticate_user(store, "carol", "wrong")
        assert (await store.get_by_id(user_id)).login_attempts == 1

        user = await authenticate_user(store, "carol@example.com", "correct-horse")
        assert user.user_id == user_id
        refreshed = await store.get_by_id(user_id)
        assert refreshed.login_attempts == 0
        assert refreshed.last_login is not None

    @pytest.mark.asyncio
    async def test_lockout_after_max_attempts(self, db: Database) -> None:
        await _make_user(db)
        store = UserStore(db)
        for _ in range(get_settings().max_login_attempts):
            with pytest.raises(AuthenticationError):
                await authenticate_user(store, "carol", "wrong")
        with pytest.raises(AccountLockedError):
            await authenticate_user(store, "carol", "correct-horse")

    @pytest.mark.asyncio
    async def test_lock_expires(self, db: Database) -> None:
        user_id = await _make_user(db)
        store = UserStore(db)
        await store.update_user(user_id, locked_until=utcnow() - timedelta(minutes=1))
        user = await authenticate_user(store, "carol", "correct-horse")
        assert user.user_id == user_id

    @pytest.mark.asyncio
    async def test_unknown_and_inactive_look_the_same(self, db: Database) -> None:
        user_id = await _make_user(db)
        store = UserStore(db)
        await store.update_user(user_id, status="inactive")
        with pytest.raises(AuthenticationError) as inactive:
            await authenticate_user(store, "carol", "correct-horse")
        with pytest.raises(AuthenticationError) as unknown:
            await authenticate_user(store, "ghost", "correct-horse")
        assert inactive.value.message == unknown.value.message == "Invalid credentials"
