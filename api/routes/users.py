"""
api/routes/users.py -- User administration endpoints.

Routes (mounted under /api):
  GET    /api/users                            -- paginated list (Super Admin)
  POST   /api/users                            -- create user (Super Admin)
  GET    /api/users/{user_id}                  -- detail (Super Admin)
  PUT    /api/users/{user_id}                  -- update (Super Admin)
  DELETE /api/users/{user_id}                  -- soft delete (Super Admin)
  GET    /api/users/{user_id}/sessions         -- signed-in devices (self or Super Admin)
  POST   /api/users/{user_id}/terminate-sessions -- revoke all (self or Super Admin)

Rules:
  DELETE never removes the row: status becomes inactive and every session
  of the user is revoked. Super Admin accounts and the caller's own account
  cannot be deleted.
  Setting status=inactive through PUT revokes the user's sessions as well.
  A Super Admin cannot deactivate or demote themselves through PUT, so the
  system always keeps at least the acting administrator.
  Passwords are bcrypt-hashed here and never returned or written to the audit log.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    MessageResponse,
    Pagination,
    SessionListResponse,
    SessionRow,
    UserCreate,
    UserListResponse,
    UserOut,
    UserResponse,
    UserUpdate,
    session_prefix,
)
from audit.recorder import AuditRecorder
from auth.dependencies import require_auth, require_super_admin
from auth.models import SUPER_ADMIN, AuthContext, User, UserStatus
from auth.store import RoleStore, UserStore
from auth.tokens import hash_password
from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

# Auth policy:
# - /api/users and /api/users/{id}:   require Super Admin (require_super_admin)
# - /api/users/{id}/sessions and /terminate-sessions: require auth; the
#   handler allows the user themself or a Super Admin.
router = APIRouter()


def _audit_view(user: User) -> dict:
    view = asdict(user)
    view.pop("password_hash", None)
    return view


async def _load_user(user_store: UserStore, user_id: int) -> User:
    user = await user_store.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _check_role(role_store: RoleStore, role_id: int) -> None:
    if not await role_store.role_exists(role_id):
        raise ValidationError("Invalid role_id")


def _require_self_or_super_admin(auth: AuthContext, user_id: int) -> None:
    if auth.user.user_id != user_id and not auth.user.is_super_admin:
        raise AuthorizationError("Access denied")


# ---------------------------------------------------------------------------
# CRUD (Super Admin)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
async def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=100),
    status: Optional[UserStatus] = None,
    role_id: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_super_admin),
) -> UserListResponse:
    """Return one page of users, newest first."""
    result = await request.app.state.user_store.list_users(
        page=page,
        limit=limit,
        search=search.strip(),
        role_id=role_id,
        status=status.value if status else None,
    )
    return UserListResponse(
        data=[UserOut.model_validate(u) for u in result.rows],
        pagination=Pagination(**result.pagination),
    )


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    auth: AuthContext = Depends(require_super_admin),
) -> UserResponse:
    """Create a user account. 409 if the email or username is taken."""
    user_store: UserStore = request.app.state.user_store
    await _check_role(request.app.state.role_store, body.role_id)
    conflict = await user_store.find_conflict(body.username, body.email)
    if conflict:
        raise ConflictError("User with this email or username already exists")

    password_hash = await asyncio.to_thread(hash_password, body.password)
    user_id = await user_store.create_user(
        username=body.username,
        email=body.email,
        password_hash=password_hash,
        role_id=body.role_id,
        status=body.status.value,
        created_by=auth.user.user_id,
    )
    created = await _load_user(user_store, user_id)
    await request.app.state.audit.log_user_action(
        auth, "CREATE", "user", user_id, created.username, new_values=_audit_view(created)
    )
    return UserResponse(message="User created successfully", data=UserOut.model_validate(created))


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    auth: AuthContext = Depends(require_super_admin),
) -> UserResponse:
    user = await _load_user(request.app.state.user_store, user_id)
    return UserResponse(data=UserOut.model_validate(user))


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    auth: AuthContext = Depends(require_super_admin),
) -> UserResponse:
    """Update a user. Only the fields present in the body change."""
    user_store: UserStore = request.app.state.user_store
    sessions = request.app.state.session_store
    audit: AuditRecorder = request.app.state.audit

    before = await _load_user(user_store, user_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    if user_id == auth.user.user_id:
        if changes.get("status") == UserStatus.inactive:
            raise ValidationError("Cannot deactivate your own account")
        if "role_id" in changes and changes["role_id"] != before.role_id:
            raise ValidationError("Cannot change your own role")

    if "email" in changes and changes["email"] != before.email:
        if await user_store.find_conflict(None, changes["email"], exclude_id=user_id):
            raise ConflictError("Email already exists")
    if "username" in changes and changes["username"] != before.username:
        if await user_store.find_conflict(changes["username"], None, exclude_id=user_id):
            raise ConflictError("Username already exists")
    if "role_id" in changes:
        await _check_role(request.app.state.role_store, changes["role_id"])
    if "status" in changes:
        changes["status"] = changes["status"].value
    if "password" in changes:
        changes["password_hash"] = await asyncio.to_thread(hash_password, changes.pop("password"))

    await user_store.update_user(user_id, **changes)
    if changes.get("status") == UserStatus.inactive.value:
        await sessions.destroy_user_sessions(user_id)

    after = await _load_user(user_store, user_id)
    await audit.log_user_action(
        auth, "UPDATE", "user", user_id, after.username, old_values=_audit_view(before), new_values=_audit_view(after)
    )
    return UserResponse(message="User updated successfully", data=UserOut.model_validate(after))


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    request: Request,
    user_id: int,
    auth: AuthContext = Depends(require_super_admin),
) -> MessageResponse:
    """Soft-delete: mark the user inactive and revoke all of their sessions."""
    user_store: UserStore = request.app.state.user_store
    user = await _load_user(user_store, user_id)
    if user.role_name == SUPER_ADMIN:
        raise ValidationError("Cannot delete Super Admin user")
    if user_id == auth.user.user_id:
        raise ValidationError("Cannot delete your own account")

    await request.app.state.session_store.destroy_user_sessions(user_id)
    await user_store.update_user(user_id, status=UserStatus.inactive.value)
    await request.app.state.audit.log_user_action(
        auth, "DELETE", "user", user_id, user.username, old_values=_audit_view(user)
    )
    return MessageResponse(message="User deleted successfully")


# ---------------------------------------------------------------------------
# Sessions (self or Super Admin)
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/sessions", response_model=SessionListResponse)
async def get_user_sessions(
    request: Request,
    user_id: int,
    auth: AuthContext = Depends(require_auth),
) -> SessionListResponse:
    """List a user's active sessions, most recently used first."""
    _require_self_or_super_admin(auth, user_id)
    sessions = await request.app.state.session_store.get_user_sessions(user_id)
    return SessionListResponse(
        data=[
            SessionRow(
                session_prefix=session_prefix(s.session_id),
                ip_address=s.ip_address,
                user_agent=s.user_agent,
                created_at=s.created_at,
                last_activity=s.last_activity,
                expires_at=s.expires_at,
            )
            for s in sessions
        ]
    )


@router.post("/users/{user_id}/terminate-sessions", response_model=MessageResponse)
async def terminate_user_sessions(
    request: Request,
    user_id: int,
    auth: AuthContext = Depends(require_auth),
) -> MessageResponse:
    """Revoke every active session of the user, including the caller's own when user_id is self."""
    _require_self_or_super_admin(auth, user_id)
    user = await _load_user(request.app.state.user_store, user_id)
    await request.app.state.session_store.destroy_user_sessions(user_id)
    await request.app.state.audit.log_user_action(auth, "TERMINATE_SESSIONS", "user", user_id, user.username)
    return MessageResponse(message="All sessions terminated successfully")
