"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

The session token is read from two places, in priority order:
  1. Cookie "session_id" -- set by POST /auth/login for browser clients.
  2. X-Session-ID header -- API clients that keep the token themselves.

Dependency chain:
  resolve_session()        token -> SessionContext | None (never raises for a bad token)
  try_get_auth()           soft variant; AuthContext | None
  require_auth()           401 unless the session and its user are both live
  require_permission()     401 / 403 "Insufficient permissions" (Super Admin bypasses)
  require_role()           401 / 403 "Access denied"
  require_super_admin()    401 / 403 "Super Admin access required"

The three guards below require_auth take it through Depends(), so FastAPI
resolves identity once per request and they never re-validate the session.
Every guard returns the AuthContext, which route handlers receive as a
parameter. Nothing is stashed on request.state.

Failures are raised as core.errors types; api/main.py turns them into the
JSON envelope.

Layer rule: no imports from api/, billing/, or audit/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import Depends, Request

from auth.models import SUPER_ADMIN, Action, AuthContext, SessionContext, SessionUser
from auth.tokens import SESSION_COOKIE, SESSION_HEADER
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("billing.auth")


def get_session_token(request: Request) -> str | None:
    """Return the session token from the cookie, falling back to X-Session-ID."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        token = request.headers.get(SESSION_HEADER)
    return token or None


async def resolve_session(request: Request) -> SessionContext | None:
    """Validate the request's token against the session store.

    Returns None when there is no token or the session does not authorize.
    Database failures propagate (503 / 500), they do not downgrade to anonymous.
    """
    token = get_session_token(request)
    if token is None:
        return None
    return await request.app.state.session_store.validate_session(token)


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def try_get_auth(request: Request) -> AuthContext | None:
    """Optional authentication. Never raises for a missing or invalid session."""
    ctx = await resolve_session(request)
    if ctx is None:
        return None
    return AuthContext(
        session_id=ctx.session_id,
        user=ctx.user,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def require_auth(request: Request) -> AuthContext:
    """Require a valid session. Raises AuthenticationError (401) otherwise.

    After the session validates, the user is re-read by id. If that lookup
    finds no active user the session is destroyed on the spot so the stale
    token cannot be replayed.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(auth: AuthContext = Depends(require_auth)): ...
    """
    ctx = await resolve_session(request)
    if ctx is None:
        raise AuthenticationError("Authentication required")

    user = await request.app.state.user_store.get_active_by_id(ctx.user.user_id)
    if user is None:
        await request.app.state.session_store.destroy_session(ctx.session_id)
        logger.info("Destroyed stale session for user_id=%s", ctx.user.user_id)
        raise AuthenticationError("User not found or inactive")

    return AuthContext(
        session_id=ctx.session_id,
        user=SessionUser(
            user_id=user.user_id,
            username=user.username,
            email=user.email,
            role_id=user.role_id,
            role_name=user.role_name,
            status=user.status,
        ),
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def require_permission(module: str, action: Action):
    """Build a dependency that requires `action` on `module`.

    Super Admin passes unconditionally. Any other role needs a
    role_permissions row for the module that allows the action; a missing
    row denies.

    Use as a FastAPI dependency:
        @router.post("/clients")
        async def route(auth: AuthContext = Depends(require_permission("clients", Action.create))): ...
    """
    action = Action(action)

    async def _check(request: Request, auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if auth.user.is_super_admin:
            return auth
        perms = await request.app.state.role_store.get_module_permissions(auth.user.role_id, module)
        if perms is None or not perms.allows(action):
            logger.info(
                "Denied %s on %s for user_id=%s (role %s)",
                action.value,
                module,
                auth.user.user_id,
                auth.user.role_name,
            )
            raise AuthorizationError("Insufficient permissions")
        return auth

    return _check


def require_role(allowed_roles: Iterable[str]):
    """Build a dependency that requires the user's role to be one of allowed_roles."""
    allowed = frozenset(allowed_roles)

    async def _check(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if auth.user.role_name not in allowed:
            raise AuthorizationError("Access denied")
        return auth

    return _check


async def require_super_admin(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    """Require the Super Admin role. Raises AuthorizationError (403) otherwise."""
    if auth.user.role_name != SUPER_ADMIN:
        raise AuthorizationError("Super Admin access required")
    return auth
