"""
api/routes/auth.py -- Session login/logout and session management endpoints.

Routes (mounted under /auth):
  POST /auth/login            -- email-or-username + password; sets session cookie
  POST /auth/logout           -- revokes the current session; clears cookie
  GET  /auth/me               -- current user, session and permission matrix
  POST /auth/extend           -- pushes the current session's expiry out
  POST /auth/force-logout     -- revokes every session of a user (Super Admin)
  GET  /auth/active-sessions  -- every live session (Super Admin)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization and lockout -- use it,
  never inline get_by_login() + verify_password().
  A failed login creates no session row and sets no cookie.
  Cache-Control: no-store on login responses (they carry the session token).
  Session listings show a 12-character prefix, never a full token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ActiveSessionListResponse,
    ActiveSessionRow,
    CurrentSession,
    ForceLogoutRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PermissionFlags,
    SessionUserOut,
    session_prefix,
)
from audit.recorder import AuditEntry, AuditRecorder
from auth.dependencies import get_session_token, require_auth, require_super_admin, try_get_auth
from auth.models import MODULES, SUPER_ADMIN, AuthContext, ModulePermissions
from auth.sessions import SessionStore
from auth.store import RoleStore, UserStore
from auth.tokens import SESSION_COOKIE, authenticate_user, clear_session_cookie, set_session_cookie
from core.errors import AuthenticationError, NotFoundError

# Auth policy:
# - POST /auth/login:            public -- login endpoint must be unauthenticated
# - POST /auth/logout:           public -- revoking a dead or missing session is a no-op
# - GET  /auth/me:               requires auth (require_auth)
# - POST /auth/extend:           requires auth (require_auth)
# - POST /auth/force-logout:     requires Super Admin (require_super_admin)
# - GET  /auth/active-sessions:  requires Super Admin (require_super_admin)
router = APIRouter()


async def permission_matrix(role_store: RoleStore, role_id: int, role_name: str) -> dict[str, PermissionFlags]:
    """Flags for every module. Super Admin gets everything; unlisted modules are all-false."""
    if role_name == SUPER_ADMIN:
        stored = {m: ModulePermissions.full(m) for m in MODULES}
    else:
        stored = await role_store.get_permissions(role_id)
    return {m: PermissionFlags(**stored.get(m, ModulePermissions(m)).to_dict()) for m in MODULES}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate and open a new session.

    Wrong login, wrong password and inactive account all answer 401 "Invalid
    credentials". A locked account answers 423 until locked_until passes.
    """
    user_store: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store
    audit: AuditRecorder = request.app.state.audit

    user = await authenticate_user(user_store, body.email, body.password)

    ip = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    session_id = await sessions.create_session(user.user_id, ip, user_agent)
    permissions = await permission_matrix(request.app.state.role_store, user.role_id, user.role_name)

    await audit.log(
        AuditEntry(
            action_type="LOGIN",
            entity_type="user",
            entity_id=user.user_id,
            entity_name=user.username,
            description=f"User logged in: {user.username}",
            user_id=user.user_id,
            ip_address=ip,
            user_agent=user_agent,
            session_id=session_id,
        )
    )

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            session_id=session_id,
            user=SessionUserOut.model_validate(user),
            permissions=permissions,
        ).model_dump(mode="json"),
    )
    set_session_cookie(resp, session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, auth: AuthContext | None = Depends(try_get_auth)) -> JSONResponse:
    """Revoke the presented session (if any) and clear the cookie. Always 200."""
    token = get_session_token(request)
    if token:
        await request.app.state.session_store.destroy_session(token)
    if auth is not None:
        await request.app.state.audit.log_user_action(auth, "LOGOUT", "user", auth.user.user_id, auth.user.username)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=MeResponse)
async def me(request: Request, auth: AuthContext = Depends(require_auth)) -> MeResponse:
    """Return identity, session and permission information for the caller."""
    return MeResponse(
        user=SessionUserOut.model_validate(auth.user),
        session=CurrentSession(
            session_prefix=session_prefix(auth.session_id),
            ip_address=auth.ip_address,
            user_agent=auth.user_agent,
        ),
        permissions=await permission_matrix(request.app.state.role_store, auth.user.role_id, auth.user.role_name),
    )


@router.post("/extend", response_model=MessageResponse)
async def extend(request: Request, auth: AuthContext = Depends(require_auth)) -> JSONResponse:
    """Restart the session timeout from now and refresh the cookie's max-age."""
    extended = await request.app.state.session_store.extend_session(auth.session_id)
    if not extended:
        raise AuthenticationError("Invalid or expired session")
    resp = JSONResponse(content=MessageResponse(message="Session extended").model_dump())
    if request.cookies.get(SESSION_COOKIE) == auth.session_id:
        set_session_cookie(resp, auth.session_id)
    return resp


@router.post("/force-logout", response_model=MessageResponse)
async def force_logout(
    request: Request,
    body: ForceLogoutRequest,
    auth: AuthContext = Depends(require_super_admin),
) -> MessageResponse:
    """Revoke every active session belonging to body.user_id."""
    target = await request.app.state.user_store.get_by_id(body.user_id)
    if target is None:
        raise NotFoundError("User not found")
    await request.app.state.session_store.destroy_user_sessions(body.user_id)
    await request.app.state.audit.log_user_action(auth, "FORCE_LOGOUT", "user", target.user_id, target.username)
    return MessageResponse(message=f"All sessions for {target.username} have been terminated")


@router.get("/active-sessions", response_model=ActiveSessionListResponse)
async def active_sessions(
    request: Request,
    auth: AuthContext = Depends(require_super_admin),
) -> ActiveSessionListResponse:
    """List every live session across all users, most recently active first."""
    rows = await request.app.state.session_store.list_active_sessions()
    return ActiveSessionListResponse(
        data=[
            ActiveSessionRow(
                session_prefix=session_prefix(r["session_id"]),
                user_id=r["user_id"],
                username=r["username"],
                email=r["email"],
                role_name=r["role_name"],
                ip_address=r.get("ip_address"),
                user_agent=r.get("user_agent"),
                created_at=r.get("created_at"),
                last_activity=r.get("last_activity"),
                expires_at=r.get("expires_at"),
            )
            for r in rows
        ]
    )
