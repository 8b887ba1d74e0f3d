"""
auth/tokens.py -- Password hashing, session tokens, login, and cookie helpers.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       offline brute-force expensive. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an account exists. bcrypt runs in a worker thread
       (asyncio.to_thread) so a login never stalls the event loop.

  Session tokens: secrets.token_hex(64) gives 512 bits of entropy rendered as
       a fixed 128-character string. Tokens are opaque -- all state lives in
       the sessions table, so revoking a row revokes the token.

  Lockout: every wrong password increments users.login_attempts. Reaching
       MAX_LOGIN_ATTEMPTS stamps locked_until = now + LOCKOUT_MINUTES. The lock
       is checked before the password, so a locked account answers 423 even
       for the right password until the window passes.

Layer rule: no imports from api/, billing/, or audit/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings
from core.errors import AccountLockedError, AuthenticationError
from db.executor import utcnow

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("billing.auth")

SESSION_COOKIE = "session_id"
SESSION_HEADER = "X-Session-ID"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    128 characters (Pydantic field), and multi-byte characters aside that
    keeps inputs inside the limit bcrypt 4.x enforces.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the row (e.g. a legacy plaintext value).
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("billing_timing_dummy")


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_id() -> str:
    """Return a new opaque session token: 64 random bytes as 128 hex chars."""
    return secrets.token_hex(64)


# ---------------------------------------------------------------------------
# Login (constant-time)
# ---------------------------------------------------------------------------


async def authenticate_user(store: UserStore, login: str, password: str) -> User:
    """Authenticate an email-or-username / password pair.

    Returns the User on success. Raises AuthenticationError("Invalid
    credentials") for an unknown login, an inactive account, or a wrong
    password -- the caller cannot tell which -- and AccountLockedError while
    a lockout window is open.

    bcrypt always runs once, against _DUMMY_HASH when there is no account, so
    unknown logins cost the same as wrong passwords.
    """
    settings = get_settings()
    user = await store.get_by_login(login)
    if user is None or not user.is_active or not user.password_hash:
        await asyncio.to_thread(verify_password, password, _DUMMY_HASH)
        raise AuthenticationError("Invalid credentials")

    if user.locked_until is not None and user.locked_until > utcnow():
        raise AccountLockedError()

    if not await asyncio.to_thread(verify_password, password, user.password_hash):
        locked = await store.record_failed_login(
            user.user_id,
            max_attempts=settings.max_login_attempts,
            lockout_minutes=settings.lockout_minutes,
        )
        if locked:
            logger.warning("Account %s locked after %d failed logins", user.username, settings.max_login_attempts)
        raise AuthenticationError("Invalid credentials")

    await store.record_successful_login(user.user_id)
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS unless SECURE_COOKIES=false (local dev).
    max_age: matches the server-side session timeout.
    """
    settings = get_settings()
    response.set_cookie(
        SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.session_timeout_seconds,
    )


def clear_session_cookie(response) -> None:
    settings = get_settings()
    response.delete_cookie(
        SESSION_COOKIE,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )
