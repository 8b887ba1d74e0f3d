"""
core/errors.py -- Typed error hierarchy shared by every layer.

Stores and dependencies raise these; exactly one place (the exception
handlers in api/main.py) turns them into HTTP responses. Each class carries
the status code it maps to, so the translator never inspects message text.

message is the client-safe text. It must never include SQL, bound parameter
values, or driver error strings -- the underlying exception is chained with
`raise ... from exc` and logged server-side instead.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/,
billing/, or db/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for every error the API translates into an envelope."""

    status_code: int = 500
    default_message: str = "Internal server error occurred"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Malformed or missing required input."""

    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(AppError):
    """Missing, invalid, or expired session."""

    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(AppError):
    """Valid identity, insufficient role or permission."""

    status_code = 403
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    """Unique value (email, username, role name) already taken."""

    status_code = 409
    default_message = "Resource already exists"


class AccountLockedError(AppError):
    status_code = 423
    default_message = "Account is temporarily locked"


class DatabaseError(AppError):
    """Query failure. 400 for rejected statements, 500 otherwise."""

    status_code = 500
    default_message = "Database operation failed"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class DatabaseConnectionError(DatabaseError):
    """Connection refused, dropped, or the pool timed out handing one out."""

    status_code = 503
    default_message = "Database connection failed"


class PersistenceError(DatabaseError):
    """A write the caller depends on (e.g. a session row) did not land."""

    default_message = "Failed to persist record"
