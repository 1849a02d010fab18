"""
Error taxonomy for the auth flow.

Every error carries an explicit `kind`; the HTTP layer dispatches on the kind
rather than on the exception class.
"""
from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_SUSPENDED = "account_suspended"
    RATE_LIMITED = "rate_limited"
    SESSION_INVALID = "session_invalid"


class AuthError(Exception):
    kind: ErrorKind
    message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    kind = ErrorKind.VALIDATION
    message = "Validation error"

    def __init__(self, details: list[dict[str, Any]], message: str | None = None) -> None:
        self.details = details
        super().__init__(message)


class ConflictError(AuthError):
    kind = ErrorKind.CONFLICT
    message = "Email already registered"


class InvalidCredentialsError(AuthError):
    # Same message for unknown email and wrong password.
    kind = ErrorKind.INVALID_CREDENTIALS
    message = "Invalid email or password"


class AccountSuspendedError(AuthError):
    kind = ErrorKind.ACCOUNT_SUSPENDED
    message = "Account is suspended"


class RateLimitedError(AuthError):
    kind = ErrorKind.RATE_LIMITED
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after_seconds: int, message: str | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class SessionInvalidError(AuthError):
    kind = ErrorKind.SESSION_INVALID
    message = "Session is invalid or expired"
