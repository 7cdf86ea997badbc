"""Authentication error taxonomy.

Every failure of the login flow or of session resolution is an `AuthError`
carrying an `ErrorKind`. Callers branch on `exc.kind` (or the subclass),
never on the message text.

| Kind                         | HTTP | Meaning                                  |
|------------------------------|------|------------------------------------------|
| missing_code                 | 400  | Callback arrived without `code`           |
| upstream_auth_error          | 502  | Bungie rejected the token request         |
| upstream_timeout             | 504  | Bungie did not answer in time             |
| malformed_upstream_response  | 502  | Token payload failed schema validation    |
| store_unavailable            | 503  | Session database unreachable              |
| unauthenticated              | 401  | No live session; the user must log in     |
| invalid_return_state         | 400  | `next`/`state` is not a local path        |
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Discriminator for authentication failures."""

    MISSING_CODE = "missing_code"
    UPSTREAM_AUTH_ERROR = "upstream_auth_error"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    MALFORMED_UPSTREAM_RESPONSE = "malformed_upstream_response"
    STORE_UNAVAILABLE = "store_unavailable"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_RETURN_STATE = "invalid_return_state"


class AuthError(Exception):
    """Base exception for authentication and session errors."""

    kind: ErrorKind
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCode(AuthError):
    """Raised when the OAuth callback has no authorization code."""

    kind = ErrorKind.MISSING_CODE
    status_code = 400

    def __init__(self, message: str = "Missing authorization code"):
        super().__init__(message)


class UpstreamAuthError(AuthError):
    """Raised when Bungie answers a token request with a non-success status.

    `status` is None when the request failed before any response arrived.
    """

    kind = ErrorKind.UPSTREAM_AUTH_ERROR
    status_code = 502

    def __init__(self, status: int | None, body: str = ""):
        if status is None:
            message = "Bungie token request failed"
        else:
            message = f"Bungie token exchange failed ({status})"
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamTimeout(AuthError):
    """Raised when a Bungie token request exceeds its timeout."""

    kind = ErrorKind.UPSTREAM_TIMEOUT
    status_code = 504

    def __init__(self, message: str = "Bungie token request timed out"):
        super().__init__(message)


class MalformedUpstreamResponse(AuthError):
    """Raised when a token response does not match the expected schema."""

    kind = ErrorKind.MALFORMED_UPSTREAM_RESPONSE
    status_code = 502


class StoreUnavailable(AuthError):
    """Raised when the session store cannot be reached."""

    kind = ErrorKind.STORE_UNAVAILABLE
    status_code = 503

    def __init__(self, message: str = "Session store unavailable"):
        super().__init__(message)


class Unauthenticated(AuthError):
    """Raised when no valid session backs the request."""

    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class InvalidReturnState(AuthError):
    """A return destination that is not a single-slash local path."""

    kind = ErrorKind.INVALID_RETURN_STATE
    status_code = 400

    def __init__(self, value: str):
        super().__init__("Return destination must be a local path")
        self.value = value
