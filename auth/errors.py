"""
auth/errors.py -- Error taxonomy for the authentication core.

Every error carries the HTTP status it maps to and a stable `code` string.
The API layer renders them uniformly as:

    {"success": false, "error": <code>, "message": <message>}

so route handlers raise and never build error responses by hand.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class. Subclasses override status_code, code and the default message."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        self.message = message or self.default_message
        # Server-side detail. Only sent to clients when DEBUG=true.
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input: missing username, bad role, invalid id, and so on."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid input."


class AuthenticationError(AuthError):
    """Bad credentials, or a missing, invalid or expired token.

    The message is deliberately generic: callers never learn whether the
    username exists.
    """

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class BadCredentialsError(AuthenticationError):
    code = "authentication_failed"
    default_message = "Invalid username or password."


class AuthorizationError(AuthError):
    """Valid identity, insufficient role."""

    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class DuplicateUsernameError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Username already exists."


class BackendUnavailableError(AuthError):
    """Credential store disabled, unreachable, or not initialized."""

    status_code = 503
    code = "service_unavailable"
    default_message = "The credential backend is unavailable."


class EncodingError(ValidationError):
    """Password input is not valid text."""

    code = "encoding_error"
    default_message = "Password must be valid text."


class MalformedHashError(AuthError):
    """Stored value is not a recognizable bcrypt hash."""

    code = "malformed_hash"
    default_message = "Stored credential is not a valid password hash."
