"""
auth/errors.py -- Error taxonomy of the auth core.

Every failure the core reports to callers is one of these classes. Each
carries a stable machine-readable `code` and a fixed human message. Messages
are deliberately generic: they never name the identifier, the tenant, the
token, or which part of a multi-field check failed [C1].

The HTTP status mapping lives in api/main.py -- auth/ stays framework-free.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error surfaced by the auth core."""

    code: str = "auth_error"
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


class DuplicateIdentity(AuthError):
    """join collision on (tenant, role, identifier). Not retryable as-is."""

    code = "duplicate_identity"
    message = "An identity with that identifier already exists."


class InvalidCredentials(AuthError):
    """Unknown identifier, wrong password, or disabled account -- one error for all three."""

    code = "invalid_credentials"
    message = "Invalid identifier or password."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    message = "Refresh token is invalid or expired."


class SessionRevoked(AuthError):
    """A refresh token from a closed lineage was presented. Security event."""

    code = "session_revoked"
    message = "Session has been revoked. Please sign in again."


class IdentityDisabled(AuthError):
    code = "identity_disabled"
    message = "This account is disabled."


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Access token is invalid or expired."


class Forbidden(AuthError):
    code = "forbidden"
    message = "Insufficient role for this operation."


class UnknownRole(AuthError):
    """Role outside the configured role set, or tenant scoping does not match the role."""

    code = "unknown_role"
    message = "Unknown role or invalid tenant scope for role."


class RegistrationClosed(AuthError):
    code = "registration_closed"
    message = "Self-registration is disabled."


class NotFound(AuthError):
    code = "not_found"
    message = "Not found."
