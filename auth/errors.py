"""
auth/errors.py -- Typed failure outcomes for the auth layer.

Every failure the session manager or the request authenticator can produce is
an AuthError carrying an explicit AuthErrorKind. Callers branch on .kind, never
on the message text or on the shape of the exception.

Token verification has its own small hierarchy (TokenError and subclasses)
because the signer is usable on its own. The request authenticator collapses
every TokenError into AuthErrorKind.UNAUTHENTICATED so callers cannot tell a
bad signature from an expired token.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    DUPLICATE_USER = "duplicate_user"
    NO_ACTIVE_SESSION = "no_active_session"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    REFRESH_FAILED = "refresh_failed"
    UNAUTHENTICATED = "unauthenticated"
    INTERNAL_ERROR = "internal_error"


# Kinds that must reach end users as one indistinguishable "unauthorized".
UNAUTHORIZED_KINDS = frozenset(
    {
        AuthErrorKind.INVALID_CREDENTIALS,
        AuthErrorKind.NO_ACTIVE_SESSION,
        AuthErrorKind.REFRESH_TOKEN_EXPIRED,
        AuthErrorKind.UNAUTHENTICATED,
    }
)

_DEFAULT_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid credentials.",
    AuthErrorKind.DUPLICATE_USER: "A user with that email already exists.",
    AuthErrorKind.NO_ACTIVE_SESSION: "No active session found.",
    AuthErrorKind.REFRESH_TOKEN_EXPIRED: "Refresh token expired.",
    AuthErrorKind.REFRESH_FAILED: "Failed to refresh tokens.",
    AuthErrorKind.UNAUTHENTICATED: "Authentication required.",
    AuthErrorKind.INTERNAL_ERROR: "An unexpected error occurred.",
}


class AuthError(Exception):
    """A terminal auth failure. Never retried internally."""

    def __init__(self, kind: AuthErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def is_unauthorized(self) -> bool:
        return self.kind in UNAUTHORIZED_KINDS

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidToken(TokenError):
    """Signature mismatch, malformed token, missing claims, or wrong token class."""


class ExpiredToken(TokenError):
    """The token's exp claim is at or before the current time."""
