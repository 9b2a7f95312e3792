"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the token
signer and the session manager do the work; these only own the shape.

All datetimes are timezone-aware UTC. The stores convert to and from ISO 8601
strings at the persistence boundary.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenClass(str, Enum):
    """Selects the secret and TTL a token is signed with."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    """An account as seen by this service.

    Owned by the user store. password_hash is the bcrypt digest; the plaintext
    never reaches a User instance. id is None before the record is written.
    """

    email: str
    password_hash: str
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted: bool = False


@dataclass(frozen=True)
class TokenPayload:
    """The claims embedded in every signed token.

    Frozen so a verified payload can be compared for equality and attached to
    a request without anyone mutating the caller's identity downstream.
    """

    user_id: str
    email: str


# A verified TokenPayload attached to a request is the caller's identity.
Identity = TokenPayload


@dataclass(frozen=True)
class TokenPair:
    """An access/refresh token pair issued together from one payload.

    The expiry timestamps are read back from each token's own exp claim, so
    they match what verification will later see to the second.
    """

    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime


@dataclass
class AuthSession:
    """Server-side record of one refresh token's validity window.

    Active iff deleted is False and expires_at is still in the future. The
    only mutation after creation is deleted -> True (soft delete); rows are
    never removed.
    """

    refresh_token: str
    user_id: str
    expires_at: datetime
    id: str | None = None
    deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
