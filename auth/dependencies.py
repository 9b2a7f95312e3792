"""
auth/dependencies.py -- Request authentication and FastAPI Depends() helpers.

Two token sources are checked in priority order:
  1. "access_token" cookie -- set by the login/register/refresh responses.
  2. Authorization: Bearer <token> header -- API clients.

Every failure (no token, bad signature, expired, malformed, refresh token
presented as access token) becomes the same AuthError(UNAUTHENTICATED). The
caller never learns which check failed, so the endpoint is not an oracle.

RequestAuthenticator works on any object exposing `cookies` and `headers`
mappings; a Starlette Request in production. get_current_identity() is the
FastAPI dependency wrapping it.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthError, AuthErrorKind, TokenError
from auth.models import Identity, TokenClass
from auth.tokens import ACCESS_COOKIE, TokenSigner

_BEARER_PREFIX = "Bearer "


class RequestAuthenticator:
    """Gateway in front of protected operations. Depends only on TokenSigner."""

    def __init__(self, signer: TokenSigner) -> None:
        self.signer = signer

    def extract_token(self, request) -> str | None:
        token = request.cookies.get(ACCESS_COOKIE)
        if token:
            return token
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith(_BEARER_PREFIX):
            return auth_header[len(_BEARER_PREFIX) :].strip() or None
        return None

    def authorize(self, request) -> Identity:
        """Return the verified identity and attach it as request.state.identity.

        Raises AuthError(UNAUTHENTICATED) on any failure.
        """
        token = self.extract_token(request)
        if not token:
            raise AuthError(AuthErrorKind.UNAUTHENTICATED)
        try:
            identity = self.signer.verify(token, TokenClass.ACCESS)
        except TokenError as exc:
            raise AuthError(AuthErrorKind.UNAUTHENTICATED) from exc
        state = getattr(request, "state", None)
        if state is not None:
            state.identity = identity
        return identity


def get_current_identity(request: Request) -> Identity:
    """Require authentication. AuthError(UNAUTHENTICATED) becomes a 401 in api/main.py.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return RequestAuthenticator(request.app.state.token_signer).authorize(request)
