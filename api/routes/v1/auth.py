"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; returns token pair, sets cookies
  POST /api/v1/auth/login      -- password login; returns token pair, sets cookies
  POST /api/v1/auth/refresh    -- rotate refresh token; returns new pair, sets cookies
  POST /api/v1/auth/logout     -- retire the refresh session, clear cookies
  GET  /api/v1/auth/me         -- current identity (requires auth)

Security:
  [C1] Unknown email and wrong password are indistinguishable (AuthSessionManager.login).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Refresh: the user id passed to the manager comes from the presented refresh
  token's own verified sub claim, never from client-supplied fields.
  AuthError is mapped to HTTP in api/main.py; routes just let it propagate.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import CredentialsRequest, MeResponse, MessageResponse, RefreshRequest, TokenPairResponse
from auth.dependencies import get_current_identity
from auth.errors import AuthError, AuthErrorKind, TokenError
from auth.models import Identity, TokenClass, TokenPair
from auth.sessions import AuthSessionManager
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   public -- clearing cookies needs no access token
# - GET  /api/v1/auth/me:       requires auth (get_current_identity)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=TokenPairResponse, status_code=201)
def register(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Create an account and return its first token pair. 409 if the email is taken."""
    manager: AuthSessionManager = request.app.state.session_manager
    pair = manager.register(body.email, body.password)
    return _token_response(request, pair, status_code=201)


@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Authenticate with email and password; return a token pair and set cookies.

    Wrong email and wrong password produce the same generic 401.
    """
    manager: AuthSessionManager = request.app.state.session_manager
    pair = manager.login(body.email, body.password)
    return _token_response(request, pair)


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is retired.

    The token is read from the request body first, else from the refresh_token
    cookie. Replayed, expired, or unknown tokens all yield the same 401.
    """
    manager: AuthSessionManager = request.app.state.session_manager
    token = _presented_refresh_token(request, body)
    if not token:
        raise AuthError(AuthErrorKind.UNAUTHENTICATED)
    try:
        payload = manager.signer.verify(token, TokenClass.REFRESH)
    except TokenError as exc:
        raise AuthError(AuthErrorKind.UNAUTHENTICATED) from exc
    pair = manager.refresh(payload.user_id, token)
    return _token_response(request, pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Retire the refresh session (if any) and clear both auth cookies. Always 200."""
    manager: AuthSessionManager = request.app.state.session_manager
    token = _presented_refresh_token(request, body)
    if token:
        manager.logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the identity carried by the caller's access token."""
    return MeResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _presented_refresh_token(request: Request, body: Optional[RefreshRequest]) -> str | None:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(REFRESH_COOKIE)


def _token_response(request: Request, pair: TokenPair, status_code: int = 200) -> JSONResponse:
    manager: AuthSessionManager = request.app.state.session_manager
    resp = JSONResponse(
        status_code=status_code,
        content=TokenPairResponse.from_pair(pair).model_dump(mode="json"),
    )
    set_auth_cookies(resp, pair, request.app.state.settings, now=manager.clock())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
