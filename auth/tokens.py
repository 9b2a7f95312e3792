"""
auth/tokens.py -- JWT issuance and verification, plus the auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       independent secrets and two independent TTLs from Settings. A token of
       one class never verifies as the other: the secrets differ (enforced in
       core/config.py) and the "typ" claim is checked on decode.

  Claims: sub (user id), email, typ, iat, exp, jti. Each token gets its own
       random jti, so two tokens minted for the same payload in the same second
       are still distinct strings. Nothing is shared between the two tokens of
       a pair.

  Expiry: issue_token() reads exp back out of the signed token instead of
       returning the value it computed. The timestamp handed to callers is
       byte-for-byte what verification will compare against later.

  Clock: every function takes the clock explicitly. Signature verification
       is left to jose; the exp comparison is done here against the injected
       clock so tests can move time without sleeping.

  Failure reporting: verify_token() raises InvalidToken or ExpiredToken. The
       request layer (auth/dependencies.py) collapses both into one 401.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import ExpiredToken, InvalidToken
from auth.models import TokenClass, TokenPair, TokenPayload
from core.clock import Clock, utc_now
from core.config import Settings

logger = logging.getLogger("authsession.auth.tokens")

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
# The refresh cookie is only ever needed by the refresh and logout endpoints.
REFRESH_COOKIE_PATH = "/api/v1/auth"


# ---------------------------------------------------------------------------
# Per-class configuration
# ---------------------------------------------------------------------------


def _secret_for(settings: Settings, token_class: TokenClass) -> str:
    if token_class is TokenClass.ACCESS:
        return settings.access_token_secret
    return settings.refresh_token_secret


def _ttl_for(settings: Settings, token_class: TokenClass) -> timedelta:
    if token_class is TokenClass.ACCESS:
        return settings.access_token_ttl
    return settings.refresh_token_ttl


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(
    settings: Settings,
    payload: TokenPayload,
    token_class: TokenClass,
    clock: Clock = utc_now,
) -> tuple[str, datetime]:
    """Sign payload as a token_class token. Returns (token, expires_at)."""
    issued_at = clock()
    expire = issued_at + _ttl_for(settings, token_class)
    claims = {
        "sub": payload.user_id,
        "email": payload.email,
        "typ": token_class.value,
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
        "jti": uuid.uuid4().hex,
    }
    token = jwt.encode(claims, _secret_for(settings, token_class), algorithm=_ALGORITHM)
    exp = jwt.get_unverified_claims(token)["exp"]
    return token, datetime.fromtimestamp(exp, tz=timezone.utc)


def verify_token(
    settings: Settings,
    token: str,
    token_class: TokenClass,
    clock: Clock = utc_now,
) -> TokenPayload:
    """Verify signature, class and expiry; return the embedded payload.

    Raises:
        InvalidToken: bad signature, malformed token, missing claims, or a token
                      of the other class.
        ExpiredToken: the current time is at or past the exp claim.
    """
    try:
        claims = jwt.decode(
            token,
            _secret_for(settings, token_class),
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError as exc:
        logger.debug("Rejected %s token: %s", token_class.value, exc)
        raise InvalidToken(str(exc)) from exc

    user_id = claims.get("sub")
    email = claims.get("email")
    exp = claims.get("exp")
    if not isinstance(user_id, str) or not isinstance(email, str) or not isinstance(exp, int):
        raise InvalidToken("missing required claims")
    if claims.get("typ") != token_class.value:
        raise InvalidToken("token class mismatch")
    if clock() >= datetime.fromtimestamp(exp, tz=timezone.utc):
        raise ExpiredToken("token expired")
    return TokenPayload(user_id=user_id, email=email)


def issue_pair(settings: Settings, payload: TokenPayload, clock: Clock = utc_now) -> TokenPair:
    """Issue an access and a refresh token for payload.

    Two independent issue_token() calls -- the tokens share nothing but the
    payload they were minted from.
    """
    access_token, access_expires_at = issue_token(settings, payload, TokenClass.ACCESS, clock)
    refresh_token, refresh_expires_at = issue_token(settings, payload, TokenClass.REFRESH, clock)
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        access_token_expires_at=access_expires_at,
        refresh_token_expires_at=refresh_expires_at,
    )


class TokenSigner:
    """Binds Settings and a clock to the token functions above.

    Stateless beyond that binding. One instance is created at startup and
    shared by the session manager and the request authenticator.
    """

    def __init__(self, settings: Settings, clock: Clock = utc_now) -> None:
        self.settings = settings
        self.clock = clock

    def issue(self, payload: TokenPayload, token_class: TokenClass) -> tuple[str, datetime]:
        return issue_token(self.settings, payload, token_class, self.clock)

    def verify(self, token: str, token_class: TokenClass) -> TokenPayload:
        return verify_token(self.settings, token, token_class, self.clock)

    def issue_pair(self, payload: TokenPayload) -> TokenPair:
        return issue_pair(self.settings, payload, self.clock)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _max_age(expires_at: datetime, now: datetime) -> int:
    return max(int((expires_at - now).total_seconds()), 0)


def set_auth_cookies(response, pair: TokenPair, settings: Settings, now: datetime | None = None) -> None:
    """Write both tokens of pair as httpOnly cookies on the response.

    httponly=True: JS cannot read either cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for the
        refresh and logout endpoints, which are POST-only.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: derived from each token's own expiry so cookie and token die together.

    The refresh cookie is scoped to REFRESH_COOKIE_PATH so it is not attached
    to every API request.
    """
    now = now or utc_now()
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=_max_age(pair.access_token_expires_at, now),
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=_max_age(pair.refresh_token_expires_at, now),
        path=REFRESH_COOKIE_PATH,
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
