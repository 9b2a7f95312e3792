"""
auth/sessions.py -- Registration, login and refresh-token rotation.

AuthSessionManager owns the refresh-session lifecycle:

    issued -> active -> consumed (superseded) | expired (detected lazily)

There is no transition back to active. A session is created for every pair
this manager issues and is only ever soft-deleted afterwards.

Rotation protocol (refresh):
  1. Resolve the user by id.
  2. Find the non-deleted session for the presented token. Missing, or owned by
     another user -> NO_ACTIVE_SESSION.
  3. Compare the stored expires_at with the clock -> REFRESH_TOKEN_EXPIRED. The
     stored row is the source of truth for liveness, not the token's exp claim.
  4. mark_superseded() -- a compare-and-set in the store. Losing it means a
     concurrent request already consumed the token -> NO_ACTIVE_SESSION.
     Winning it means this call alone may mint the replacement.
  5. Issue a new pair and persist its session. If that fails the old session
     stays dead and the caller gets REFRESH_FAILED: a user forced to log in
     again is preferable to a refresh token that can be redeemed twice.

Security:
  [C1] login() spends one bcrypt comparison even when the email is unknown, and
       raises the identical INVALID_CREDENTIALS error for both failure modes.
  Tokens and passwords are never logged. User and session ids are.

Layer rule: no imports from api/. The stores are duck-typed collaborators --
auth.store (SQLAlchemy) and auth.memory both satisfy the session contract.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError

from auth.credentials import CredentialVerifier
from auth.errors import AuthError, AuthErrorKind
from auth.models import TokenPair, TokenPayload, User
from auth.tokens import TokenSigner

logger = logging.getLogger("authsession.auth.sessions")


class AuthSessionManager:
    """Orchestrates register, login, refresh and logout.

    Collaborators:
        users:    get_by_email(email), get_by_id(user_id), create_user(User) -> User
        sessions: create(token, user_id, expires_at), find_active_by_token(token),
                  mark_superseded(session) -> bool
        signer:   TokenSigner; its clock is also the manager's clock
        verifier: CredentialVerifier
    """

    def __init__(self, users, sessions, signer: TokenSigner, verifier: CredentialVerifier) -> None:
        self.users = users
        self.sessions = sessions
        self.signer = signer
        self.verifier = verifier

    @property
    def clock(self):
        return self.signer.clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> TokenPair:
        """Create an account and start its first session.

        Raises AuthError(DUPLICATE_USER) if the email is taken, including when a
        concurrent registration wins the race to the UNIQUE constraint.
        """
        with self._internal_errors("register"):
            if self.users.get_by_email(email) is not None:
                raise AuthError(AuthErrorKind.DUPLICATE_USER)
            digest = self.verifier.hash(password)
            try:
                user = self.users.create_user(User(email=email, password_hash=digest))
            except IntegrityError as exc:
                raise AuthError(AuthErrorKind.DUPLICATE_USER) from exc
            pair = self._start_session(user)
        logger.info("Registered user %s", user.id)
        return pair

    def login(self, email: str, password: str) -> TokenPair:
        """Verify credentials and start a new session.

        Unknown email and wrong password raise the same INVALID_CREDENTIALS
        error with the same message.
        """
        with self._internal_errors("login"):
            user = self.users.get_by_email(email)
        if user is None:
            self.verifier.burn(password)
            logger.warning("Login failed: no account for the supplied email")
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        if not self.verifier.matches(password, user.password_hash):
            logger.warning("Login failed for user %s: password mismatch", user.id)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        with self._internal_errors("login"):
            pair = self._start_session(user)
        logger.info("User %s logged in", user.id)
        return pair

    def refresh(self, user_id: str, presented_refresh_token: str) -> TokenPair:
        """Consume presented_refresh_token and return a replacement pair.

        user_id is the account's primary key (the sub claim of the tokens this
        manager issues), not its email.
        """
        with self._internal_errors("refresh lookup"):
            user = self.users.get_by_id(user_id)
            if user is None:
                raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
            session = self.sessions.find_active_by_token(presented_refresh_token)

        if session is None or session.user_id != user.id:
            logger.warning("Refresh rejected for user %s: no active session for token", user.id)
            raise AuthError(AuthErrorKind.NO_ACTIVE_SESSION)
        if session.is_expired(self.clock()):
            logger.info("Refresh rejected for user %s: session %s expired", user.id, session.id)
            raise AuthError(AuthErrorKind.REFRESH_TOKEN_EXPIRED)

        try:
            claimed = self.sessions.mark_superseded(session)
        except Exception as exc:
            logger.exception("Could not supersede session %s for user %s", session.id, user.id)
            raise AuthError(AuthErrorKind.REFRESH_FAILED) from exc
        if not claimed:
            # Another request consumed this token between our read and our write.
            logger.warning("Refresh token replay for session %s (user %s)", session.id, user.id)
            raise AuthError(AuthErrorKind.NO_ACTIVE_SESSION)

        try:
            pair = self._start_session(user)
        except Exception as exc:
            logger.exception(
                "Rotation failed after superseding session %s; user %s must log in again",
                session.id,
                user.id,
            )
            raise AuthError(AuthErrorKind.REFRESH_FAILED) from exc
        logger.info("Rotated session %s for user %s", session.id, user.id)
        return pair

    def logout(self, presented_refresh_token: str) -> bool:
        """Retire the session behind presented_refresh_token, if it is still active.

        Idempotent: returns False for unknown or already-retired tokens.
        """
        with self._internal_errors("logout"):
            session = self.sessions.find_active_by_token(presented_refresh_token)
            if session is None:
                return False
            retired = self.sessions.mark_superseded(session)
        if retired:
            logger.info("Session %s for user %s ended by logout", session.id, session.user_id)
        return retired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_session(self, user: User) -> TokenPair:
        pair = self.signer.issue_pair(TokenPayload(user_id=user.id, email=user.email))
        self.sessions.create(pair.refresh_token, user.id, pair.refresh_token_expires_at)
        return pair

    @contextmanager
    def _internal_errors(self, action: str):
        """Turn unexpected collaborator failures into AuthError(INTERNAL_ERROR).

        AuthErrors raised inside the block pass through untouched.
        """
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure during %s", action)
            raise AuthError(AuthErrorKind.INTERNAL_ERROR) from exc
