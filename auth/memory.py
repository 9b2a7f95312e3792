"""
auth/memory.py -- In-process SessionStore for tests and single-process dev runs.

Same contract as auth.store.SessionStore. One lock guards the dict so
mark_superseded() is a true compare-and-set across threads: of N callers
racing on one session, exactly one gets True.

Records are copied on the way in and out so callers cannot mutate stored
state except through the store's methods.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime

from auth.models import AuthSession
from core.clock import Clock, utc_now


class MemorySessionStore:
    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, AuthSession] = {}
        self._by_token: dict[str, str] = {}

    def create(self, refresh_token: str, user_id: str, expires_at: datetime) -> AuthSession:
        """Store a new active session. Raises ValueError if the token was stored before."""
        now = self.clock()
        session = AuthSession(
            id=str(uuid.uuid4()),
            refresh_token=refresh_token,
            user_id=user_id,
            expires_at=expires_at,
            deleted=False,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if refresh_token in self._by_token:
                raise ValueError("refresh token already stored")
            self._sessions[session.id] = session
            self._by_token[refresh_token] = session.id
        return replace(session)

    def find_active_by_token(self, refresh_token: str) -> AuthSession | None:
        with self._lock:
            session_id = self._by_token.get(refresh_token)
            session = self._sessions.get(session_id) if session_id else None
            if session is None or session.deleted:
                return None
            return replace(session)

    def get(self, session_id: str) -> AuthSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session is not None else None

    def mark_superseded(self, session: AuthSession) -> bool:
        now = self.clock()
        with self._lock:
            stored = self._sessions.get(session.id)
            if stored is None or stored.deleted:
                return False
            stored.deleted = True
            stored.updated_at = now
        session.deleted = True
        session.updated_at = now
        return True

    def close(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._by_token.clear()
