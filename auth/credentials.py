"""
auth/credentials.py -- Password hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug detection
builds a password longer than 72 bytes, which bcrypt 4.x rejects outright.

The work factor is a fixed constant, not configuration. Lowering it is a
security decision that should show up in a code review, not an env var.

Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
password length at 255 characters (Pydantic field), well inside what callers
send in practice.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

BCRYPT_ROUNDS = 12


class CredentialVerifier:
    """Stateless wrapper over bcrypt.

    Usage:
        verifier = CredentialVerifier()
        digest = verifier.hash("secret")
        verifier.matches("secret", digest)   # True
    """

    def __init__(self, rounds: int = BCRYPT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy digest [C1]. Computed once per verifier so
        # the first unknown-email login is not measurably slower than the rest.
        self._dummy_digest = self.hash("authsession_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt digest of plaintext."""
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def matches(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest. A mismatch is False, never an error."""
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except (ValueError, TypeError):
            # Malformed or empty digest.
            return False

    def burn(self, plaintext: str) -> None:
        """Spend one bcrypt comparison against the dummy digest [C1].

        Called when the account does not exist, so an unknown email costs the
        same as a wrong password and response time does not reveal which.
        """
        self.matches(plaintext, self._dummy_digest)
