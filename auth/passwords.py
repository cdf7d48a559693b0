"""
auth/passwords.py -- One-way, salted password hashing.

New hashes are argon2id (memory-hard) via argon2-cffi. Every call draws a
fresh random salt, and the salt and cost parameters are embedded in the
encoded output, so hashing the same password twice never yields the same
string.

Legacy bcrypt hashes ("$2a$", "$2b$", "$2y$") still verify through bcrypt so
accounts created before the argon2 switch keep working. needs_rehash()
reports them (and argon2 hashes with outdated cost parameters) so the session
layer can upgrade the stored hash on the next successful login.

Both libraries compare digests in constant time. A malformed or truncated
stored hash is a verification failure, never an exception.
"""

from __future__ import annotations

import bcrypt
from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHash, VerificationError

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class PasswordHasher:
    """argon2id hasher with bcrypt read compatibility.

    Usage:
        hasher = PasswordHasher()
        stored = hasher.hash("Secr3t!")
        hasher.verify("Secr3t!", stored)   # True
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._argon2 = _Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Timing equalization dummy hash [C1]. Computed once per hasher so the
        # first unknown-identifier login is not measurably faster than a real one.
        self._dummy_hash = self._argon2.hash("rolegate_timing_dummy")

    @classmethod
    def from_settings(cls, settings) -> PasswordHasher:
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, plaintext: str) -> str:
        """Return an encoded argon2id hash of plaintext (salt embedded)."""
        if not plaintext:
            raise ValueError("password must not be empty")
        return self._argon2.hash(plaintext)

    def verify(self, plaintext: str, credential_hash: str) -> bool:
        """Return True if plaintext matches credential_hash.

        Returns False for a mismatch, an empty input, or a stored hash that
        cannot be parsed.
        """
        if not plaintext or not credential_hash:
            return False
        if credential_hash.startswith(_BCRYPT_PREFIXES):
            try:
                return bcrypt.checkpw(plaintext.encode("utf-8"), credential_hash.encode("utf-8"))
            except ValueError:
                return False
        try:
            return self._argon2.verify(credential_hash, plaintext)
        except (VerificationError, InvalidHash):
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verification's worth of work against the dummy hash.

        Called when the identifier does not exist so response time does not
        reveal whether it does [C1].
        """
        self.verify(plaintext or "x", self._dummy_hash)

    def needs_rehash(self, credential_hash: str) -> bool:
        """True for bcrypt hashes and argon2 hashes with stale parameters."""
        if credential_hash.startswith(_BCRYPT_PREFIXES):
            return True
        try:
            return self._argon2.check_needs_rehash(credential_hash)
        except InvalidHash:
            return False
