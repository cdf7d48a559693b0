"""
auth/keys.py -- Injected signing-key provider for access tokens.

The key ring is the only process-wide mutable state in the auth core. It is
built once at startup (KeyRing.from_settings) and handed to TokenCodec as a
constructor argument; nothing reaches for it as a module global.

Lifecycle:
  load at startup -- one active key plus any retired keys from settings.
  hot-rotate      -- rotate() promotes a new active key. The previous active
                     key moves to the retired set and keeps verifying for
                     grace_seconds, long enough for every token it signed
                     (at most access_token_ttl_seconds old) to expire.

Tokens carry the signing key id in the JOSE "kid" header. A kid that the ring
does not know, or whose grace window has passed, fails verification.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from auth.db import utcnow

logger = logging.getLogger("rolegate.auth.keys")


@dataclass(frozen=True)
class SigningKey:
    kid: str
    secret: str = field(repr=False)
    # None = no deadline (configured retired keys, or the active key).
    retire_after: datetime | None = None


class KeyRing:
    """Active signing key plus a bounded set of verification-only keys."""

    def __init__(
        self,
        active: SigningKey,
        retired: list[SigningKey] | None = None,
        grace_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self._active = active
        self._retired: dict[str, SigningKey] = {k.kid: k for k in (retired or [])}
        self._grace = timedelta(seconds=grace_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = utcnow) -> KeyRing:
        return cls(
            active=SigningKey(settings.signing_key_id, settings.active_signing_key),
            retired=[SigningKey(kid, material) for kid, material in settings.retired_signing_keys.items()],
            grace_seconds=settings.key_rotation_grace_seconds,
            clock=clock,
        )

    @property
    def current(self) -> SigningKey:
        with self._lock:
            return self._active

    def resolve(self, kid: str | None) -> SigningKey | None:
        """Return the key for kid if it may still verify tokens, else None."""
        if not kid or not isinstance(kid, str):
            return None
        with self._lock:
            if kid == self._active.kid:
                return self._active
            key = self._retired.get(kid)
        if key is None:
            return None
        if key.retire_after is not None and self._clock() > key.retire_after:
            return None
        return key

    def rotate(self, kid: str, secret: str) -> SigningKey:
        """Promote a new active key; the old one verifies for the grace window."""
        if len(secret) < 32:
            raise ValueError("signing key must be at least 32 characters")
        with self._lock:
            if kid == self._active.kid or kid in self._retired:
                raise ValueError(f"signing key id {kid!r} is already in use")
            previous = self._active
            self._retired[previous.kid] = SigningKey(
                previous.kid, previous.secret, retire_after=self._clock() + self._grace
            )
            self._active = SigningKey(kid, secret)
            self._prune_locked()
        logger.info("signing key rotated active=%s retired=%s", kid, previous.kid)
        return self._active

    def known_key_ids(self) -> list[str]:
        with self._lock:
            self._prune_locked()
            return [self._active.kid, *sorted(self._retired)]

    def _prune_locked(self) -> None:
        now = self._clock()
        expired = [kid for kid, key in self._retired.items() if key.retire_after is not None and now > key.retire_after]
        for kid in expired:
            del self._retired[kid]


def generate_key_material() -> str:
    """64 hex chars (256 bits) -- suitable for SECRET_KEY or SIGNING_KEY."""
    return secrets.token_hex(32)
