"""Credential pool for the completion service.

Holds the primary API key and an ordered list of fallbacks. Keys are
validated with a cheap out-of-band probe and the result is cached for 24h.

The pool is one object shared by every concurrent document pipeline, so all
reads and writes of the ring go through a lock. The probe itself runs outside
the lock; rotation is compare-and-rotate: a caller names the credential it
saw failing, and if another task has already rotated away from it the
rotation is a no-op that returns the new current credential.

Rotation keeps every key. With current C and fallbacks [F1, F2, F3], rotating
to F2 (F1 invalid) yields current F2 and fallbacks [F3, C, F1]: the ring is
turned, never truncated.
"""

import asyncio
import logging
import os
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from permit_extractor.core.config import CredentialConfig
from permit_extractor.core.errors import MissingCredentialError, NoValidCredentialError

logger = logging.getLogger(__name__)

Probe = Callable[[str], Awaitable[bool]]


@dataclass(eq=False)
class Credential:
    """An opaque API key plus its cached validity."""

    secret: str = field(repr=False)
    label: str
    is_valid: bool | None = None
    validated_at: float | None = None

    @property
    def masked(self) -> str:
        """Key with everything but the last four characters hidden."""
        return f"...{self.secret[-4:]}" if len(self.secret) > 4 else "****"

    def cache_fresh(self, ttl_seconds: float, now: float) -> bool:
        return (
            self.is_valid is not None
            and self.validated_at is not None
            and now - self.validated_at < ttl_seconds
        )


async def litellm_probe(secret: str) -> bool:
    """Validate a key with a minimal request through litellm."""
    import litellm

    return await asyncio.to_thread(
        litellm.check_valid_key,
        model=CredentialConfig.PROBE_MODEL,
        api_key=secret,
    )


class CredentialPool:
    """Primary + fallback credentials with cached validation and rotation.

    Usage:
        pool = CredentialPool.from_env()
        credential = pool.current()
        ...
        credential = await pool.rotate(expected=credential)
    """

    def __init__(
        self,
        primary: str,
        fallbacks: list[str] | None = None,
        probe: Probe | None = None,
        ttl_seconds: float = CredentialConfig.VALIDATION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not primary:
            raise MissingCredentialError(
                f"{CredentialConfig.PRIMARY_ENV_VAR} is required but not set"
            )
        self._current = Credential(secret=primary, label="primary")
        self._fallbacks = [
            Credential(secret=secret, label=f"fallback_{i}")
            for i, secret in enumerate(fallbacks or [], start=1)
            if secret
        ]
        self._probe = probe or litellm_probe
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, probe: Probe | None = None) -> "CredentialPool":
        """Build the pool from OPENAI_API_KEY and OPENAI_API_KEY_FALLBACK_<n>.

        Raises:
            MissingCredentialError: If the primary key is missing or empty.
        """
        env = os.environ if environ is None else environ
        primary = env.get(CredentialConfig.PRIMARY_ENV_VAR, "").strip()
        if not primary:
            raise MissingCredentialError(
                f"{CredentialConfig.PRIMARY_ENV_VAR} is required but not set"
            )

        fallbacks = []
        n = 1
        while True:
            value = env.get(f"{CredentialConfig.FALLBACK_ENV_PREFIX}{n}", "").strip()
            if not value:
                break
            fallbacks.append(value)
            n += 1

        logger.info("Credential pool: primary + %d fallback(s)", len(fallbacks))
        return cls(primary, fallbacks, probe=probe)

    def current(self) -> Credential:
        with self._lock:
            return self._current

    def fallbacks(self) -> list[Credential]:
        """Snapshot of the fallback order."""
        with self._lock:
            return list(self._fallbacks)

    def all(self) -> list[Credential]:
        """Current followed by fallbacks, in rotation order."""
        with self._lock:
            return [self._current, *self._fallbacks]

    def __len__(self) -> int:
        with self._lock:
            return 1 + len(self._fallbacks)

    async def validate(self, credential: Credential, force: bool = False) -> bool:
        """Return whether the credential works, probing at most once per TTL."""
        now = self._clock()
        with self._lock:
            if not force and credential.cache_fresh(self._ttl, now):
                return bool(credential.is_valid)

        try:
            valid = bool(await self._probe(credential.secret))
        except Exception as e:
            logger.warning("Credential probe failed for %s: %s", credential.label, e)
            valid = False

        with self._lock:
            credential.is_valid = valid
            credential.validated_at = self._clock()
        if not valid:
            logger.warning("Credential %s (%s) is invalid", credential.label, credential.masked)
        return valid

    def invalidate(self, credential: Credential) -> None:
        """Mark a credential invalid after the service rejected it."""
        with self._lock:
            credential.is_valid = False
            credential.validated_at = self._clock()
        logger.warning("Credential %s (%s) rejected by service", credential.label, credential.masked)

    async def get_valid(self) -> Credential:
        """Current credential if valid, otherwise rotate to a valid fallback."""
        current = self.current()
        if await self.validate(current):
            return current
        return await self.rotate(expected=current)

    async def fallback(self) -> Credential | None:
        """First valid fallback, or None."""
        for candidate in self.fallbacks():
            if await self.validate(candidate):
                return candidate
        return None

    async def rotate(self, expected: Credential | None = None) -> Credential:
        """Promote the next valid fallback to current.

        Args:
            expected: The credential the caller saw failing. If the pool has
                      already moved past it, nothing is rotated.

        Returns:
            The new current credential.

        Raises:
            NoValidCredentialError: If no fallback validates.
        """
        with self._lock:
            if expected is not None and self._current is not expected:
                return self._current
            if not self._fallbacks:
                raise NoValidCredentialError("No fallback credentials configured")
            snapshot = self._current

        target = await self.fallback()
        if target is None:
            raise NoValidCredentialError("No valid fallback credential available")

        with self._lock:
            if self._current is not snapshot:
                return self._current
            if target not in self._fallbacks:
                raise NoValidCredentialError("Fallback list changed during rotation")
            ring = [self._current, *self._fallbacks]
            k = ring.index(target)
            ring = ring[k:] + ring[:k]
            self._current, self._fallbacks = ring[0], ring[1:]
            logger.info(
                "Rotated credential %s -> %s",
                snapshot.label, self._current.label,
            )
            return self._current

    async def validate_all(self) -> dict[str, bool]:
        """Probe every credential (bypassing the cache). Label -> validity."""
        results = {}
        for credential in self.all():
            results[credential.label] = await self.validate(credential, force=True)
        return results
