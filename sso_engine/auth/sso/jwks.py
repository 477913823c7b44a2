"""
JWKS signing-key cache.

Each provider owns one cache. The whole key set shares a single expiry; a
lookup miss or an expired set triggers one full refetch. Concurrent lookups
that miss while a fetch is in flight wait for it instead of fetching again.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sso_engine.auth.sso.pkce import base64url_to_int
from sso_engine.exceptions import ErrorCode, KeyNotFoundError, ProtocolError
from sso_engine.types.sso import CachedJwk

logger = logging.getLogger(__name__)

KeySetFetcher = Callable[[], Awaitable[Dict[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JWKSKeyCache:
    """
    Time-limited cache of a provider's RSA signing keys, keyed by kid.

    Only entries with kty == "RSA" and use == "sig" are kept.
    """

    def __init__(
        self,
        fetch_key_set: KeySetFetcher,
        ttl: timedelta = timedelta(hours=1),
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "jwks",
    ):
        """
        Args:
            fetch_key_set: Coroutine function returning the raw JWKS document
            ttl: Lifetime of a fetched key set
            clock: Time source, injectable for tests
            name: Label used in log messages (usually the provider id)
        """
        self._fetch_key_set = fetch_key_set
        self.ttl = ttl
        self._clock = clock or _utcnow
        self.name = name
        self._keys: Dict[str, CachedJwk] = {}
        self._expires_at: Optional[datetime] = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self.fetch_count = 0

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    @property
    def key_ids(self) -> list[str]:
        return list(self._keys)

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        return self._expires_at is not None and now < self._expires_at

    def invalidate(self) -> None:
        """Force the next lookup to refetch."""
        self._expires_at = None

    async def get_signing_key(self, kid: str) -> CachedJwk:
        """
        Resolve a signing key by kid.

        Raises:
            KeyNotFoundError: If the kid is still absent after a refetch
            NetworkError / ProtocolError: If the key set cannot be fetched
        """
        if self.is_fresh():
            key = self._keys.get(kid)
            if key is not None:
                return key

        generation = self._generation
        async with self._lock:
            # A fetch completed while we waited; use its result
            if self._generation == generation:
                await self._refresh()

        key = self._keys.get(kid)
        if key is None:
            logger.warning(
                f"Signing key {kid[:16]!r} not found in {self.name} key set "
                f"({len(self._keys)} keys cached)"
            )
            raise KeyNotFoundError(kid)
        return key

    async def _refresh(self) -> None:
        data = await self._fetch_key_set()
        self.fetch_count += 1
        now = self._clock()

        keys = data.get("keys") if isinstance(data, dict) else None
        if not isinstance(keys, list):
            raise ProtocolError(
                "Invalid JWKS response: no keys array",
                error_code=ErrorCode.INVALID_JWKS,
            )

        parsed: Dict[str, CachedJwk] = {}
        for entry in keys:
            if not isinstance(entry, dict):
                continue
            if entry.get("kty") != "RSA" or entry.get("use") != "sig":
                continue

            kid, n, e = entry.get("kid"), entry.get("n"), entry.get("e")
            if not all(isinstance(v, str) and v for v in (kid, n, e)):
                continue

            try:
                parsed[kid] = CachedJwk(
                    kid=kid,
                    modulus=base64url_to_int(n),
                    exponent=base64url_to_int(e),
                    fetched_at=now,
                )
            except ValueError:
                logger.warning(f"Skipping malformed JWK {kid[:16]!r} from {self.name}")

        # Swap the whole set at once
        self._keys = parsed
        self._expires_at = now + self.ttl
        self._generation += 1

        logger.info(
            f"Fetched {self.name} key set: {len(parsed)} RSA signing keys "
            f"(cached until {self._expires_at.isoformat()})"
        )
