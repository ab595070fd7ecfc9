"""Refresh token rotation — records which refresh tokens are spent.

Refresh tokens are ES256 JWTs, so authenticity and expiry are checked by
signature alone.  What a signature can't express is "this token has
already been exchanged".  Each successful refresh claims the presented
token's `jti` here; a second presentation of the same token finds its
jti already claimed and is rejected as superseded.

`claim()` is the compare-and-set: of two concurrent refreshes with the
same token, exactly one returns True.  A client that lost that race (or
an attacker replaying a stolen token) gets invalid_grant.

Entries only need to outlive the token itself: once a refresh token has
expired its signature check fails first, so each entry is kept until
the token's own `exp`.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable

from authserver.core.metrics import REFRESH_TOKEN_CLAIMS
from authserver.db.redis import redis_pool


@runtime_checkable
class RefreshTokenRegistry(Protocol):
    async def claim(self, jti: str, expires_at: float) -> bool:
        """Mark a refresh token spent. False if it was already spent."""
        ...


class InMemoryRefreshTokenRegistry:
    """Per-process registry for tests and local dev (no Redis needed)."""

    def __init__(self) -> None:
        # jti -> expiry timestamp (Unix seconds)
        self._claimed: dict[str, float] = {}
        self._lock = threading.Lock()

    async def claim(self, jti: str, expires_at: float) -> bool:
        now = time.time()
        with self._lock:
            self._purge(now)
            if jti in self._claimed:
                REFRESH_TOKEN_CLAIMS.labels(result="superseded").inc()
                return False
            self._claimed[jti] = expires_at
        REFRESH_TOKEN_CLAIMS.labels(result="claimed").inc()
        return True

    def _purge(self, now: float) -> None:
        # Mimic Redis TTL behavior: drop entries whose token has expired.
        for jti in [j for j, exp in self._claimed.items() if exp < now]:
            del self._claimed[jti]

    def clear(self) -> None:
        with self._lock:
            self._claimed.clear()


class RedisRefreshTokenRegistry:
    """Redis-backed registry shared by every API instance."""

    _PREFIX = "refresh:spent:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def claim(self, jti: str, expires_at: float) -> bool:
        ttl_seconds = max(int(expires_at - time.time()), 1)
        # SET NX EX: set-if-absent and TTL in one atomic command.
        created = await self._redis.set(
            f"{self._PREFIX}{jti}", "1", nx=True, ex=ttl_seconds
        )
        result = "claimed" if created else "superseded"
        REFRESH_TOKEN_CLAIMS.labels(result=result).inc()
        return bool(created)


if redis_pool is not None:
    refresh_token_registry: RefreshTokenRegistry = RedisRefreshTokenRegistry(redis_pool)
else:
    refresh_token_registry = InMemoryRefreshTokenRegistry()
