"""PKCE challenge store — pending authorization requests by code hash.

CONSUMPTION IS COMPARE-AND-SET
--------------------------------
Two concurrent POST /oauth/token calls carrying the same code must not
both get past the "already consumed?" check.  A plain read-then-write
(get the record, see consumed=False, write consumed=True) has a window
between the read and the write where a second request can read the same
consumed=False.  So `consume()` is the only way to mark a record used,
and it does the check and the write as one atomic step:

  - InMemoryChallengeStore: both happen under one lock.
  - RedisChallengeStore: both happen inside one Lua script, which Redis
    runs without interleaving any other command.

Exactly one caller gets the record back; every other caller gets None.

TTL EVICTION
--------------
Records are unusable once `issued_at + ttl` has passed, whether or not
anyone looks at them again.  The in-memory store keeps a min-heap of
(expires_at, code_hash) so `sweep()` pops only what has expired instead
of scanning the whole map.  Redis keys carry a native EXPIRE.
"""

from __future__ import annotations

import dataclasses
import heapq
import logging
import threading
from typing import Protocol, runtime_checkable

from authserver.core.metrics import CHALLENGES_EVICTED
from authserver.db.redis import redis_pool
from authserver.models.challenge import ChallengeRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class ChallengeStore(Protocol):
    async def create(self, record: ChallengeRecord) -> None: ...

    async def get(self, code_hash: str) -> ChallengeRecord | None:
        """Read-only lookup. Never use the result to decide consumption."""
        ...

    async def consume(self, code_hash: str, now: float) -> ChallengeRecord | None:
        """Atomically mark a usable record consumed.

        Returns the consumed record, or None if it doesn't exist, was
        already consumed, or has expired.
        """
        ...

    async def sweep(self, now: float) -> int:
        """Evict expired records. Returns how many were removed."""
        ...


class InMemoryChallengeStore:
    """Per-process store for tests and single-instance deployments.

    The lock makes `consume` safe even when FastAPI runs handlers on its
    threadpool, not just under cooperative asyncio scheduling.
    """

    def __init__(self) -> None:
        self._by_code_hash: dict[str, ChallengeRecord] = {}
        self._expiry_heap: list[tuple[float, str]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._by_code_hash)

    async def create(self, record: ChallengeRecord) -> None:
        with self._lock:
            self._evict_expired(record.issued_at)
            if record.code_hash in self._by_code_hash:
                # 256 bits of entropy; a collision means something is broken.
                raise ValueError("authorization code hash already present")
            self._by_code_hash[record.code_hash] = record
            heapq.heappush(self._expiry_heap, (record.expires_at, record.code_hash))

    async def get(self, code_hash: str) -> ChallengeRecord | None:
        with self._lock:
            return self._by_code_hash.get(code_hash)

    async def consume(self, code_hash: str, now: float) -> ChallengeRecord | None:
        with self._lock:
            record = self._by_code_hash.get(code_hash)
            if record is None or not record.is_usable(now):
                return None
            updated = dataclasses.replace(record, consumed=True)
            self._by_code_hash[code_hash] = updated
            return updated

    async def sweep(self, now: float) -> int:
        with self._lock:
            return self._evict_expired(now)

    def _evict_expired(self, now: float) -> int:
        # Caller holds self._lock.
        evicted = 0
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            _, code_hash = heapq.heappop(self._expiry_heap)
            if self._by_code_hash.pop(code_hash, None) is not None:
                evicted += 1
        if evicted:
            CHALLENGES_EVICTED.inc(evicted)
            logger.debug("Evicted %d expired PKCE challenge records", evicted)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._by_code_hash.clear()
            self._expiry_heap.clear()


# KEYS[1] = record key.  Returns the record's fields (flat list) after
# flipping consumed 0 -> 1, or nil if the key is gone or already consumed.
_CONSUME_SCRIPT = """
local consumed = redis.call('HGET', KEYS[1], 'consumed')
if consumed ~= '0' then
    return nil
end
redis.call('HSET', KEYS[1], 'consumed', '1')
return redis.call('HGETALL', KEYS[1])
"""


class RedisChallengeStore:
    """Redis-backed store shared by every API instance."""

    _PREFIX = "pkce:code:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._consume = redis_client.register_script(_CONSUME_SCRIPT)

    def _key(self, code_hash: str) -> str:
        return f"{self._PREFIX}{code_hash}"

    async def create(self, record: ChallengeRecord) -> None:
        key = self._key(record.code_hash)
        # MULTI/EXEC so the hash never exists without its TTL.
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=record.to_mapping())
            pipe.expire(key, record.ttl)
            await pipe.execute()

    async def get(self, code_hash: str) -> ChallengeRecord | None:
        data = await self._redis.hgetall(self._key(code_hash))
        if not data:
            return None
        return ChallengeRecord.from_mapping(code_hash, data)

    async def consume(self, code_hash: str, now: float) -> ChallengeRecord | None:
        raw = await self._consume(keys=[self._key(code_hash)])
        if not raw:
            return None
        fields = dict(zip(raw[::2], raw[1::2], strict=True))
        record = ChallengeRecord.from_mapping(code_hash, fields)
        # Redis EXPIRE has 1s granularity; enforce the exact deadline here.
        if record.is_expired(now):
            return None
        return record

    async def sweep(self, now: float) -> int:
        return 0  # keys expire natively


# ---------------------------------------------------------------------------
# Module-level singleton — conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    challenge_store: ChallengeStore = RedisChallengeStore(redis_pool)
else:
    challenge_store = InMemoryChallengeStore()
