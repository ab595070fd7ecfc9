"""Background TTL sweep for the PKCE challenge store.

Expired records are already unusable (consume() checks the deadline), so
the sweep only bounds memory: codes that were issued but never exchanged
would otherwise pile up in the in-memory store.  The Redis store expires
keys on its own and its sweep() is a no-op.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager

from authserver.repos.challenge_store import ChallengeStore

logger = logging.getLogger(__name__)


async def run_sweeper(store: ChallengeStore, interval_sec: float) -> None:
    """Evict expired records every *interval_sec* until cancelled."""
    logger.info("Challenge sweeper started  interval=%ss", interval_sec)
    while True:
        await asyncio.sleep(interval_sec)
        try:
            evicted = await store.sweep(time.time())
        except Exception:
            # One failed pass (e.g. a Redis hiccup) must not end the loop.
            logger.exception("Challenge sweep failed")
            continue
        if evicted:
            logger.info("Challenge sweep evicted %d expired records", evicted)


@asynccontextmanager
async def lifespan_sweeper(store: ChallengeStore, interval_sec: float):
    task = asyncio.create_task(run_sweeper(store, interval_sec))
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Challenge sweeper stopped")
