"""Token lifecycle manager — staleness, single-flight refresh, invalidation.

STATES
--------
    VALID       a pair is held and now < expires_at
    STALE       a pair is held and now >= expires_at, no refresh running
    REFRESHING  one refresh call is in flight
    INVALID     no pair; only establish() (after a fresh code exchange)
                leaves this state

SINGLE-FLIGHT
---------------
Refresh tokens are single-use on the server: if two requests each sent the
same refresh token, one would win and the other would get invalid_grant,
which would log the user out for no reason.  So the first caller to see a
stale pair starts ONE refresh task and every caller that arrives while it
runs awaits that same task.  They resume in the order they attached, all
with the same result.

The task is awaited through asyncio.shield(): a caller that gives up
(cancelled request, closed screen) stops waiting, but the refresh itself
keeps going for everyone else.

FAILURE
---------
A failed refresh is not retried.  The manager clears the store, rejects
every waiter with the same RefreshFailure and notifies the registered
listeners once for that failure episode.  A new episode starts only after
establish() installs a fresh pair.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from authclient.errors import AuthenticationRequired, RefreshFailure, TokenStoreError
from authclient.token_store import TokenPair, TokenStore

logger = logging.getLogger(__name__)

AuthRequiredListener = Callable[[AuthenticationRequired], None]


class TokenState(enum.Enum):
    VALID = "valid"
    STALE = "stale"
    REFRESHING = "refreshing"
    INVALID = "invalid"


class TokenRefresher(Protocol):
    async def refresh(self, refresh_token: str) -> TokenPair: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenLifecycleManager:
    def __init__(
        self,
        store: TokenStore,
        refresher: TokenRefresher,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._clock = clock
        self._pair: TokenPair | None = store.load()
        self._refresh_task: asyncio.Task[str] | None = None
        self._listeners: list[AuthRequiredListener] = []
        # Bumped by establish()/logout() so a refresh that started against
        # an older pair can't overwrite a newer one when it lands.
        self._generation = 0
        self.refresh_count = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> TokenState:
        if self._refresh_task is not None:
            return TokenState.REFRESHING
        if self._pair is None:
            return TokenState.INVALID
        if self._pair.is_stale(self._clock()):
            return TokenState.STALE
        return TokenState.VALID

    @property
    def expires_at(self) -> datetime | None:
        return self._pair.expires_at if self._pair else None

    def on_authentication_required(self, listener: AuthRequiredListener) -> None:
        """Register a listener for the terminal "log in again" signal.

        Called once per failure episode, synchronously, from inside the
        failed refresh task.
        """
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """Current access token, refreshing first if it has gone stale."""
        if self._refresh_task is None:
            pair = self._pair
            if pair is None:
                raise AuthenticationRequired("no tokens; authorization required")
            if not pair.is_stale(self._clock()):
                return pair.access_token
            logger.info(
                "Access token stale  expires_at=%s", pair.expires_at.isoformat()
            )
        return await self._join_refresh()

    async def refresh_after_rejection(self, rejected_access_token: str) -> str:
        """Refresh because the API rejected *rejected_access_token* (401).

        If the pair was already replaced since that token was attached
        (another caller refreshed first), the newer token is returned and
        no refresh call is made.
        """
        if self._refresh_task is None:
            pair = self._pair
            if pair is None:
                raise AuthenticationRequired("no tokens; authorization required")
            if pair.access_token != rejected_access_token:
                return pair.access_token
            logger.info("Access token rejected by API; refreshing")
        return await self._join_refresh()

    # ------------------------------------------------------------------
    # Session boundaries
    # ------------------------------------------------------------------

    def establish(self, pair: TokenPair) -> None:
        """Install a pair from a fresh authorization-code exchange."""
        self._store.save(pair)
        self._pair = pair
        self._generation += 1
        logger.info(
            "Token pair established  expires_at=%s", pair.expires_at.isoformat()
        )

    def logout(self) -> None:
        """Drop tokens without raising the authentication-required signal."""
        self._store.clear()
        self._pair = None
        self._generation += 1
        logger.info("Tokens cleared (logout)")

    # ------------------------------------------------------------------
    # Refresh machinery
    # ------------------------------------------------------------------

    async def _join_refresh(self) -> str:
        task = self._refresh_task
        if task is None:
            pair = self._pair
            if pair is None:
                raise AuthenticationRequired("no tokens; authorization required")
            task = asyncio.create_task(self._run_refresh(pair, self._generation))
            task.add_done_callback(_retrieve_outcome)
            self._refresh_task = task
        return await asyncio.shield(task)

    async def _run_refresh(self, pair: TokenPair, generation: int) -> str:
        self.refresh_count += 1
        logger.info("Refreshing tokens")
        try:
            new_pair = await self._refresher.refresh(pair.refresh_token)
            if generation == self._generation:
                self._store.save(new_pair)
        except Exception as exc:
            failure = RefreshFailure(f"token refresh failed: {exc}")
            failure.__cause__ = exc
            if generation == self._generation:
                self._invalidate(failure)
            raise failure from exc
        finally:
            self._refresh_task = None

        if generation != self._generation:
            # establish()/logout() ran while we were waiting; theirs wins.
            if self._pair is None:
                raise AuthenticationRequired("logged out during refresh")
            return self._pair.access_token

        self._pair = new_pair
        logger.info(
            "Tokens refreshed  expires_at=%s", new_pair.expires_at.isoformat()
        )
        return new_pair.access_token

    def _invalidate(self, failure: RefreshFailure) -> None:
        if self._pair is None:
            return  # this episode was already signalled
        self._pair = None
        try:
            self._store.clear()
        except TokenStoreError:
            # The in-memory pair is gone either way; the signal still goes out.
            logger.exception("Could not clear token store after failed refresh")
        logger.warning("Refresh failed; tokens cleared, authentication required")
        for listener in list(self._listeners):
            try:
                listener(failure)
            except Exception:
                logger.exception("authentication-required listener raised")


def _retrieve_outcome(task: asyncio.Task[str]) -> None:
    # Every waiter may have been cancelled; mark the exception retrieved so
    # asyncio doesn't report it as never awaited.
    if not task.cancelled():
        task.exception()
