"""Request interceptor — bearer tokens on outbound API calls.

Plugs into httpx as an Auth flow, so every request made through an
AsyncClient built with `auth=BearerAuth(manager)` goes through it:

    1. ask the lifecycle manager for the access token (refreshes first if
       it has gone stale)
    2. attach it as `Authorization: Bearer ...` and send
    3. on 401: have the manager refresh (or pick up a refresh someone else
       already did) and send the same request ONE more time
    4. a second 401 goes back to the caller as-is

Step 4 is the retry-storm guard: a server that keeps rejecting fresh
tokens gets two requests per call, not an endless loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Generator

import httpx

from authclient.lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    # The body is read up front so the retry can resend it.
    requires_request_body = True

    def __init__(self, manager: TokenLifecycleManager) -> None:
        self._manager = manager

    def sync_auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("BearerAuth needs httpx.AsyncClient")
        yield request  # pragma: no cover

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        access_token = await self._manager.get_access_token()
        request.headers["Authorization"] = f"Bearer {access_token}"
        response = yield request

        if response.status_code != httpx.codes.UNAUTHORIZED:
            return

        logger.info(
            "401 from %s %s; refreshing and retrying once",
            request.method,
            request.url.path,
        )
        access_token = await self._manager.refresh_after_rejection(access_token)
        request.headers["Authorization"] = f"Bearer {access_token}"
        response = yield request

        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.warning(
                "Retried request still unauthorized  %s %s",
                request.method,
                request.url.path,
            )


def build_api_client(
    manager: TokenLifecycleManager,
    *,
    base_url: str,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """AsyncClient whose every request goes through BearerAuth."""
    return httpx.AsyncClient(
        base_url=base_url,
        auth=BearerAuth(manager),
        timeout=timeout,
        transport=transport,
    )
