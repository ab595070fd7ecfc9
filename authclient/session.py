"""AuthSession — one object an application holds for its whole lifetime.

Wires the pieces together from ClientSettings:

    OAuthClient  ──refresh()──▶  TokenLifecycleManager  ◀──  BearerAuth
                                      │                        (api client)
                                  TokenStore

Usage::

    async with AuthSession.from_settings(load_client_settings()) as session:
        session.on_authentication_required(show_login_screen)
        if session.needs_login:
            request = session.begin_login()
            ...send the user to request.url, receive callback_url...
            await session.complete_login(request, callback_url)
        resp = await session.api.get("/resource/me")
"""

from __future__ import annotations

import logging

import httpx

from authclient.config import ClientSettings
from authclient.interceptor import build_api_client
from authclient.lifecycle import (
    AuthRequiredListener,
    TokenLifecycleManager,
    TokenState,
)
from authclient.oauth_client import AuthorizationRequest, OAuthClient
from authclient.token_store import (
    FileBackend,
    InMemoryBackend,
    KeyValueBackend,
    TokenStore,
)

logger = logging.getLogger(__name__)


class AuthSession:
    def __init__(
        self,
        *,
        oauth: OAuthClient,
        manager: TokenLifecycleManager,
        api: httpx.AsyncClient,
    ) -> None:
        self.oauth = oauth
        self.manager = manager
        self.api = api
        self._owned: list[httpx.AsyncClient] = []

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AuthSession:
        backend: KeyValueBackend
        if settings.token_store_path:
            backend = FileBackend(settings.token_store_path)
        else:
            backend = InMemoryBackend()

        key = settings.token_store_key
        if key is None:
            # Records sealed under this key are unreadable after a restart.
            key = TokenStore.generate_key()
            logger.warning("TOKEN_STORE_KEY not set; using an ephemeral key")
        # Built before any HTTP client so a bad key leaks nothing.
        store = TokenStore(backend, key)

        token_http = httpx.AsyncClient(
            timeout=settings.http_timeout_sec, transport=transport
        )
        oauth = OAuthClient(
            server_url=settings.server_url,
            client_id=settings.client_id,
            redirect_uri=settings.redirect_uri,
            refresh_buffer=settings.refresh_buffer,
            http=token_http,
        )
        manager = TokenLifecycleManager(store, oauth)
        api = build_api_client(
            manager,
            base_url=settings.server_url,
            timeout=settings.http_timeout_sec,
            transport=transport,
        )
        session = cls(oauth=oauth, manager=manager, api=api)
        session._owned = [api, token_http]
        return session

    @property
    def needs_login(self) -> bool:
        return self.manager.state is TokenState.INVALID

    def on_authentication_required(self, listener: AuthRequiredListener) -> None:
        self.manager.on_authentication_required(listener)

    def begin_login(self, scope: str = "") -> AuthorizationRequest:
        return self.oauth.begin_authorization(scope)

    async def complete_login(
        self, request: AuthorizationRequest, callback_url: str
    ) -> None:
        """Exchange the callback's code; InvalidGrant means start over."""
        pair = await self.oauth.complete_authorization(request, callback_url)
        self.manager.establish(pair)

    def logout(self) -> None:
        self.manager.logout()

    async def aclose(self) -> None:
        for http in self._owned:
            await http.aclose()
        await self.oauth.aclose()

    async def __aenter__(self) -> AuthSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
