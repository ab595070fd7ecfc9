from __future__ import annotations

from typing import Protocol

from authserver.core.config import SETTINGS
from authserver.models.oauth_client import OAuthClient


class OAuthClientRepo(Protocol):
    def get(self, client_id: str) -> OAuthClient | None: ...
    def register(self, client: OAuthClient) -> None: ...


class InMemoryOAuthClientRepo:
    def __init__(self) -> None:
        self._by_client_id: dict[str, OAuthClient] = {}

    def get(self, client_id: str) -> OAuthClient | None:
        return self._by_client_id.get(client_id)

    def register(self, client: OAuthClient) -> None:
        self._by_client_id[client.client_id] = client

    @classmethod
    def from_config(
        cls, clients: dict[str, tuple[str, ...]]
    ) -> InMemoryOAuthClientRepo:
        repo = cls()
        for client_id, uris in clients.items():
            repo.register(OAuthClient.new(client_id=client_id, redirect_uris=uris))
        return repo


client_repo = InMemoryOAuthClientRepo.from_config(SETTINGS.registered_clients)
