from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OAuthClient:
    client_id: str
    redirect_uris: frozenset[str]

    @staticmethod
    def new(*, client_id: str, redirect_uris: tuple[str, ...]) -> OAuthClient:
        if not client_id:
            raise ValueError("client_id must not be empty")
        if not redirect_uris:
            raise ValueError(f"client {client_id!r} needs at least one redirect_uri")
        return OAuthClient(client_id=client_id, redirect_uris=frozenset(redirect_uris))

    def allows_redirect(self, redirect_uri: str) -> bool:
        # Exact string membership only: no prefix, wildcard or
        # normalization (trailing slash, case) is applied.
        return redirect_uri in self.redirect_uris
