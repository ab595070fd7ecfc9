"""Client for the authorization server's /oauth endpoints.

Builds the authorization URL (PKCE challenge + state), validates the
callback, and turns token endpoint responses into TokenPairs.

EXPIRY MATH
-------------
The server says "expires_in: 3600" relative to the moment it answered.
We turn that into an absolute instant exactly once, here:

    expires_at = issued_at + expires_in - refresh_buffer

where issued_at is read from the clock just before the request is sent,
so network latency can only make us refresh early, never late.  The
buffer is applied here and nowhere else; the lifecycle manager compares
`now >= expires_at` directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from pydantic import BaseModel, Field, ValidationError

from authclient import pkce
from authclient.errors import InvalidGrant, StateMismatch, TokenEndpointError
from authclient.token_store import TokenPair

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class TokenEndpointResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(gt=0)


@dataclass(frozen=True)
class AuthorizationRequest:
    """What the client must remember between redirect-out and callback."""

    url: str
    state: str
    code_verifier: str = field(repr=False)


class OAuthClient:
    def __init__(
        self,
        *,
        server_url: str,
        client_id: str,
        redirect_uri: str,
        refresh_buffer: timedelta = timedelta(minutes=5),
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.refresh_buffer = refresh_buffer
        self._clock = clock
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Authorization request / callback
    # ------------------------------------------------------------------

    def begin_authorization(self, scope: str = "") -> AuthorizationRequest:
        code_verifier = pkce.generate_code_verifier()
        state = pkce.generate_state()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "code_challenge": pkce.compute_code_challenge(code_verifier),
            "code_challenge_method": "S256",
            "state": state,
        }
        if scope:
            params["scope"] = scope
        url = f"{self.server_url}/oauth/authorize?{urlencode(params)}"
        return AuthorizationRequest(url=url, state=state, code_verifier=code_verifier)

    @staticmethod
    def parse_callback(request: AuthorizationRequest, callback_url: str) -> str:
        """Return the code from *callback_url* after checking `state`."""
        query = parse_qs(urlsplit(callback_url).query)
        if "error" in query:
            raise TokenEndpointError(
                f"authorization failed: {query['error'][0]}", error=query["error"][0]
            )
        returned_state = query.get("state", [None])[0]
        if returned_state != request.state:
            raise StateMismatch("callback state does not match the authorization request")
        codes = query.get("code")
        if not codes:
            raise TokenEndpointError("callback carries no authorization code")
        return codes[0]

    async def complete_authorization(
        self, request: AuthorizationRequest, callback_url: str
    ) -> TokenPair:
        code = self.parse_callback(request, callback_url)
        return await self.exchange_code(code, request.code_verifier)

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str, code_verifier: str) -> TokenPair:
        return await self._request_tokens(
            {
                "grant_type": "authorization_code",
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self._request_tokens(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    def expires_at_for(self, issued_at: datetime, expires_in: int) -> datetime:
        lifetime = timedelta(seconds=expires_in)
        # A buffer as long as the lifetime would make every token stale on
        # arrival; cap it at half the lifetime.
        buffer = min(self.refresh_buffer, lifetime / 2)
        return issued_at + lifetime - buffer

    async def _request_tokens(self, form: dict[str, str]) -> TokenPair:
        grant_type = form["grant_type"]
        issued_at = self._clock()
        try:
            response = await self._http.post(
                f"{self.server_url}/oauth/token",
                data=form,
                headers={"Accept": "application/json"},
                auth=None,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Token endpoint unreachable  grant_type=%s: %s",
                grant_type,
                type(e).__name__,
            )
            raise TokenEndpointError(
                f"token endpoint unreachable: {type(e).__name__}"
            ) from e

        if response.status_code != 200:
            error = _error_code(response)
            logger.warning(
                "Token endpoint rejected request  grant_type=%s status=%d error=%s",
                grant_type,
                response.status_code,
                error,
            )
            if error == "invalid_grant":
                raise InvalidGrant(status_code=response.status_code)
            raise TokenEndpointError(
                f"token endpoint returned {response.status_code}",
                status_code=response.status_code,
                error=error,
            )

        try:
            body = TokenEndpointResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TokenEndpointError(
                f"malformed token response ({e.error_count()} errors)",
                status_code=response.status_code,
            ) from None

        pair = TokenPair(
            access_token=body.access_token,
            refresh_token=body.refresh_token,
            expires_at=self.expires_at_for(issued_at, body.expires_in),
        )
        logger.info(
            "Tokens received  grant_type=%s expires_in=%ds expires_at=%s",
            grant_type,
            body.expires_in,
            pair.expires_at.isoformat(),
        )
        return pair


def _error_code(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    error = data.get("error") if isinstance(data, dict) else None
    return error if isinstance(error, str) else None
