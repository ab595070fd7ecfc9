"""OAuth error taxonomy.

Each error carries the RFC 6749 ``error`` code it is rendered as.  The
handler registered in main.py turns any OAuthError into a structured
``{"error": code}`` response; a failed request never yields partial
success.
"""

from __future__ import annotations

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class OAuthError(Exception):
    error: str = "server_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, description: str = "") -> None:
        super().__init__(description or self.error)
        self.description = description


class InvalidClient(OAuthError):
    error = "invalid_client"


class InvalidRedirectUri(OAuthError):
    error = "invalid_redirect_uri"


class InvalidGrant(OAuthError):
    """Expired, consumed or mismatched code, bad verifier, bad refresh token."""

    error = "invalid_grant"


class InvalidRequest(OAuthError):
    error = "invalid_request"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class LoginRequired(OAuthError):
    """/oauth/authorize without a signed-in resource owner."""

    error = "login_required"
    status_code = status.HTTP_401_UNAUTHORIZED


async def oauth_error_handler(_request: Request, exc: OAuthError) -> JSONResponse:
    # The description stays server-side: the wire format only carries the
    # code so failed checks can't be told apart by an attacker.
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error},
        headers={"Cache-Control": "no-store"},
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Missing/malformed OAuth parameters become ``invalid_request``."""
    if request.url.path.startswith("/oauth/"):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": InvalidRequest.error},
            headers={"Cache-Control": "no-store"},
        )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )
