"""JWT access, refresh and session token issuance and validation (ES256).

Centralizes all token logic so oauth.py (issuance, refresh grant),
auth.py (session cookie) and dependencies.py (bearer and session
validation) share one key and one claims schema.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

from authserver.core.config import SETTINGS
from authserver.models.token import TokenResponse

# ---------------------------------------------------------------------------
# Key management
# ---------------------------------------------------------------------------
# Dev/test: generate an ephemeral EC key pair on import.  Tokens therefore
# don't survive a restart; clients fall back to a fresh login.
_private_key = ec.generate_private_key(ec.SECP256R1())
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "pkce-auth"
AUDIENCE = "pkce-auth-api"

# Same key pair, different audience: a refresh JWT can never be accepted
# as an access token and vice versa.
REFRESH_AUDIENCE = "pkce-auth-refresh"

# Session cookies: proof that a resource owner signed in to this server.
# Only /oauth/authorize reads them; they are never API credentials.
SESSION_AUDIENCE = "pkce-auth-session"

_REQUIRED_CLAIMS = ["sub", "exp", "iat", "jti", "client_id"]


def access_token_ttl() -> timedelta:
    return timedelta(seconds=SETTINGS.access_token_ttl_sec)


def refresh_token_ttl() -> timedelta:
    return timedelta(days=SETTINGS.refresh_token_ttl_days)


def session_ttl() -> timedelta:
    return timedelta(minutes=SETTINGS.session_ttl_min)


def create_access_token(
    *,
    sub: str,
    client_id: str,
    scope: str = "",
    now: datetime | None = None,
) -> str:
    """Build and sign a JWT access token.

    Claims: sub, iss, aud, exp, iat, jti, client_id, scope.
    """
    now = now or datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + access_token_ttl(),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "client_id": client_id,
        "scope": scope,
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins the algorithm to ES256 to rule out alg:none and alg-switching.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": _REQUIRED_CLAIMS},
    )


def create_refresh_token(
    *,
    sub: str,
    client_id: str,
    scope: str = "",
    now: datetime | None = None,
) -> str:
    """Build and sign a refresh token JWT.

    Every refresh token gets a fresh jti; the refresh grant claims that
    jti so the token can be redeemed once.
    """
    now = now or datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": REFRESH_AUDIENCE,
        "exp": now + refresh_token_ttl(),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "client_id": client_id,
        "scope": scope,
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_refresh_token(token: str) -> dict:
    """Verify a refresh token JWT. Pins audience to REFRESH_AUDIENCE.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=REFRESH_AUDIENCE,
        options={"require": _REQUIRED_CLAIMS},
    )


def issue_token_pair(*, sub: str, client_id: str, scope: str = "") -> TokenResponse:
    """Mint an access + refresh token pair sharing one issuance instant."""
    now = datetime.now(UTC)
    return TokenResponse(
        access_token=create_access_token(
            sub=sub, client_id=client_id, scope=scope, now=now
        ),
        refresh_token=create_refresh_token(
            sub=sub, client_id=client_id, scope=scope, now=now
        ),
        token_type="bearer",
        expires_in=int(access_token_ttl().total_seconds()),
    )


def create_session_token(*, sub: str, now: datetime | None = None) -> str:
    """Build and sign the JWT carried in the session cookie."""
    now = now or datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": SESSION_AUDIENCE,
        "exp": now + session_ttl(),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Verify a session JWT. Pins audience to SESSION_AUDIENCE.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=SESSION_AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
