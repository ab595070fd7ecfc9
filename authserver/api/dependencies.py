from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authserver.models.principal import Principal
from authserver.repos.user_repo import user_repo
from authserver.services import token_service

logger = logging.getLogger(__name__)

# auto_error=False so a missing header gets the same 401 + WWW-Authenticate
# as a bad token (HTTPBearer's own error is a 403).
bearer_scheme = HTTPBearer(auto_error=False)

SESSION_COOKIE = "session"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_access_token(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Principal:
    """Validate the bearer access token and return its Principal.

    Every failure is a 401 so clients know to refresh and retry.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Authorization header required: Bearer <token>")

    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.info("Expired access token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid access token rejected: %s", type(e).__name__)
        raise _unauthorized("Invalid token") from None

    principal = Principal(
        subject=claims["sub"],
        client_id=claims["client_id"],
        scope=claims.get("scope", ""),
        token_id=claims["jti"],
    )
    logger.debug(
        "Access token validated  subject=%s client_id=%s",
        principal.subject,
        principal.client_id,
    )
    return principal


def get_interactive_user(request: Request) -> str | None:
    """Subject of the signed-in resource owner, or None.

    Reads the session cookie set by POST /auth/login.  Used by
    /oauth/authorize, which never trusts a subject the caller names.
    """
    cookie = request.cookies.get(SESSION_COOKIE)
    if not cookie:
        return None
    try:
        claims = token_service.decode_session_token(cookie)
    except jwt.ExpiredSignatureError:
        logger.debug("Session cookie expired")
        return None
    except jwt.InvalidTokenError:
        logger.debug("Invalid session cookie")
        return None

    # The account may have been disabled since the cookie was issued.
    try:
        user = user_repo.get_by_id(UUID(claims["sub"]))
    except ValueError:
        return None
    if user is None or not user.is_active:
        logger.info("Session cookie for unknown or inactive user rejected")
        return None
    return user.subject
