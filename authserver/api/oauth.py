from __future__ import annotations

import hashlib
import logging
import secrets
import time
from urllib.parse import urlencode

import jwt
from fastapi import APIRouter, Form, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from authserver.api.dependencies import get_interactive_user
from authserver.core.config import SETTINGS
from authserver.core.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRedirectUri,
    InvalidRequest,
    LoginRequired,
    OAuthError,
    UnsupportedGrantType,
)
from authserver.core.metrics import (
    AUTHORIZATION_CODES_ISSUED,
    TOKEN_ERRORS,
    TOKENS_ISSUED,
)
from authserver.models.challenge import ChallengeRecord
from authserver.models.token import TokenResponse
from authserver.repos.challenge_store import challenge_store
from authserver.repos.oauth_client_repo import client_repo
from authserver.services import pkce_service, token_service
from authserver.services.refresh_token_registry import refresh_token_registry

# ---------------------------------------------------------------------------
# Authorization Server — Authorization Code + PKCE
#
#   GET  /oauth/authorize  — issue a single-use code, redirect back to client
#   POST /oauth/token      — authorization_code and refresh_token grants
#
# Never logged: the authorization code, the code_verifier, any token.
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

GRANT_AUTHORIZATION_CODE = "authorization_code"
GRANT_REFRESH_TOKEN = "refresh_token"

def _now() -> float:
    return time.time()


def hash_code(code: str) -> str:
    """Storage key for an authorization code; the raw code is never stored."""
    return hashlib.sha256(code.encode()).hexdigest()


def _reject(
    exc: OAuthError, *, grant_type: str, client_id: str | None, reason: str
) -> OAuthError:
    TOKEN_ERRORS.labels(grant_type=grant_type, error=exc.error).inc()
    logger.warning(
        "OAuth FAIL [%s] %s: %s  client_id=%s",
        grant_type,
        exc.error,
        reason,
        client_id,
        extra={"client_id": client_id, "grant_type": grant_type},
    )
    return exc


def _redirect_with(redirect_uri: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in redirect_uri else "?"
    return f"{redirect_uri}{separator}{urlencode(params)}"


# ========================== GET /oauth/authorize ==========================


@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    client_id: str = Query(...),
    redirect_uri: str = Query(...),
    code_challenge: str = Query(...),
    code_challenge_method: str = Query(...),
    response_type: str = Query("code"),
    scope: str = Query(""),
    state: str | None = Query(None),
) -> RedirectResponse:
    logger.info(
        "PKCE FLOW [authorize] step 1: received authorization request  client_id=%s",
        client_id,
        extra={"client_id": client_id},
    )

    # --- Client and redirect_uri ------------------------------------------
    # Both are checked before anything else: an unvalidated redirect_uri is
    # never redirected to, not even with an error.
    client = client_repo.get(client_id)
    if client is None:
        raise _reject(
            InvalidClient(), grant_type="authorize", client_id=client_id,
            reason="unknown client_id",
        )
    if not client.allows_redirect(redirect_uri):
        raise _reject(
            InvalidRedirectUri(), grant_type="authorize", client_id=client_id,
            reason="redirect_uri not registered",
        )
    logger.info("PKCE FLOW [authorize] step 2: client and redirect_uri verified  ✓")

    # --- Request shape ----------------------------------------------------
    if response_type != "code":
        raise _reject(
            InvalidRequest(), grant_type="authorize", client_id=client_id,
            reason=f"response_type={response_type!r}",
        )
    allowed = pkce_service.supported_methods(allow_plain=SETTINGS.pkce_allow_plain)
    if code_challenge_method not in allowed:
        raise _reject(
            InvalidRequest(), grant_type="authorize", client_id=client_id,
            reason=f"code_challenge_method={code_challenge_method!r}",
        )
    if not pkce_service.is_well_formed(code_challenge):
        raise _reject(
            InvalidRequest(), grant_type="authorize", client_id=client_id,
            reason="malformed code_challenge",
        )
    logger.info(
        "PKCE FLOW [authorize] step 3: PKCE params valid (%s)  ✓",
        code_challenge_method,
    )

    # --- Resource owner --------------------------------------------------
    # The subject comes only from the signed session cookie; nothing the
    # caller sends in headers or query can name it.
    subject = get_interactive_user(request)
    if subject is None:
        raise _reject(
            LoginRequired(), grant_type="authorize", client_id=client_id,
            reason="no signed-in resource owner",
        )
    logger.info("PKCE FLOW [authorize] step 4: resource owner signed in  ✓")

    # --- Issue and store the code -----------------------------------------
    # The record is keyed by the code's hash.  `state` belongs to the
    # client's CSRF check and is only echoed back.
    raw_code = secrets.token_urlsafe(32)
    record = ChallengeRecord.new(
        code_hash=hash_code(raw_code),
        client_id=client_id,
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        scope=scope,
        subject=subject,
        issued_at=_now(),
        ttl=SETTINGS.auth_code_ttl_sec,
    )
    await challenge_store.create(record)
    AUTHORIZATION_CODES_ISSUED.inc()
    logger.info(
        "PKCE FLOW [authorize] step 5: code issued  subject=%s ttl=%ds",
        subject,
        record.ttl,
    )

    params = {"code": raw_code}
    if state is not None:
        params["state"] = state
    return RedirectResponse(
        url=_redirect_with(redirect_uri, params),
        status_code=status.HTTP_302_FOUND,
        headers={"Cache-Control": "no-store"},
    )


# ========================== POST /oauth/token =============================


@router.post("/oauth/token")
async def token(
    grant_type: str = Form(...),
    code: str | None = Form(None),
    code_verifier: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    refresh_token: str | None = Form(None),
) -> JSONResponse:
    if grant_type == GRANT_AUTHORIZATION_CODE:
        if not (code and code_verifier and redirect_uri and client_id):
            raise _reject(
                InvalidRequest(), grant_type=grant_type, client_id=client_id,
                reason="missing code, code_verifier, redirect_uri or client_id",
            )
        issued = await _exchange_code(
            code=code,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            client_id=client_id,
        )
    elif grant_type == GRANT_REFRESH_TOKEN:
        if not refresh_token:
            raise _reject(
                InvalidRequest(), grant_type=grant_type, client_id=client_id,
                reason="missing refresh_token",
            )
        issued = await _refresh(refresh_token)
    else:
        raise _reject(
            UnsupportedGrantType(), grant_type="unknown", client_id=client_id,
            reason=f"grant_type={grant_type!r}",
        )

    TOKENS_ISSUED.labels(grant_type=grant_type).inc()
    return JSONResponse(
        content=issued.model_dump(),
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


async def _exchange_code(
    *, code: str, code_verifier: str, redirect_uri: str, client_id: str
) -> TokenResponse:
    grant = GRANT_AUTHORIZATION_CODE
    logger.info(
        "PKCE FLOW [token] step 1: code exchange requested  client_id=%s",
        client_id,
        extra={"client_id": client_id, "grant_type": grant},
    )

    # --- Consume (compare-and-set) ----------------------------------------
    # The first attempt burns the code, whether or not the checks below
    # pass, so a stolen code can't be used to guess verifiers.  Absent,
    # expired and already-consumed codes all come back as None.
    code_hash = hash_code(code)
    record = await challenge_store.consume(code_hash, _now())
    if record is None:
        existing = await challenge_store.get(code_hash)
        if existing is None:
            reason = "authorization code not found"
        elif existing.consumed:
            reason = "authorization code already used (replay attempt)"
        else:
            reason = "authorization code expired"
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id, reason=reason
        )
    logger.info("PKCE FLOW [token] step 2: code consumed (single-use enforced)  ✓")

    # --- Binding checks ---------------------------------------------------
    if record.client_id != client_id:
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id,
            reason="client_id mismatch",
        )
    if record.redirect_uri != redirect_uri:
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id,
            reason="redirect_uri mismatch",
        )
    logger.info("PKCE FLOW [token] step 3: client_id and redirect_uri match  ✓")

    # --- Proof of possession ----------------------------------------------
    if not pkce_service.verify_code_challenge(
        code_verifier, record.code_challenge, record.code_challenge_method
    ):
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id,
            reason="PKCE verification failed",
        )
    logger.info("PKCE FLOW [token] step 4: PKCE verified  ✓")

    issued = token_service.issue_token_pair(
        sub=record.subject, client_id=record.client_id, scope=record.scope
    )
    logger.info(
        "PKCE FLOW [token] step 5: token pair issued  subject=%s expires_in=%ds  ✓",
        record.subject,
        issued.expires_in,
    )
    return issued


async def _refresh(raw_refresh_token: str) -> TokenResponse:
    grant = GRANT_REFRESH_TOKEN
    try:
        claims = token_service.decode_refresh_token(raw_refresh_token)
    except jwt.ExpiredSignatureError:
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=None,
            reason="refresh token expired",
        ) from None
    except jwt.InvalidTokenError as e:
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=None,
            reason=f"invalid refresh token ({type(e).__name__})",
        ) from None

    client_id = claims["client_id"]
    if client_repo.get(client_id) is None:
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id,
            reason="refresh token issued to an unregistered client",
        )

    # Rotation: claiming the jti is the compare-and-set that makes every
    # refresh token single-use.
    if not await refresh_token_registry.claim(claims["jti"], float(claims["exp"])):
        raise _reject(
            InvalidGrant(), grant_type=grant, client_id=client_id,
            reason="refresh token already used (superseded)",
        )

    issued = token_service.issue_token_pair(
        sub=claims["sub"], client_id=client_id, scope=claims.get("scope", "")
    )
    logger.info(
        "Refresh token rotated  subject=%s client_id=%s",
        claims["sub"],
        client_id,
        extra={"client_id": client_id, "grant_type": grant},
    )
    return issued
