"""GET /oauth/authorize — validation order, redirect shape, stored record."""

from __future__ import annotations

import asyncio
import uuid
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from authclient import pkce
from authserver.api import oauth
from authserver.core.config import SETTINGS
from authserver.models.oauth_client import OAuthClient
from authserver.repos.challenge_store import challenge_store
from authserver.repos.user_repo import user_repo
from authserver.services import token_service
from tests.conftest import (
    CLIENT_ID,
    DEMO_USER,
    REDIRECT_URI,
    authorize,
    code_from,
    login,
)


def _challenge() -> str:
    return pkce.compute_code_challenge(pkce.generate_code_verifier())


def test_authorize_redirects_with_code_and_state(client: TestClient) -> None:
    resp = authorize(client, _challenge(), state="xyz")

    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(f"{REDIRECT_URI}?")
    query = parse_qs(urlparse(location).query)
    assert query["state"] == ["xyz"]
    assert len(query["code"][0]) >= 43
    assert resp.headers["cache-control"] == "no-store"


def test_authorize_without_state_omits_it(client: TestClient) -> None:
    resp = authorize(client, _challenge(), state=None)
    query = parse_qs(urlparse(resp.headers["location"]).query)
    assert "state" not in query
    assert "code" in query


def test_authorize_appends_to_existing_query(client: TestClient) -> None:
    uri = "https://app.example/cb?tenant=7"
    oauth.client_repo.register(
        OAuthClient.new(client_id="web", redirect_uris=(uri,))
    )
    resp = authorize(client, _challenge(), client_id="web", redirect_uri=uri)
    location = resp.headers["location"]
    assert location.startswith(f"{uri}&code=")


def test_authorize_stores_record_by_code_hash(client: TestClient) -> None:
    challenge = _challenge()
    code = code_from(authorize(client, challenge))

    record = asyncio.run(challenge_store.get(oauth.hash_code(code)))
    assert record is not None
    assert record.client_id == CLIENT_ID
    assert record.redirect_uri == REDIRECT_URI
    assert record.code_challenge == challenge
    assert record.code_challenge_method == "S256"
    assert record.subject == DEMO_USER.subject
    assert record.ttl == SETTINGS.auth_code_ttl_sec
    assert record.consumed is False
    # Nothing is stored under the raw code.
    assert asyncio.run(challenge_store.get(code)) is None


def test_subject_cannot_be_named_by_the_caller(client: TestClient) -> None:
    resp = client.get(
        "/oauth/authorize",
        params={
            "response_type": "code",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "code_challenge": _challenge(),
            "code_challenge_method": "S256",
            "subject": "alice",
        },
        headers={"X-Subject": "alice", "X-User": "alice"},
    )
    record = asyncio.run(challenge_store.get(oauth.hash_code(code_from(resp))))
    assert record is not None
    assert record.subject == DEMO_USER.subject


def test_code_carries_the_signed_in_user(anonymous_client: TestClient) -> None:
    registered = anonymous_client.post(
        "/auth/register", json={"username": "alice", "password": "correct-horse"}
    )
    assert registered.status_code == 201
    login(anonymous_client, "alice", "correct-horse")

    code = code_from(authorize(anonymous_client, _challenge()))
    record = asyncio.run(challenge_store.get(oauth.hash_code(code)))
    assert record is not None
    assert record.subject == registered.json()["id"]
    assert record.subject != DEMO_USER.subject


# ---- resource owner session ----


def test_no_session_is_login_required(anonymous_client: TestClient) -> None:
    resp = authorize(anonymous_client, _challenge(), headers={"X-Subject": "alice"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "login_required"}
    assert "location" not in resp.headers
    assert len(challenge_store) == 0  # type: ignore[arg-type]


def test_unknown_client_checked_before_session(anonymous_client: TestClient) -> None:
    resp = authorize(anonymous_client, _challenge(), client_id="nope")
    assert resp.json() == {"error": "invalid_client"}


@pytest.mark.parametrize(
    "cookie",
    [
        "garbage",
        # A valid access token is not a session.
        token_service.create_access_token(sub="attacker", client_id=CLIENT_ID),
        token_service.create_session_token(sub="not-a-uuid"),
        token_service.create_session_token(sub=str(uuid.uuid4())),
    ],
    ids=["garbage", "access-token", "malformed-sub", "unknown-user"],
)
def test_forged_session_cookie_is_refused(
    anonymous_client: TestClient, cookie: str
) -> None:
    resp = authorize(
        anonymous_client, _challenge(), headers={"Cookie": f"session={cookie}"}
    )
    assert resp.status_code == 401
    assert resp.json() == {"error": "login_required"}


def test_disabled_user_session_is_refused(client: TestClient) -> None:
    user_repo.set_active(DEMO_USER.id, False)
    resp = authorize(client, _challenge())
    assert resp.json() == {"error": "login_required"}


def test_logout_ends_the_session(client: TestClient) -> None:
    assert client.post("/auth/logout").status_code == 204
    assert authorize(client, _challenge()).status_code == 401


def test_each_authorize_issues_a_distinct_code(client: TestClient) -> None:
    challenge = _challenge()
    codes = {code_from(authorize(client, challenge)) for _ in range(5)}
    assert len(codes) == 5


# ---- rejections (no redirect, JSON error body) ----


def test_unknown_client_is_rejected(client: TestClient) -> None:
    resp = authorize(client, _challenge(), client_id="nope")
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_client"}
    assert "location" not in resp.headers


@pytest.mark.parametrize(
    "redirect_uri",
    [
        "com.evil://cb",
        "com.demo://cb/",  # trailing slash
        "COM.DEMO://cb",  # case
        "com.demo://cb?x=1",  # extra query
    ],
)
def test_redirect_uri_must_match_exactly(
    client: TestClient, redirect_uri: str
) -> None:
    resp = authorize(client, _challenge(), redirect_uri=redirect_uri)
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_redirect_uri"}
    assert "location" not in resp.headers


def test_unknown_client_wins_over_bad_redirect(client: TestClient) -> None:
    resp = authorize(
        client, _challenge(), client_id="nope", redirect_uri="com.evil://cb"
    )
    assert resp.json() == {"error": "invalid_client"}


def test_plain_method_rejected_by_default(client: TestClient) -> None:
    verifier = pkce.generate_code_verifier()
    resp = authorize(client, verifier, method="plain")
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_request"}


def test_unknown_method_rejected(client: TestClient) -> None:
    resp = authorize(client, _challenge(), method="S512")
    assert resp.json() == {"error": "invalid_request"}


@pytest.mark.parametrize("challenge", ["short", "x" * 129, "a" * 42 + "!"])
def test_malformed_challenge_rejected(client: TestClient, challenge: str) -> None:
    resp = authorize(client, challenge)
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_request"}


def test_response_type_must_be_code(client: TestClient) -> None:
    resp = client.get(
        "/oauth/authorize",
        params={
            "response_type": "token",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "code_challenge": _challenge(),
            "code_challenge_method": "S256",
        },
    )
    assert resp.json() == {"error": "invalid_request"}


def test_missing_challenge_is_invalid_request(client: TestClient) -> None:
    resp = client.get(
        "/oauth/authorize",
        params={"client_id": CLIENT_ID, "redirect_uri": REDIRECT_URI},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_request"}


def test_rejected_request_stores_nothing(client: TestClient) -> None:
    authorize(client, _challenge(), redirect_uri="com.evil://cb")
    authorize(client, "short")
    assert len(challenge_store) == 0  # type: ignore[arg-type]
