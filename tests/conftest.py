from __future__ import annotations

import sys
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import authserver` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from authclient import pkce  # noqa: E402
from authserver.api import oauth  # noqa: E402
from authserver.api.auth import DEMO_PASSWORD, DEMO_USERNAME  # noqa: E402
from authserver.main import app  # noqa: E402
from authserver.models.oauth_client import OAuthClient  # noqa: E402
from authserver.models.user import User  # noqa: E402
from authserver.repos.challenge_store import challenge_store  # noqa: E402
from authserver.repos.oauth_client_repo import client_repo  # noqa: E402
from authserver.repos.user_repo import user_repo  # noqa: E402
from authserver.services import auth_service  # noqa: E402
from authserver.services.refresh_token_registry import (  # noqa: E402
    refresh_token_registry,
)

CLIENT_ID = "demo"
REDIRECT_URI = "com.demo://cb"

# Hashed once per run; Argon2 is deliberately slow.
DEMO_USER = User.new(
    username=DEMO_USERNAME,
    password_hash=auth_service.hash_password(DEMO_PASSWORD),
)


@pytest.fixture(autouse=True)
def reset_challenge_store() -> None:
    """Drop pending authorization codes between tests."""
    challenge_store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_refresh_registry() -> None:
    """Forget spent refresh tokens between tests."""
    refresh_token_registry.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_client_repo() -> None:
    """Back to the single registered demo client."""
    client_repo._by_client_id.clear()
    client_repo.register(
        OAuthClient.new(client_id=CLIENT_ID, redirect_uris=(REDIRECT_URI,))
    )


@pytest.fixture(autouse=True)
def reset_user_repo() -> None:
    """Only the demo resource owner exists."""
    user_repo.clear()
    user_repo.add(DEMO_USER)


@pytest.fixture
def client() -> TestClient:
    """A browser with the demo resource owner signed in."""
    test_client = TestClient(app, follow_redirects=False)
    login(test_client)
    return test_client


@pytest.fixture
def anonymous_client() -> TestClient:
    return TestClient(app, follow_redirects=False)


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------


def login(
    client: TestClient,
    username: str = DEMO_USERNAME,
    password: str = DEMO_PASSWORD,
):
    resp = client.post(
        "/auth/login", json={"username": username, "password": password}
    )
    assert resp.status_code == 200, resp.text
    return resp


def authorize(
    client: TestClient,
    code_challenge: str,
    *,
    client_id: str = CLIENT_ID,
    redirect_uri: str = REDIRECT_URI,
    method: str = "S256",
    state: str | None = "xyz",
    headers: dict[str, str] | None = None,
):
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code_challenge": code_challenge,
        "code_challenge_method": method,
    }
    if state is not None:
        params["state"] = state
    return client.get("/oauth/authorize", params=params, headers=headers or {})


def code_from(resp) -> str:
    assert resp.status_code == 302, resp.text
    query = parse_qs(urlparse(resp.headers["location"]).query)
    return query["code"][0]


def issue_code(client: TestClient, **kwargs) -> tuple[str, str]:
    """Run /oauth/authorize with a fresh verifier; return (code, verifier)."""
    verifier = pkce.generate_code_verifier()
    resp = authorize(client, pkce.compute_code_challenge(verifier), **kwargs)
    return code_from(resp), verifier


def exchange(
    client: TestClient,
    code: str,
    verifier: str,
    *,
    client_id: str = CLIENT_ID,
    redirect_uri: str = REDIRECT_URI,
):
    return client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": verifier,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
        },
    )


def refresh(client: TestClient, refresh_token: str):
    return client.post(
        "/oauth/token",
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
    )


@pytest.fixture
def token_pair(client: TestClient) -> dict:
    """A freshly issued token response body for the demo client."""
    code, verifier = issue_code(client)
    resp = exchange(client, code, verifier)
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def frozen_now(monkeypatch: pytest.MonkeyPatch):
    """Control the clock the OAuth endpoints see.  Returns a setter."""
    current = {"t": 1_700_000_000.0}
    monkeypatch.setattr(oauth, "_now", lambda: current["t"])

    def set_now(t: float) -> None:
        current["t"] = t

    return set_now
