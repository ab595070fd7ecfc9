from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

from authclient import session as session_module
from authclient.config import ClientSettings, load_client_settings
from authclient.errors import TokenStoreError
from authclient.session import AuthSession
from authclient.token_store import FileBackend, InMemoryBackend


def test_load_client_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AUTH_SERVER_URL",
        "OAUTH_CLIENT_ID",
        "OAUTH_REDIRECT_URI",
        "TOKEN_STORE_PATH",
        "TOKEN_STORE_KEY",
        "TOKEN_REFRESH_BUFFER_SEC",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = load_client_settings()
    assert settings.server_url == "http://localhost:8000"
    assert settings.client_id == "demo"
    assert settings.redirect_uri == "com.demo://cb"
    assert settings.token_store_path is None
    assert settings.token_store_key is None
    assert settings.refresh_buffer == timedelta(minutes=5)


def test_load_client_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SERVER_URL", "https://auth.example/")
    monkeypatch.setenv("TOKEN_REFRESH_BUFFER_SEC", "60")
    settings = load_client_settings()
    assert settings.server_url == "https://auth.example"
    assert settings.refresh_buffer == timedelta(seconds=60)


def test_rejects_non_http_server_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTH_SERVER_URL", "ftp://auth.example")
    with pytest.raises(ValueError, match="AUTH_SERVER_URL"):
        load_client_settings()


def test_rejects_negative_buffer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKEN_REFRESH_BUFFER_SEC", "-1")
    with pytest.raises(ValueError, match="TOKEN_REFRESH_BUFFER_SEC must be >= 0"):
        load_client_settings()


def test_repr_hides_store_key() -> None:
    settings = ClientSettings(
        server_url="http://x",
        client_id="demo",
        redirect_uri="com.demo://cb",
        token_store_path=None,
        token_store_key="super-secret-key",
    )
    assert "super-secret-key" not in repr(settings)


def test_session_without_key_warns_and_uses_memory(
    caplog: pytest.LogCaptureFixture,
) -> None:
    settings = ClientSettings(
        server_url="http://x",
        client_id="demo",
        redirect_uri="com.demo://cb",
        token_store_path=None,
        token_store_key=None,
    )
    with caplog.at_level(logging.WARNING, logger="authclient.session"):
        session = AuthSession.from_settings(settings)
    assert "ephemeral key" in caplog.text
    assert isinstance(session.manager._store._backend, InMemoryBackend)
    assert session.needs_login
    asyncio.run(session.aclose())


def test_session_with_path_uses_file_backend(tmp_path: Path) -> None:
    settings = ClientSettings(
        server_url="http://x",
        client_id="demo",
        redirect_uri="com.demo://cb",
        token_store_path=str(tmp_path),
        token_store_key=None,
    )
    session = AuthSession.from_settings(settings)
    assert isinstance(session.manager._store._backend, FileBackend)
    asyncio.run(session.aclose())


def test_bad_store_key_opens_no_http_client(monkeypatch: pytest.MonkeyPatch) -> None:
    opened: list[object] = []

    class RecordingClient(httpx.AsyncClient):
        def __init__(self, *args, **kwargs) -> None:
            opened.append(self)
            super().__init__(*args, **kwargs)

    monkeypatch.setattr(session_module.httpx, "AsyncClient", RecordingClient)
    settings = ClientSettings(
        server_url="http://x",
        client_id="demo",
        redirect_uri="com.demo://cb",
        token_store_path=None,
        token_store_key="not-a-fernet-key",
    )
    with pytest.raises(TokenStoreError):
        AuthSession.from_settings(settings)
    assert opened == []
