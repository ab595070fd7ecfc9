from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0 (got {value})")
    return value


@dataclass(frozen=True)
class ClientSettings:
    server_url: str
    client_id: str
    redirect_uri: str
    token_store_path: str | None
    # Fernet key (urlsafe base64, 32 bytes).  Never printed by repr().
    token_store_key: str | None = field(repr=False)
    refresh_buffer: timedelta = timedelta(minutes=5)
    http_timeout_sec: float = 10.0


def load_client_settings() -> ClientSettings:
    server_url = _getenv("AUTH_SERVER_URL", "http://localhost:8000").rstrip("/")
    if not server_url.startswith(("http://", "https://")):
        raise ValueError(f"AUTH_SERVER_URL must be an http(s) URL (got {server_url!r})")

    client_id = _getenv("OAUTH_CLIENT_ID", "demo")
    redirect_uri = _getenv("OAUTH_REDIRECT_URI", "com.demo://cb")
    if not client_id or not redirect_uri:
        raise ValueError("OAUTH_CLIENT_ID and OAUTH_REDIRECT_URI must not be empty")

    return ClientSettings(
        server_url=server_url,
        client_id=client_id,
        redirect_uri=redirect_uri,
        token_store_path=_getenv("TOKEN_STORE_PATH", "") or None,
        token_store_key=_getenv("TOKEN_STORE_KEY", "") or None,
        refresh_buffer=timedelta(seconds=_getenv_float("TOKEN_REFRESH_BUFFER_SEC", 300)),
        http_timeout_sec=_getenv_float("HTTP_TIMEOUT_SEC", 10.0),
    )
