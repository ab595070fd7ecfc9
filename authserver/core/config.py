from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

# Registered clients when OAUTH_CLIENTS is unset.  Format:
#   client_id=redirect_uri[|redirect_uri...][,client_id=...]
DEFAULT_OAUTH_CLIENTS = "demo=com.demo://cb"


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def parse_oauth_clients(raw: str) -> dict[str, tuple[str, ...]]:
    """Parse ``client=uri1|uri2,other=uri3`` into ``{client: (uris...)}``.

    Redirect URIs are kept byte-for-byte; no normalization happens here
    because the authorize endpoint compares them exactly.
    """
    clients: dict[str, tuple[str, ...]] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        client_id, sep, uris_raw = entry.partition("=")
        client_id = client_id.strip()
        uris = tuple(u for u in uris_raw.split("|") if u)
        if not sep or not client_id or not uris:
            raise ValueError(
                f"OAUTH_CLIENTS entry must look like client_id=uri[|uri] (got {entry!r})"
            )
        clients[client_id] = uris
    return clients


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    auth_code_ttl_sec: int = 600
    access_token_ttl_sec: int = 3600
    refresh_token_ttl_days: int = 7
    pkce_allow_plain: bool = False
    oauth_clients: str = DEFAULT_OAUTH_CLIENTS
    session_ttl_min: int = 30
    challenge_sweep_interval_sec: int = 60

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def registered_clients(self) -> dict[str, tuple[str, ...]]:
        return parse_oauth_clients(self.oauth_clients)


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    oauth_clients = _getenv("OAUTH_CLIENTS", DEFAULT_OAUTH_CLIENTS)
    # Fail at startup, not on the first authorize request.
    parse_oauth_clients(oauth_clients)

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=port,
        redis_url=_getenv("REDIS_URL", "") or None,
        auth_code_ttl_sec=_getenv_int("AUTH_CODE_TTL_SEC", 600, minimum=1),
        access_token_ttl_sec=_getenv_int("ACCESS_TOKEN_TTL_SEC", 3600, minimum=1),
        refresh_token_ttl_days=_getenv_int("REFRESH_TOKEN_TTL_DAYS", 7, minimum=1),
        pkce_allow_plain=_getenv_bool("PKCE_ALLOW_PLAIN", False),
        oauth_clients=oauth_clients,
        session_ttl_min=_getenv_int("SESSION_TTL_MIN", 30, minimum=1),
        challenge_sweep_interval_sec=_getenv_int(
            "CHALLENGE_SWEEP_INTERVAL_SEC", 60, minimum=1
        ),
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
