"""Durable, tamper-resistant storage for the current token pair.

The pair is serialized to JSON and sealed with Fernet (AES-128-CBC plus
HMAC-SHA256) before it reaches the backend.  A record that fails to
decrypt (edited on disk, truncated, or sealed under another key) is
treated as absent and deleted; the caller then has to log in again.

`expires_at` is persisted as an absolute UTC instant.  It is computed
once when the pair is issued and read back unchanged; nothing here ever
recomputes it from "now".
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from authclient.errors import TokenStoreError

logger = logging.getLogger(__name__)

RECORD_KEY = "oauth-token-pair"


@dataclass(frozen=True, slots=True)
class TokenPair:
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime

    def __post_init__(self) -> None:
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def is_stale(self, now: datetime) -> bool:
        # The refresh buffer was subtracted when expires_at was computed.
        return now >= self.expires_at

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at.isoformat(),
            }
        ).encode()

    @staticmethod
    def from_json(raw: bytes) -> TokenPair:
        data = json.loads(raw)
        return TokenPair(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class KeyValueBackend(Protocol):
    def read(self, key: str) -> bytes | None: ...
    def write(self, key: str, value: bytes) -> None: ...
    def delete(self, key: str) -> None: ...


class InMemoryBackend:
    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def read(self, key: str) -> bytes | None:
        return self._data.get(key)

    def write(self, key: str, value: bytes) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileBackend:
    """One file per key under *directory*, owner read/write only."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.bin"

    def read(self, key: str) -> bytes | None:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def write(self, key: str, value: bytes) -> None:
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        # Write-then-rename: a crash mid-write never leaves a torn record.
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TokenStore:
    """Encrypts the token pair on the way into *backend*, verifies it on the way out."""

    def __init__(self, backend: KeyValueBackend, key: str | bytes) -> None:
        self._backend = backend
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError):
            raise TokenStoreError(
                "token store key must be a urlsafe-base64 32-byte Fernet key"
            ) from None

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def load(self) -> TokenPair | None:
        sealed = self._backend.read(RECORD_KEY)
        if sealed is None:
            return None
        try:
            pair = TokenPair.from_json(self._fernet.decrypt(sealed))
        except InvalidToken:
            logger.warning("Stored token record failed authentication; discarding it")
            self._backend.delete(RECORD_KEY)
            return None
        except (ValueError, KeyError, TypeError):
            logger.warning("Stored token record is malformed; discarding it")
            self._backend.delete(RECORD_KEY)
            return None
        logger.debug("Loaded token pair  expires_at=%s", pair.expires_at.isoformat())
        return pair

    def save(self, pair: TokenPair) -> None:
        try:
            self._backend.write(RECORD_KEY, self._fernet.encrypt(pair.to_json()))
        except OSError as e:
            raise TokenStoreError(f"could not persist token pair: {e}") from e
        logger.debug("Saved token pair  expires_at=%s", pair.expires_at.isoformat())

    def clear(self) -> None:
        try:
            self._backend.delete(RECORD_KEY)
        except OSError as e:
            raise TokenStoreError(f"could not clear token pair: {e}") from e
        logger.debug("Cleared token pair")
