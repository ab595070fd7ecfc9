from __future__ import annotations

import os
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from authclient.errors import TokenStoreError
from authclient.token_store import (
    RECORD_KEY,
    FileBackend,
    InMemoryBackend,
    TokenPair,
    TokenStore,
)

EXPIRES_AT = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _pair() -> TokenPair:
    return TokenPair(
        access_token="access-abc", refresh_token="refresh-xyz", expires_at=EXPIRES_AT
    )


def test_save_then_load_preserves_expiry_instant() -> None:
    store = TokenStore(InMemoryBackend(), TokenStore.generate_key())
    store.save(_pair())
    loaded = store.load()
    assert loaded == _pair()
    assert loaded is not None and loaded.expires_at == EXPIRES_AT


def test_load_empty_returns_none() -> None:
    store = TokenStore(InMemoryBackend(), TokenStore.generate_key())
    assert store.load() is None


def test_record_is_encrypted_at_rest() -> None:
    backend = InMemoryBackend()
    TokenStore(backend, TokenStore.generate_key()).save(_pair())
    raw = backend.read(RECORD_KEY)
    assert raw is not None
    assert b"access-abc" not in raw
    assert b"refresh-xyz" not in raw


def test_tampered_record_is_discarded() -> None:
    backend = InMemoryBackend()
    store = TokenStore(backend, TokenStore.generate_key())
    store.save(_pair())
    raw = backend.read(RECORD_KEY)
    assert raw is not None
    backend.write(RECORD_KEY, raw[:-3] + b"AAA")

    assert store.load() is None
    assert backend.read(RECORD_KEY) is None


def test_record_under_other_key_is_discarded() -> None:
    backend = InMemoryBackend()
    TokenStore(backend, TokenStore.generate_key()).save(_pair())
    assert TokenStore(backend, TokenStore.generate_key()).load() is None


def test_bad_key_raises() -> None:
    with pytest.raises(TokenStoreError):
        TokenStore(InMemoryBackend(), "not-a-fernet-key")


def test_clear_removes_record() -> None:
    store = TokenStore(InMemoryBackend(), TokenStore.generate_key())
    store.save(_pair())
    store.clear()
    assert store.load() is None


def test_file_backend_persists_owner_only(tmp_path: Path) -> None:
    key = TokenStore.generate_key()
    TokenStore(FileBackend(tmp_path / "tokens"), key).save(_pair())

    files = list((tmp_path / "tokens").iterdir())
    assert [f.name for f in files] == [f"{RECORD_KEY}.bin"]
    assert stat.S_IMODE(os.stat(files[0]).st_mode) == 0o600

    # A new process with the same key reads it back.
    assert TokenStore(FileBackend(tmp_path / "tokens"), key).load() == _pair()


def test_file_backend_delete_missing_is_noop(tmp_path: Path) -> None:
    FileBackend(tmp_path).delete(RECORD_KEY)


def test_pair_requires_aware_expiry() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        TokenPair("a", "r", datetime(2026, 1, 1, 12, 0))


def test_pair_repr_hides_tokens() -> None:
    text = repr(_pair())
    assert "access-abc" not in text
    assert "refresh-xyz" not in text


def test_pair_staleness_boundary() -> None:
    pair = _pair()
    assert not pair.is_stale(EXPIRES_AT - timedelta(seconds=1))
    assert pair.is_stale(EXPIRES_AT)
