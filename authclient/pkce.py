from __future__ import annotations

import base64
import hashlib
import secrets

# Client half of PKCE: a fresh verifier per authorization request, and the
# S256 challenge that commits to it.  Only the challenge leaves the client
# before the token exchange.


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(num_bytes: int = 32) -> str:
    # 32 random bytes -> 43 base64url chars, the minimum RFC 7636 allows.
    if not 32 <= num_bytes <= 96:
        raise ValueError("num_bytes must be between 32 and 96")
    return _b64url(secrets.token_bytes(num_bytes))


def compute_code_challenge(code_verifier: str) -> str:
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_state() -> str:
    """Opaque CSRF value, checked against the callback by the client only."""
    return secrets.token_urlsafe(16)
