from __future__ import annotations

import base64
import hashlib
import hmac
import re

# PKCE (RFC 7636) checks used by /oauth/authorize and /oauth/token.
#
# The client commits to code_challenge = transform(code_verifier) at
# /authorize and proves possession of the verifier at /token.  S256 is
# BASE64URL(SHA256(verifier)) without padding; "plain" is the identity
# transform and is only honored when PKCE_ALLOW_PLAIN is set.

S256 = "S256"
PLAIN = "plain"

# 43-128 characters from the unreserved set [A-Z a-z 0-9 - . _ ~].
# Challenges share the same shape (an S256 challenge is always 43 chars).
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def supported_methods(*, allow_plain: bool) -> frozenset[str]:
    return frozenset({S256, PLAIN}) if allow_plain else frozenset({S256})


def is_well_formed(value: str) -> bool:
    return bool(_VERIFIER_RE.fullmatch(value))


def compute_code_challenge(code_verifier: str, method: str = S256) -> str:
    if method == PLAIN:
        return code_verifier
    if method != S256:
        raise ValueError(f"unsupported code_challenge_method {method!r}")
    sha256_digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(sha256_digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(
    code_verifier: str, expected_challenge: str, method: str = S256
) -> bool:
    """Recompute the challenge with the record's method and compare.

    Constant-time comparison so response timing says nothing about how
    much of the challenge matched.
    """
    if not is_well_formed(code_verifier):
        return False
    try:
        actual_challenge = compute_code_challenge(code_verifier, method)
    except ValueError:
        return False
    return hmac.compare_digest(actual_challenge, expected_challenge)
