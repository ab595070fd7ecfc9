"""Assert that authorization codes, verifiers and tokens never appear in logs.

These tests drive the OAuth endpoints at DEBUG level and scan every
captured record for the sensitive values the client sent or received.
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from authclient import pkce
from tests.conftest import authorize, code_from, exchange, refresh


def _assert_absent(caplog: pytest.LogCaptureFixture, *secrets: str) -> None:
    all_log_text = " ".join(caplog.messages)
    for secret in secrets:
        assert secret not in all_log_text, "Secret found in log output!"


def test_successful_flow_does_not_log_secrets(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    verifier = pkce.generate_code_verifier()
    with caplog.at_level(logging.DEBUG):
        code = code_from(authorize(client, pkce.compute_code_challenge(verifier)))
        body = exchange(client, code, verifier).json()
        rotated = refresh(client, body["refresh_token"]).json()
        client.get(
            "/resource/me",
            headers={"Authorization": f"Bearer {rotated['access_token']}"},
        )

    _assert_absent(
        caplog,
        code,
        verifier,
        body["access_token"],
        body["refresh_token"],
        rotated["access_token"],
        rotated["refresh_token"],
    )


def test_failed_exchange_does_not_log_secrets(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    verifier = pkce.generate_code_verifier()
    wrong = pkce.generate_code_verifier()
    code = code_from(authorize(client, pkce.compute_code_challenge(verifier)))

    with caplog.at_level(logging.DEBUG):
        exchange(client, code, wrong)
        exchange(client, code, verifier)  # replay

    _assert_absent(caplog, code, verifier, wrong)


def test_rejected_refresh_does_not_log_token(
    client: TestClient, token_pair: dict, caplog: pytest.LogCaptureFixture
) -> None:
    refresh(client, token_pair["refresh_token"])
    with caplog.at_level(logging.DEBUG):
        refresh(client, token_pair["refresh_token"])  # superseded
        refresh(client, token_pair["access_token"])  # wrong audience

    _assert_absent(caplog, token_pair["refresh_token"], token_pair["access_token"])
