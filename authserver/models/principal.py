from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Identity extracted from a verified access token."""

    subject: str
    client_id: str
    scope: str = ""
    token_id: str = ""
