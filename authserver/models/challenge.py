from __future__ import annotations

from dataclasses import dataclass

# A pending authorization request, keyed by the SHA-256 hash of the
# authorization code it was issued under.  The caller-supplied `state` is
# deliberately not a field: it is echoed to the client and never stored.


@dataclass(frozen=True, slots=True)
class ChallengeRecord:
    code_hash: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    scope: str
    subject: str
    issued_at: float
    ttl: int
    consumed: bool = False

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: float) -> bool:
        return not self.consumed and not self.is_expired(now)

    @staticmethod
    def new(
        *,
        code_hash: str,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        scope: str,
        subject: str,
        issued_at: float,
        ttl: int,
    ) -> ChallengeRecord:
        return ChallengeRecord(
            code_hash=code_hash,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scope=scope,
            subject=subject,
            issued_at=issued_at,
            ttl=ttl,
            consumed=False,
        )

    def to_mapping(self) -> dict[str, str]:
        """Flat string mapping for a Redis hash."""
        return {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "scope": self.scope,
            "subject": self.subject,
            "issued_at": repr(self.issued_at),
            "ttl": str(self.ttl),
            "consumed": "1" if self.consumed else "0",
        }

    @staticmethod
    def from_mapping(code_hash: str, data: dict[str, str]) -> ChallengeRecord:
        return ChallengeRecord(
            code_hash=code_hash,
            client_id=data["client_id"],
            redirect_uri=data["redirect_uri"],
            code_challenge=data["code_challenge"],
            code_challenge_method=data["code_challenge_method"],
            scope=data.get("scope", ""),
            subject=data["subject"],
            issued_at=float(data["issued_at"]),
            ttl=int(data["ttl"]),
            consumed=data.get("consumed") == "1",
        )
