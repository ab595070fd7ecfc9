from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class User:
    """A resource owner who can sign in and approve authorization requests."""

    id: UUID
    username: str
    password_hash: str
    is_active: bool = True

    @property
    def subject(self) -> str:
        """The ``sub`` carried by authorization codes and tokens."""
        return str(self.id)

    @staticmethod
    def new(*, username: str, password_hash: str) -> User:
        return User(
            id=uuid4(),
            username=username,
            password_hash=password_hash,
            is_active=True,
        )
