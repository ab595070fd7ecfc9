from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from authserver.models.user import User


class UserRepo(Protocol):
    def get_by_id(self, user_id: UUID) -> User | None: ...
    def get_by_username(self, username: str) -> User | None: ...
    def add(self, user: User) -> None: ...
    def set_active(self, user_id: UUID, is_active: bool) -> None: ...
    def update_password_hash(self, user_id: UUID, password_hash: str) -> None: ...


class InMemoryUserRepo:
    def __init__(self) -> None:
        self._by_username: dict[str, User] = {}
        self._by_id: dict[UUID, User] = {}
        self._lock = threading.Lock()

    def get_by_id(self, user_id: UUID) -> User | None:
        return self._by_id.get(user_id)

    def get_by_username(self, username: str) -> User | None:
        return self._by_username.get(username)

    def add(self, user: User) -> None:
        # Check-and-insert under the lock: two registrations racing for one
        # username must not both succeed.
        with self._lock:
            if user.username in self._by_username:
                raise ValueError("username already exists")
            self._by_username[user.username] = user
            self._by_id[user.id] = user

    def set_active(self, user_id: UUID, is_active: bool) -> None:
        self._replace(user_id, is_active=is_active)

    def update_password_hash(self, user_id: UUID, password_hash: str) -> None:
        self._replace(user_id, password_hash=password_hash)

    def _replace(self, user_id: UUID, **changes: object) -> None:
        with self._lock:
            u = self._by_id.get(user_id)
            if u is None:
                raise KeyError("user not found")
            updated = replace(u, **changes)  # type: ignore[arg-type]
            self._by_id[user_id] = updated
            self._by_username[updated.username] = updated

    def clear(self) -> None:
        with self._lock:
            self._by_username.clear()
            self._by_id.clear()


# Module-level singleton, same pattern as client_repo.
user_repo = InMemoryUserRepo()
