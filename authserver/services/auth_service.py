"""Password hashing and resource-owner authentication (Argon2)."""

from __future__ import annotations

import logging
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from authserver.models.user import User
from authserver.repos.user_repo import UserRepo

logger = logging.getLogger(__name__)

# Argon2 hash strings encode parameters + salt.
_ph = PasswordHasher()

# Verified against when the username is unknown, so a miss costs one full
# Argon2 verify just like a wrong password and response timing doesn't
# reveal which usernames exist.
_DUMMY_HASH = _ph.hash(secrets.token_urlsafe(16))


def hash_password(plain_password: str) -> str:
    if not plain_password:
        raise ValueError("password must be non-empty")
    return _ph.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return _ph.verify(password_hash, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def authenticate_user(repo: UserRepo, username: str, password: str) -> User | None:
    user = repo.get_by_username(username)
    password_ok = verify_password(
        password, user.password_hash if user is not None else _DUMMY_HASH
    )
    if user is None or not password_ok or not user.is_active:
        return None

    # Upgrade the stored hash if the hasher's parameters changed since.
    if _ph.check_needs_rehash(user.password_hash):
        repo.update_password_hash(user.id, _ph.hash(password))
        logger.info("Rehashed password for user=%s", user.id)
    return user
