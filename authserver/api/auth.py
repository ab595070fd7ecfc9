"""Resource-owner accounts: /auth/register, /auth/login, /auth/logout.

Login sets the HttpOnly session cookie that /oauth/authorize reads to
learn who is approving the request.  No OAuth tokens are issued here;
those only come out of /oauth/token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel

from authserver.api.dependencies import SESSION_COOKIE
from authserver.core.config import SETTINGS
from authserver.models.user import User
from authserver.repos.user_repo import user_repo
from authserver.services import auth_service, token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8

# Development account, seeded outside prod.
DEMO_USERNAME = "demo-user"
DEMO_PASSWORD = "demo-password"


def _seed_demo_user() -> None:
    if user_repo.get_by_username(DEMO_USERNAME) is not None:
        return
    user_repo.add(
        User.new(
            username=DEMO_USERNAME,
            password_hash=auth_service.hash_password(DEMO_PASSWORD),
        )
    )


if not SETTINGS.is_prod:
    _seed_demo_user()


# --- Request / Response schemas -------------------------------------------


class Credentials(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    username: str


# --- POST /auth/register --------------------------------------------------


@router.post(
    "/register", response_model=UserOut, status_code=status.HTTP_201_CREATED
)
def register(payload: Credentials) -> UserOut:
    username = payload.username.strip()
    if not username:
        raise HTTPException(
            status_code=422,
            detail={"message": "Username is required"},
        )
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=422,
            detail={
                "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            },
        )

    user = User.new(
        username=username,
        password_hash=auth_service.hash_password(payload.password),
    )
    try:
        user_repo.add(user)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Username already taken"},
        ) from None

    logger.info("User registered  user_id=%s username=%s", user.id, username)
    return UserOut(id=str(user.id), username=user.username)


# --- POST /auth/login -----------------------------------------------------


@router.post("/login", response_model=UserOut)
def login(payload: Credentials, response: Response) -> UserOut:
    username = payload.username.strip()
    user = auth_service.authenticate_user(user_repo, username, payload.password)
    if user is None:
        # Same answer for unknown user and wrong password.
        logger.warning("Login failed  username=%s", username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid username or password"},
        )

    response.set_cookie(
        key=SESSION_COOKIE,
        value=token_service.create_session_token(sub=user.subject),
        httponly=True,
        samesite="lax",
        secure=SETTINGS.is_prod,
        path="/",
        max_age=SETTINGS.session_ttl_min * 60,
    )
    logger.info("Login succeeded  user_id=%s username=%s", user.id, username)
    return UserOut(id=str(user.id), username=user.username)


# --- POST /auth/logout ----------------------------------------------------


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE, path="/")
