from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from authserver.api.dependencies import require_access_token
from authserver.models.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["resource"])


class ProfileOut(BaseModel):
    subject: str
    client_id: str
    message: str


@router.get("/resource/me", response_model=ProfileOut)
def get_my_profile(
    principal: Annotated[Principal, Depends(require_access_token)],
) -> ProfileOut:
    """Protected endpoint — the API the client's request interceptor calls."""
    logger.info("Resource accessed  subject=%s", principal.subject)
    return ProfileOut(
        subject=principal.subject,
        client_id=principal.client_id,
        message=f"Hello {principal.subject}, you have a valid token.",
    )
