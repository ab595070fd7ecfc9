from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from authserver.api.auth import router as auth_router
from authserver.api.health import router as health_router
from authserver.api.metrics_endpoint import router as metrics_router
from authserver.api.oauth import router as oauth_router
from authserver.api.resource import router as resource_router
from authserver.core.config import SETTINGS
from authserver.core.errors import (
    OAuthError,
    oauth_error_handler,
    validation_error_handler,
)
from authserver.core.logging import setup_logging
from authserver.db.redis import lifespan_redis
from authserver.middleware.metrics import MetricsMiddleware
from authserver.middleware.request_context import RequestContextMiddleware
from authserver.repos.challenge_store import challenge_store
from authserver.services.challenge_sweeper import lifespan_sweeper

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order: the sweeper stops before
    # the Redis pool it may be using is closed.
    async with lifespan_redis():
        async with lifespan_sweeper(
            challenge_store, SETTINGS.challenge_sweep_interval_sec
        ):
            yield


app = FastAPI(
    title="pkce-auth",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_exception_handler(OAuthError, oauth_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(oauth_router)
app.include_router(resource_router)

logger.info(
    "pkce-auth started  env=%s log_level=%s port=%d clients=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    ",".join(sorted(SETTINGS.registered_clients)),
    "on" if SETTINGS.is_dev else "off",
)
