"""Health and readiness endpoints.

  /health (liveness): the process answers.  Reports Redis status but stays
    200 when degraded, so an orchestrator doesn't restart a live process.

  /ready (readiness): 503 when a configured Redis is unreachable.  With
    Redis configured the challenge store and refresh-token registry live
    there, so this instance can't serve /oauth/token without it.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from authserver.db.redis import redis_pool

router = APIRouter(tags=["health"])


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    redis_status = await _redis_status()
    return {
        "status": "degraded" if redis_status == "degraded" else "ok",
        "checks": {"redis": redis_status},
    }


@router.get("/ready")
async def ready() -> Response:
    if await _redis_status() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
