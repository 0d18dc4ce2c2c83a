"""Health, readiness and metrics endpoints.

  /health  liveness.  Always 200; ``status`` says "ok" or "degraded" and
           ``checks`` reports each backing service.
  /ready   readiness.  503 when a configured database is unreachable.
           Redis is optional (cache and fanout degrade), so it never
           makes the instance unready.
  /metrics Prometheus text exposition.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from quiz_progress.db.engine import engine, ping_database
from quiz_progress.db.redis import redis_pool

router = APIRouter(tags=["health"])


async def _redis_check() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


async def _database_check() -> str:
    if engine is None:
        return "not_configured"
    return "ok" if await ping_database() else "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _database_check(),
        "redis": await _redis_check(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_check() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
