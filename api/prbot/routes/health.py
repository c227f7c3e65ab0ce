import os
import time

import psutil  # type: ignore[import-untyped]
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint that reports system resources and the state of the
    identity store and PR tracking cache.

    Returns "degraded" when either store is unreachable; webhooks are still
    acknowledged in that state, but reconciliation will log failures.
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()

    identity = getattr(request.app.state, "identity", None)
    cache = getattr(request.app.state, "pr_cache", None)

    identity_status = "unavailable"
    if identity is not None:
        identity_status = "healthy" if identity.is_healthy() else "unhealthy"

    cache_status = "unavailable"
    if cache is not None:
        cache_status = "healthy" if await cache.is_healthy() else "unhealthy"

    overall_status = (
        "healthy"
        if identity_status == "healthy" and cache_status == "healthy"
        else "degraded"
    )

    # BUILD_ID is injected at image build time (build-{git-hash})
    build_id = os.getenv("BUILD_ID", "unknown")

    return {
        "status": overall_status,
        "timestamp": int(time.time()),
        "build_id": build_id,
        "system": {
            "cpu_percent": cpu_percent,
            "memory_percent": memory.percent,
        },
        "services": {"identity": identity_status, "pr_cache": cache_status},
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness probe: ready once the reconciliation engine is wired up.
    """
    ready = getattr(request.app.state, "engine", None) is not None
    return {"status": "ready" if ready else "initializing"}


@router.get("/health/live")
async def liveness_check():
    """
    Liveness probe that checks if the service is running.
    """
    return {"status": "alive"}
