"""Health and readiness endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from reqguard.app_context import get_app_context

logger = structlog.get_logger()
router = APIRouter()


def _pipeline_ready() -> bool:
    from reqguard.main import get_pipeline

    return get_pipeline() is not None


@router.get("/health")
async def health():
    """Liveness check. Excluded from every pipeline stage by default."""
    return {"status": "healthy", "guard": "up"}


@router.get("/ready")
async def ready():
    """Readiness check. 200 once the pipeline is built and the worker pool accepts work."""
    pipeline_ok = _pipeline_ready()
    pool = get_app_context().worker_pool.status()
    pool_ok = not pool["shutdown"]

    if pipeline_ok and pool_ok:
        return {"status": "ready", "worker_pool": pool}

    logger.warning("readiness_check_failed", pipeline=pipeline_ok, worker_pool=pool_ok)
    return JSONResponse(
        status_code=503,
        content={
            "status": "not_ready",
            "pipeline": "up" if pipeline_ok else "down",
            "worker_pool": pool,
        },
    )
