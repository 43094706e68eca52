"""Health check and maintenance endpoints."""

import platform
import time
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse

from healthnexus.config import settings
from healthnexus.core.monitoring import HealthChecker, get_health_checker
from healthnexus.dependencies import AdminIdentity, Cache
from healthnexus.middleware.cache import SERVICE_CACHE_PATTERNS, schedule_invalidation
from healthnexus.schemas.health import CleanupRequest, HealthResponse, HealthSummary, IndexReport
from healthnexus.services.db_optimizer import DatabaseOptimizer, get_db_optimizer

router = APIRouter()

STARTED_AT = time.monotonic()

Checker = Annotated[HealthChecker, Depends(get_health_checker)]
Optimizer = Annotated[DatabaseOptimizer, Depends(get_db_optimizer)]


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}


@router.get(
    "/health",
    response_model=HealthSummary,
    responses={503: {"model": HealthSummary}},
    summary="Run health checks",
)
async def health_check(checker: Checker) -> JSONResponse:
    """
    Run every registered health check.

    Returns:
        200 when all critical checks pass, 503 otherwise
    """
    result = await checker.run_all()
    code = (
        status.HTTP_200_OK
        if result["status"] == "healthy"
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=code, content=result)


@router.get(
    "/health/info",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Application info",
)
async def health_info() -> HealthResponse:
    """Basic liveness with version and environment."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    status_code=status.HTTP_200_OK,
    summary="Detailed health report",
)
async def detailed_health(
    admin: AdminIdentity,
    checker: Checker,
    optimizer: Optimizer,
    cache: Cache,
) -> dict[str, Any]:
    """Health checks, cache and database statistics and process info (admin only)."""
    return {
        "timestamp": _timestamp(),
        "health": await checker.run_all(),
        "history": list(checker.history),
        "cache": await cache.stats(),
        "database": await optimizer.collection_stats(),
        "system": {
            "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        },
    }


@router.get(
    "/health/database",
    status_code=status.HTTP_200_OK,
    summary="Database statistics",
)
async def database_stats(admin: AdminIdentity, optimizer: Optimizer) -> dict[str, Any]:
    """Database health and per-table statistics (admin only)."""
    return {
        "timestamp": _timestamp(),
        "health": await optimizer.health_check(),
        "tables": await optimizer.collection_stats(),
    }


@router.post(
    "/health/database/indexes",
    response_model=IndexReport,
    status_code=status.HTTP_200_OK,
    summary="Ensure database indexes",
)
async def ensure_indexes(admin: AdminIdentity, optimizer: Optimizer) -> IndexReport:
    """Create any missing secondary indexes (admin only)."""
    return IndexReport(**await optimizer.ensure_indexes())


@router.post(
    "/health/database/optimize",
    status_code=status.HTTP_200_OK,
    summary="Optimize database",
)
async def optimize_database(admin: AdminIdentity, optimizer: Optimizer) -> dict[str, Any]:
    """Ensure indexes, then vacuum and analyze every table (admin only)."""
    indexes = await optimizer.ensure_indexes()
    compaction = await optimizer.compact()
    return {
        "success": True,
        "message": "Database optimization completed",
        "results": {"indexes": indexes, "compaction": compaction},
        "timestamp": _timestamp(),
    }


@router.post(
    "/health/database/cleanup",
    status_code=status.HTTP_200_OK,
    summary="Purge retired services",
)
async def cleanup_database(
    admin: AdminIdentity,
    optimizer: Optimizer,
    cache: Cache,
    background_tasks: BackgroundTasks,
    data: CleanupRequest | None = None,
) -> dict[str, Any]:
    """Delete deactivated services past retention; appointments are kept (admin only)."""
    days = data.days_to_keep if data else settings.cleanup_days_to_keep
    results = await optimizer.cleanup(days)
    if results["services_deleted"]:
        schedule_invalidation(background_tasks, cache, SERVICE_CACHE_PATTERNS)
    return {
        "success": True,
        "message": "Database cleanup completed",
        "results": results,
        "timestamp": _timestamp(),
    }


@router.get(
    "/health/cache",
    status_code=status.HTTP_200_OK,
    summary="Cache statistics",
)
async def cache_stats(admin: AdminIdentity, cache: Cache) -> dict[str, Any]:
    """Key counts per entity type and probe result (admin only)."""
    return {"timestamp": _timestamp(), "cache": await cache.stats()}


@router.post(
    "/health/cache/clear",
    status_code=status.HTTP_200_OK,
    summary="Clear cache",
)
async def clear_cache(admin: AdminIdentity, cache: Cache) -> dict[str, Any]:
    """Delete every cached entry of this environment (admin only)."""
    deleted = await cache.clear()
    return {
        "success": True,
        "message": "Cache cleared",
        "deleted": deleted,
        "timestamp": _timestamp(),
    }
