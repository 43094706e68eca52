"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from healthnexus.api.v1.router import api_router
from healthnexus.config import settings
from healthnexus.core.monitoring import HealthChecker, disk_space_check, health_checker
from healthnexus.core.redis_client import close_redis_connection
from healthnexus.database import engine
from healthnexus.dependencies import get_cache_store
from healthnexus.middleware.error_handler import register_exception_handlers
from healthnexus.middleware.logging import LoggingMiddleware, configure_logging
from healthnexus.services.db_optimizer import DatabaseOptimizer

# Configure logging
configure_logging()
logger = structlog.get_logger()


async def check_database() -> dict[str, Any]:
    """Health check: database answers a trivial query."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return {"pool": engine.pool.status()}


async def check_redis() -> dict[str, Any]:
    """Health check: cache round-trips a probe key."""
    if not await get_cache_store().health_check():
        raise RuntimeError("Redis probe failed")
    return {}


def register_health_checks(checker: HealthChecker) -> None:
    """Register the standard checks; only the database is critical."""
    checker.register(
        "database",
        check_database,
        timeout=settings.health_check_database_timeout,
        critical=True,
    )
    checker.register("redis", check_redis, timeout=settings.health_check_redis_timeout)
    checker.register(
        "disk",
        disk_space_check(min_free_ratio=settings.health_check_min_free_disk_ratio),
        timeout=1.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Probe dependencies, prepare indexes, then release pools on shutdown.

    Startup never fails on an unreachable dependency; the outcome is
    logged and surfaces through ``/health`` until it recovers.
    """
    logger.info("application_startup", environment=settings.environment)

    register_health_checks(health_checker)
    startup = await health_checker.run_all()
    for check in startup["checks"]:
        if check["status"] != "healthy":
            logger.warning("startup_check_failed", check=check["name"], error=check.get("error"))

    optimizer = DatabaseOptimizer(engine)
    optimizer.enable_slow_query_logging()
    if settings.ensure_indexes_on_startup:
        try:
            await optimizer.ensure_indexes()
        except (SQLAlchemyError, OSError) as e:
            logger.error("index_setup_failed", error=str(e))

    yield

    await engine.dispose()
    await close_redis_connection()
    logger.info("application_shutdown")



# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Healthcare service marketplace API: catalog, bookings and appointment lifecycle",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-Cache",
        "X-Request-ID",
        "Retry-After",
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
    ],
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

register_exception_handlers(app)

# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)

# Setup Prometheus instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/docs", "/redoc", "/openapi.json", "/metrics"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "healthnexus.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
