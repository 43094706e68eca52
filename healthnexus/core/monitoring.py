"""Health checks and application metrics."""

import asyncio
import shutil
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from prometheus_client import Counter

logger = structlog.get_logger(__name__)

CACHE_LOOKUPS = Counter(
    "healthnexus_cache_lookups_total",
    "Response cache lookups by namespace and result",
    ["namespace", "result"],
)

RATE_LIMIT_REJECTIONS = Counter(
    "healthnexus_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["scope"],
)

HealthCheckFunc = Callable[[], Awaitable[dict[str, Any] | None]]


@dataclass
class RegisteredCheck:
    """A named health check and its execution policy."""

    check: HealthCheckFunc
    timeout: float = 5.0
    critical: bool = False


@dataclass
class HealthChecker:
    """
    Registry of health checks run with per-check timeouts.

    A check passes by returning (optionally with a details dict) and fails by
    raising or by exceeding its timeout. The overall status is ``unhealthy``
    only when a critical check fails.
    """

    checks: dict[str, RegisteredCheck] = field(default_factory=dict)
    history: deque[dict[str, Any]] = field(default_factory=lambda: deque(maxlen=50))

    def register(
        self,
        name: str,
        check: HealthCheckFunc,
        timeout: float = 5.0,
        critical: bool = False,
    ) -> None:
        """Register (or replace) a health check."""
        self.checks[name] = RegisteredCheck(check=check, timeout=timeout, critical=critical)

    async def run_check(self, name: str) -> dict[str, Any]:
        """
        Run a single health check.

        Args:
            name: Registered check name

        Returns:
            Result dict with status, duration and details or error

        Raises:
            KeyError: If no check is registered under ``name``
        """
        config = self.checks[name]
        start = time.perf_counter()

        try:
            details = await asyncio.wait_for(config.check(), timeout=config.timeout)
            result: dict[str, Any] = {
                "name": name,
                "status": "healthy",
                "details": details or {},
            }
        except TimeoutError:
            result = {
                "name": name,
                "status": "unhealthy",
                "error": "Health check timeout",
                "critical": config.critical,
            }
        except Exception as e:
            result = {
                "name": name,
                "status": "unhealthy",
                "error": str(e),
                "critical": config.critical,
            }

        result["duration_ms"] = round((time.perf_counter() - start) * 1000, 2)
        result["timestamp"] = datetime.now(UTC).isoformat()
        return result

    async def run_all(self) -> dict[str, Any]:
        """Run every registered check concurrently and summarize."""
        results = await asyncio.gather(*(self.run_check(name) for name in self.checks))

        critical_failures = [
            r for r in results if r["status"] != "healthy" and self.checks[r["name"]].critical
        ]

        summary = {
            "status": "unhealthy" if critical_failures else "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": list(results),
            "summary": {
                "total": len(results),
                "healthy": sum(1 for r in results if r["status"] == "healthy"),
                "unhealthy": sum(1 for r in results if r["status"] != "healthy"),
            },
        }

        logger.info(
            "health_check_completed",
            status=summary["status"],
            **summary["summary"],
        )
        self.history.append({"status": summary["status"], "timestamp": summary["timestamp"]})
        return summary


def disk_space_check(path: str = ".", min_free_ratio: float = 0.05) -> HealthCheckFunc:
    """Build a check that fails when free disk space drops below a ratio."""

    async def check() -> dict[str, Any]:
        usage = shutil.disk_usage(path)
        free_ratio = usage.free / usage.total if usage.total else 0.0
        if free_ratio < min_free_ratio:
            raise RuntimeError(f"Low disk space: {free_ratio:.1%} free")
        return {
            "free_mb": usage.free // (1024 * 1024),
            "free_ratio": round(free_ratio, 4),
        }

    return check


# Process-wide checker, populated at startup
health_checker = HealthChecker()


def get_health_checker() -> HealthChecker:
    """Dependency returning the process-wide health checker."""
    return health_checker
