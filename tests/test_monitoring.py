"""Tests for health checks."""

import asyncio

import pytest

from healthnexus.core.monitoring import HealthChecker, disk_space_check


async def healthy():
    return {"latency_ms": 1}


async def failing():
    raise RuntimeError("connection refused")


async def slow():
    await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_all_checks_healthy():
    checker = HealthChecker()
    checker.register("database", healthy, critical=True)
    checker.register("redis", healthy)

    result = await checker.run_all()

    assert result["status"] == "healthy"
    assert result["summary"] == {"total": 2, "healthy": 2, "unhealthy": 0}
    assert result["checks"][0]["details"] == {"latency_ms": 1}


@pytest.mark.asyncio
async def test_timeout_marks_check_unhealthy():
    checker = HealthChecker()
    checker.register("database", slow, timeout=0.01, critical=True)

    result = await checker.run_check("database")

    assert result["status"] == "unhealthy"
    assert result["error"] == "Health check timeout"
    assert result["critical"] is True


@pytest.mark.asyncio
async def test_non_critical_failure_keeps_overall_healthy():
    checker = HealthChecker()
    checker.register("database", healthy, critical=True)
    checker.register("redis", failing)

    result = await checker.run_all()

    assert result["status"] == "healthy"
    assert result["summary"]["unhealthy"] == 1


@pytest.mark.asyncio
async def test_critical_failure_makes_overall_unhealthy():
    checker = HealthChecker()
    checker.register("database", failing, critical=True)
    checker.register("redis", healthy)

    result = await checker.run_all()

    assert result["status"] == "unhealthy"
    assert checker.history[-1]["status"] == "unhealthy"
    database = next(check for check in result["checks"] if check["name"] == "database")
    assert database["error"] == "connection refused"


@pytest.mark.asyncio
async def test_disk_space_check(tmp_path):
    assert "free_mb" in await disk_space_check(str(tmp_path), min_free_ratio=0.0)()

    with pytest.raises(RuntimeError):
        await disk_space_check(str(tmp_path), min_free_ratio=1.01)()
