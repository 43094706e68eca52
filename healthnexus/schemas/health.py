"""Health and maintenance schemas."""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Application info response model."""

    status: str
    version: str
    environment: str


class CheckResult(BaseModel):
    """Outcome of a single health check."""

    name: str
    status: str
    duration_ms: float
    timestamp: str
    details: dict[str, Any] | None = None
    error: str | None = None
    critical: bool | None = None


class HealthSummary(BaseModel):
    """Aggregated health of every registered check."""

    status: str
    timestamp: str
    checks: list[CheckResult]
    summary: dict[str, int]


class CleanupRequest(BaseModel):
    """Retention cleanup parameters."""

    days_to_keep: int = Field(default=90, ge=1, le=3650)


class IndexReport(BaseModel):
    """Result of ensuring database indexes."""

    created: list[str]
    skipped: list[str]
