"""Per-identity request rate limiting for API routes."""

import structlog
from fastapi import Request, Response

from healthnexus.config import settings
from healthnexus.core.exceptions import RateLimitException
from healthnexus.core.monitoring import RATE_LIMIT_REJECTIONS
from healthnexus.core.redis_client import LocalSlidingWindow, RateLimiter, RateLimitResult
from healthnexus.core.security import identity_from_token
from healthnexus.dependencies import Cache

logger = structlog.get_logger(__name__)


def client_identity(request: Request) -> str:
    """Identify the caller by token subject, else by client address."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        identity = identity_from_token(token)
        if identity is not None:
            return f"user:{identity.id}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build the ``X-RateLimit-*`` headers for a decision."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.retry_after),
    }


class RateLimit:
    """
    Route dependency enforcing a request quota per caller.

    The in-process fallback window lives on the dependency so it survives
    across requests while Redis is unreachable.
    """

    def __init__(
        self,
        scope: str = "api",
        limit: int | None = None,
        window: int | None = None,
    ):
        """Initialize with a scope name and optional limit/window overrides."""
        self.scope = scope
        self.limit = limit or settings.rate_limit_max_requests
        self.window = window or settings.rate_limit_window_seconds
        self.local = LocalSlidingWindow(self.window, settings.rate_limit_max_identities)

    async def __call__(self, request: Request, response: Response, cache: Cache) -> RateLimitResult:
        """
        Count the request and reject it when over quota.

        Raises:
            RateLimitException: If the caller exceeded the limit
        """
        limiter = RateLimiter(
            cache,
            self.limit,
            self.window,
            scope=self.scope,
            local=self.local,
        )
        identity = client_identity(request)
        result = await limiter.hit(identity)
        headers = rate_limit_headers(result)

        if not result.allowed:
            RATE_LIMIT_REJECTIONS.labels(self.scope).inc()
            logger.warning(
                "rate_limit_exceeded",
                scope=self.scope,
                identity=identity,
                retry_after=result.retry_after,
            )
            raise RateLimitException(
                "Too many requests, please try again later",
                retry_after=result.retry_after,
                headers=headers,
            )

        response.headers.update(headers)
        return result
