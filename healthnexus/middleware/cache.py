"""
Response caching and cache invalidation for API routes.

Read endpoints wrap their loader in :meth:`ResponseCache.serve`; write
endpoints call :func:`schedule_invalidation` after a successful change so
the related keys are dropped once the response has been sent.
"""

import json
from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from uuid import UUID

import structlog
from fastapi import BackgroundTasks, Request, Response
from fastapi.encoders import jsonable_encoder

from healthnexus.config import settings
from healthnexus.core.monitoring import CACHE_LOOKUPS
from healthnexus.core.redis_client import CacheStore
from healthnexus.schemas.users import Identity

logger = structlog.get_logger(__name__)

CACHE_STATUS_HEADER = "X-Cache"
CACHE_KEY_HEADER = "X-Cache-Key"

APPOINTMENTS_PATH = f"{settings.api_v1_prefix}/appointments"

SERVICE_CACHE_PATTERNS = ("services:*", "appointments:*")


def render_json(payload: Any) -> str:
    """Serialize a payload exactly as the JSON responses of the API do."""
    return json.dumps(
        jsonable_encoder(payload),
        ensure_ascii=False,
        allow_nan=False,
        indent=None,
        separators=(",", ":"),
    )


class ResponseCache:
    """Read-through cache for JSON GET responses."""

    def __init__(self, namespace: str, ttl: int, per_user: bool = False):
        """
        Initialize response cache.

        Args:
            namespace: Entity type used in the key, e.g. ``services``
            ttl: Time to live of stored responses in seconds
            per_user: Partition entries by caller, for responses that depend
                on who is asking
        """
        self.namespace = namespace
        self.ttl = ttl
        self.per_user = per_user

    def build_key(
        self,
        cache: CacheStore,
        request: Request,
        identity: Identity | None = None,
    ) -> str:
        """Derive the cache key from method, path, caller and query params."""
        identifier = f"{request.method}:{request.url.path}"
        if self.per_user:
            identifier = f"{identity.id if identity else 'anonymous'}:{identifier}"
        return cache.generate_key(self.namespace, identifier, dict(request.query_params))

    def _response(self, body: str, status: str, key: str | None = None) -> Response:
        headers = {CACHE_STATUS_HEADER: status}
        if key is not None:
            headers[CACHE_KEY_HEADER] = key
            visibility = "private" if self.per_user else "public"
            headers["Cache-Control"] = f"{visibility}, max-age={self.ttl}"
        return Response(content=body, media_type="application/json", headers=headers)

    async def serve(
        self,
        cache: CacheStore,
        request: Request,
        loader: Callable[[], Awaitable[Any]],
        identity: Identity | None = None,
        headers: dict[str, str] | None = None,
    ) -> Response:
        """
        Return the cached body for this request, or load, store and return it.

        A hit returns the stored bytes unchanged and skips the loader. On a
        miss the loader runs; only if it returns is its result stored. The
        hit/miss marker travels in the ``X-Cache`` header so the body of a
        hit is identical to the miss that populated it.

        Args:
            cache: Cache store
            request: Incoming request
            loader: Coroutine factory producing the response payload
            identity: Caller, for per-user partitioning
            headers: Extra headers to attach

        Returns:
            JSON response with ``X-Cache`` set to HIT, MISS or BYPASS
        """
        if not cache.enabled:
            CACHE_LOOKUPS.labels(self.namespace, "bypass").inc()
            response = self._response(render_json(await loader()), "BYPASS")
        else:
            key = self.build_key(cache, request, identity)
            cached = await cache.get(key)

            if cached is not None:
                CACHE_LOOKUPS.labels(self.namespace, "hit").inc()
                logger.debug("cache_hit", key=key)
                response = self._response(cached, "HIT", key)
            else:
                CACHE_LOOKUPS.labels(self.namespace, "miss").inc()
                body = render_json(await loader())
                await cache.set(key, body, ttl=self.ttl)
                logger.debug("cache_miss", key=key, ttl=self.ttl)
                response = self._response(body, "MISS", key)

        if headers:
            response.headers.update(headers)
        return response


def appointment_cache_patterns(
    *user_ids: UUID | str,
    appointment_id: UUID | str | None = None,
) -> list[str]:
    """
    Build invalidation patterns for data affected by an appointment change.

    Patterns are relative to the cache environment, see
    :func:`invalidate_patterns`. Every caller's cached appointment lists are
    included because admins list appointments they are not a party to.

    Args:
        *user_ids: Patient and provider of the appointment
        appointment_id: Appointment whose detail entries must also go

    Returns:
        Glob patterns for :func:`invalidate_patterns`
    """
    patterns: list[str] = []
    for user_id in user_ids:
        patterns.append(f"appointments:{user_id}:*")
        patterns.append(f"user:{user_id}*")
    if appointment_id is not None:
        patterns.append(f"appointments:*:GET:{APPOINTMENTS_PATH}/{appointment_id}*")
    patterns.append(f"appointments:*:GET:{APPOINTMENTS_PATH}")
    patterns.append(f"appointments:*:GET:{APPOINTMENTS_PATH}:*")
    return patterns


async def invalidate_patterns(cache: CacheStore, patterns: Iterable[str]) -> int:
    """
    Delete every key of the cache environment matching any of the patterns.

    Patterns are anchored under ``{environment}:`` so they only reach
    response cache entries of the current deployment. Failures are logged
    and never raised; stale entries expire with their TTL.

    Returns:
        Number of keys deleted
    """
    scoped = [f"{cache.environment}:{pattern}" for pattern in patterns]
    deleted = 0
    for pattern in scoped:
        try:
            deleted += await cache.delete_pattern(pattern)
        except Exception as e:
            logger.warning("cache_invalidation_failed", pattern=pattern, error=str(e))

    logger.info("cache_invalidated", patterns=scoped, deleted=deleted)
    return deleted



def schedule_invalidation(
    background_tasks: BackgroundTasks,
    cache: CacheStore,
    patterns: Iterable[str],
) -> None:
    """Invalidate patterns after the response has been sent."""
    background_tasks.add_task(invalidate_patterns, cache, list(patterns))
