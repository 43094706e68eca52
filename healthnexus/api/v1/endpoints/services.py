"""Healthcare service catalog endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status

from healthnexus.config import settings
from healthnexus.core.redis_client import RateLimitResult
from healthnexus.dependencies import (
    AdminIdentity,
    Appointments,
    Cache,
    CurrentIdentity,
    DatabaseSession,
)
from healthnexus.middleware.cache import (
    SERVICE_CACHE_PATTERNS,
    ResponseCache,
    appointment_cache_patterns,
    schedule_invalidation,
)
from healthnexus.middleware.rate_limit import RateLimit, rate_limit_headers
from healthnexus.schemas.appointments import AppointmentResponse, ServiceBooking
from healthnexus.schemas.catalog import (
    CategorySummary,
    ServiceCategory,
    ServiceCreate,
    ServiceFilters,
    ServiceListResponse,
    ServiceResponse,
    ServiceSortField,
    ServiceUpdate,
)
from healthnexus.services.catalog_service import CatalogService

services_rate_limit = RateLimit(scope="services")

router = APIRouter(dependencies=[Depends(services_rate_limit)])

service_cache = ResponseCache("services", ttl=settings.cache_ttl_services)

RateLimitState = Annotated[RateLimitResult, Depends(services_rate_limit)]


@router.get(
    "",
    response_model=ServiceListResponse,
    status_code=status.HTTP_200_OK,
    summary="List services",
)
async def list_services(
    request: Request,
    db: DatabaseSession,
    cache: Cache,
    rate: RateLimitState,
    category: ServiceCategory | None = Query(None),
    search: str | None = Query(None, min_length=1, max_length=100),
    min_price: float | None = Query(None, ge=0),
    max_price: float | None = Query(None, ge=0),
    min_rating: float | None = Query(None, ge=0, le=5),
    popular: bool | None = Query(None),
    sort_by: ServiceSortField = Query(ServiceSortField.CREATED_AT),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
) -> Response:
    """
    List active services with filtering, sorting and pagination.

    Responses are shared between callers and cached for five minutes.
    """
    filters = ServiceFilters(
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        min_rating=min_rating,
        popular=popular,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return await service_cache.serve(
        cache,
        request,
        lambda: CatalogService(db).list_services(filters),
        headers=rate_limit_headers(rate),
    )


@router.get(
    "/categories",
    response_model=list[CategorySummary],
    status_code=status.HTTP_200_OK,
    summary="List service categories",
)
async def list_categories(
    request: Request,
    db: DatabaseSession,
    cache: Cache,
    rate: RateLimitState,
) -> Response:
    """List categories with their active service counts."""
    return await service_cache.serve(
        cache,
        request,
        lambda: CatalogService(db).get_categories(),
        headers=rate_limit_headers(rate),
    )


@router.get(
    "/{service_id}",
    response_model=ServiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get service by ID",
)
async def get_service(
    service_id: UUID,
    request: Request,
    db: DatabaseSession,
    cache: Cache,
    rate: RateLimitState,
) -> Response:
    """Get an active service."""
    return await service_cache.serve(
        cache,
        request,
        lambda: CatalogService(db).get_service(service_id),
        headers=rate_limit_headers(rate),
    )


@router.post(
    "",
    response_model=ServiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create service",
)
async def create_service(
    data: ServiceCreate,
    admin: AdminIdentity,
    db: DatabaseSession,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> ServiceResponse:
    """Add a service to the catalog (admin only)."""
    service = await CatalogService(db).create_service(data)
    schedule_invalidation(background_tasks, cache, SERVICE_CACHE_PATTERNS)
    return service


@router.patch(
    "/{service_id}",
    response_model=ServiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Update service",
)
async def update_service(
    service_id: UUID,
    data: ServiceUpdate,
    admin: AdminIdentity,
    db: DatabaseSession,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> ServiceResponse:
    """Update a catalog service (admin only)."""
    service = await CatalogService(db).update_service(service_id, data)
    schedule_invalidation(background_tasks, cache, SERVICE_CACHE_PATTERNS)
    return service


@router.delete(
    "/{service_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate service",
)
async def deactivate_service(
    service_id: UUID,
    admin: AdminIdentity,
    db: DatabaseSession,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> None:
    """Deactivate a service; it disappears from the catalog but stays referenced."""
    await CatalogService(db).deactivate_service(service_id)
    schedule_invalidation(background_tasks, cache, SERVICE_CACHE_PATTERNS)


@router.post(
    "/{service_id}/book",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book service",
)
async def book_service(
    service_id: UUID,
    data: ServiceBooking,
    identity: CurrentIdentity,
    appointments: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Book an appointment for a catalog service at its listed price."""
    appointment = await appointments.book_service(identity, service_id, data)
    schedule_invalidation(
        background_tasks,
        cache,
        appointment_cache_patterns(appointment.patient_id, appointment.provider_id),
    )
    return appointment
