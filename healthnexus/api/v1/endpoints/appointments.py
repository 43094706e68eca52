"""Appointment endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status

from healthnexus.config import settings
from healthnexus.core.redis_client import RateLimitResult
from healthnexus.dependencies import Appointments, Cache, CurrentIdentity
from healthnexus.middleware.cache import (
    ResponseCache,
    appointment_cache_patterns,
    schedule_invalidation,
)
from healthnexus.middleware.rate_limit import RateLimit, rate_limit_headers
from healthnexus.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentPriority,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AppointmentType,
    AppointmentUpdate,
    ConsultationUpdate,
    NoteCreate,
    RatingCreate,
    ReminderCreate,
)

appointments_rate_limit = RateLimit(scope="appointments")

router = APIRouter(dependencies=[Depends(appointments_rate_limit)])

appointment_cache = ResponseCache(
    "appointments",
    ttl=settings.cache_ttl_appointments,
    per_user=True,
)

RateLimitState = Annotated[RateLimitResult, Depends(appointments_rate_limit)]


def _invalidate(
    background_tasks: BackgroundTasks,
    cache: Cache,
    appointment: AppointmentResponse,
) -> None:
    schedule_invalidation(
        background_tasks,
        cache,
        appointment_cache_patterns(
            appointment.patient_id,
            appointment.provider_id,
            appointment_id=appointment.id,
        ),
    )


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """
    Book a new appointment for the authenticated patient.

    When a payment reference is supplied and the gateway confirms it, the
    booking is confirmed straight away; otherwise it stays scheduled.
    """
    appointment = await service.create_appointment(identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.get(
    "",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    request: Request,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    rate: RateLimitState,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    appointment_type: AppointmentType | None = Query(None),
    priority: AppointmentPriority | None = Query(None),
    patient_id: UUID | None = Query(None),
    provider_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    include_related: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> Response:
    """
    List appointments visible to the caller with filtering.

    Args:
        request: Incoming request
        identity: Authenticated caller
        service: Appointment service
        cache: Response cache store
        rate: Rate limit decision for this request
        status_filter: Filter by status
        appointment_type: Filter by appointment type
        priority: Filter by priority
        patient_id: Filter by patient (providers and admins)
        provider_id: Filter by provider
        from_date: Earliest appointment time
        to_date: Latest appointment time
        include_related: Attach patient and provider summaries
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        appointment_type=appointment_type,
        priority=priority,
        patient_id=patient_id,
        provider_id=provider_id,
        from_date=from_date,
        to_date=to_date,
        include_related=include_related,
        page=page,
        page_size=page_size,
    )

    return await appointment_cache.serve(
        cache,
        request,
        lambda: service.list_appointments(identity, filters),
        identity=identity,
        headers=rate_limit_headers(rate),
    )


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    request: Request,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    rate: RateLimitState,
    include_related: bool = Query(False),
) -> Response:
    """Get a specific appointment the caller is a party to."""
    return await appointment_cache.serve(
        cache,
        request,
        lambda: service.get_appointment(appointment_id, identity, include_related),
        identity=identity,
        headers=rate_limit_headers(rate),
    )


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment details",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Update appointment details; cost totals are recomputed."""
    appointment = await service.update_appointment(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """
    Move an appointment through its lifecycle (confirm, start, complete, no-show).

    Raises:
        IllegalTransitionException: 409 if the transition is not allowed
    """
    appointment = await service.update_status(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """
    Cancel an appointment.

    Patients and providers must cancel at least 24 hours in advance.
    """
    appointment = await service.cancel_appointment(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """
    Move an appointment to a new time.

    Patients and providers must reschedule at least 2 hours in advance.
    """
    appointment = await service.reschedule_appointment(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/notes",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add note",
)
async def add_note(
    appointment_id: UUID,
    data: NoteCreate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Append a note to an appointment."""
    appointment = await service.add_note(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.put(
    "/{appointment_id}/consultation",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Record consultation",
)
async def update_consultation(
    appointment_id: UUID,
    data: ConsultationUpdate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Record clinical details of the visit."""
    appointment = await service.update_consultation(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/reminders",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record reminder attempt",
)
async def record_reminder(
    appointment_id: UUID,
    data: ReminderCreate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Record the outcome of a reminder sent for an appointment."""
    appointment = await service.record_reminder(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/rate",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Rate appointment",
)
async def rate_appointment(
    appointment_id: UUID,
    data: RatingCreate,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Rate a completed appointment."""
    appointment = await service.rate_appointment(appointment_id, identity, data)
    _invalidate(background_tasks, cache, appointment)
    return appointment


@router.post(
    "/{appointment_id}/payment/verify",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Retry payment verification",
)
async def verify_payment(
    appointment_id: UUID,
    identity: CurrentIdentity,
    service: Appointments,
    cache: Cache,
    background_tasks: BackgroundTasks,
) -> AppointmentResponse:
    """Re-check a pending payment and confirm the booking once paid."""
    appointment = await service.verify_payment(appointment_id, identity)
    _invalidate(background_tasks, cache, appointment)
    return appointment
