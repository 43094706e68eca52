"""Appointment service for business logic and persistence."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, func, insert, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from healthnexus.core.exceptions import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
)
from healthnexus.models.appointments import appointments
from healthnexus.models.services import healthcare_services
from healthnexus.models.users import users
from healthnexus.schemas.appointments import (
    Appointment,
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AppointmentUpdate,
    ConsultationUpdate,
    Cost,
    CostInput,
    NoteCreate,
    PaymentStatus,
    RatingCreate,
    ReminderCreate,
    ServiceBooking,
)
from healthnexus.schemas.users import ActorRole, Identity, UserRole, UserSummary
from healthnexus.services import appointment_lifecycle as lifecycle
from healthnexus.services.notification_service import NotificationService
from healthnexus.services.payment_gateway import PaymentGateway, PaymentGatewayUnavailable

logger = structlog.get_logger(__name__)

# Columns stored as JSONB and serialized in JSON mode
JSONB_FIELDS = frozenset(
    {
        "symptoms",
        "location",
        "cost",
        "consultation",
        "communication",
        "ratings",
        "cancellation_details",
        "reschedule_history",
        "notes",
    }
)

ENUM_FIELDS = ("appointment_type", "status", "priority", "source", "payment_status")

# Detail fields patients may change themselves
PATIENT_EDITABLE_FIELDS = frozenset({"reason_for_visit", "symptoms", "location"})


def _to_row(appointment: Appointment) -> dict[str, Any]:
    """Flatten an appointment into column values."""
    row = appointment.model_dump(
        exclude=set(JSONB_FIELDS) | {"created_at", "updated_at", "version"},
    )
    for name in ENUM_FIELDS:
        row[name] = row[name].value
    row.update(appointment.model_dump(include=set(JSONB_FIELDS), mode="json"))
    return row


def _from_row(row: Any) -> Appointment:
    return Appointment.model_validate(dict(row._mapping))


class AppointmentService:
    """Service for managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        payments: PaymentGateway | None = None,
        notifier: NotificationService | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.payments = payments or PaymentGateway()
        self.notifier = notifier or NotificationService()

    # Loading and access

    async def _load(self, appointment_id: UUID) -> Appointment:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return _from_row(row)

    @staticmethod
    def _check_access(appointment: Appointment, identity: Identity) -> None:
        """
        Ensure the caller is a party to the appointment.

        Raises:
            ForbiddenException: If caller is neither party nor an admin
        """
        if identity.is_admin:
            return
        if identity.id not in (appointment.patient_id, appointment.provider_id):
            raise ForbiddenException("Access denied to this appointment")

    async def _load_for(self, appointment_id: UUID, identity: Identity) -> Appointment:
        appointment = await self._load(appointment_id)
        self._check_access(appointment, identity)
        return appointment

    async def _load_users(self, user_ids: set[UUID]) -> dict[UUID, UserSummary]:
        if not user_ids:
            return {}
        result = await self.db.execute(select(users).where(users.c.id.in_(user_ids)))
        return {row.id: UserSummary.model_validate(dict(row._mapping)) for row in result}

    def _to_response(
        self,
        appointment: Appointment,
        identity: Identity,
        related: dict[UUID, UserSummary] | None = None,
    ) -> AppointmentResponse:
        data = appointment.model_dump()
        if identity.role == UserRole.PATIENT:
            data["notes"] = [note for note in data["notes"] if not note["is_private"]]
        if related is not None:
            data["patient"] = related.get(appointment.patient_id)
            data["provider"] = related.get(appointment.provider_id)
        return AppointmentResponse.model_validate(data)

    async def _save(self, original: Appointment, updated: Appointment) -> Appointment:
        """
        Persist an updated appointment if nobody else changed it meanwhile.

        Raises:
            ConflictException: If the stored version no longer matches
        """
        values = _to_row(updated)
        values.pop("id")
        values["version"] = original.version + 1
        values["updated_at"] = datetime.now(UTC)

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == original.id,
                    appointments.c.version == original.version,
                )
            )
            .values(**values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()

        if not row:
            await self.db.rollback()
            logger.warning(
                "appointment_version_conflict",
                appointment_id=str(original.id),
                expected_version=original.version,
            )
            raise ConflictException("Appointment was modified concurrently, reload and retry")

        await self.db.commit()
        saved = _from_row(row)
        await self.notifier.publish(
            NotificationService.UPDATED,
            saved,
            previous_status=original.status.value,
        )
        return saved

    # Booking

    async def _get_active_provider(self, provider_id: UUID) -> None:
        result = await self.db.execute(
            select(users.c.id).where(
                and_(
                    users.c.id == provider_id,
                    users.c.role.in_([UserRole.NURSE.value, UserRole.DOCTOR.value]),
                    users.c.is_active.is_(True),
                )
            )
        )
        if result.scalar() is None:
            raise BadRequestException("Provider not found or inactive")

    async def _verify_payment(self, appointment: Appointment) -> Appointment:
        """Check the payment reference and confirm the booking when paid."""
        if not appointment.payment_reference:
            appointment.payment_status = PaymentStatus.NOT_REQUIRED
            return appointment

        try:
            verification = await self.payments.verify(appointment.payment_reference)
        except PaymentGatewayUnavailable as e:
            logger.warning(
                "payment_verification_deferred",
                appointment_id=str(appointment.id),
                error=str(e),
            )
            appointment.payment_status = PaymentStatus.PENDING
            return appointment

        if not verification.paid:
            appointment.payment_status = PaymentStatus.FAILED
            return appointment

        appointment.payment_status = PaymentStatus.VERIFIED
        if appointment.status == AppointmentStatus.SCHEDULED:
            appointment = lifecycle.transition(appointment, AppointmentStatus.CONFIRMED)
        return appointment

    async def create_appointment(
        self,
        identity: Identity,
        data: AppointmentCreate,
    ) -> AppointmentResponse:
        """
        Book a new appointment for the calling patient.

        Args:
            identity: Authenticated caller
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            ForbiddenException: If caller is not a patient
            BadRequestException: If provider or service is unknown or inactive
            ValidationException: If insurance exceeds the total cost
        """
        if identity.role != UserRole.PATIENT:
            raise ForbiddenException("Only patients can book appointments")

        await self._get_active_provider(data.provider_id)

        base_price = data.cost.base_price
        if data.service_id is not None:
            result = await self.db.execute(
                select(healthcare_services.c.price).where(
                    and_(
                        healthcare_services.c.id == data.service_id,
                        healthcare_services.c.is_active.is_(True),
                    )
                )
            )
            price = result.scalar()
            if price is None:
                raise BadRequestException("Service not found or inactive")
            if base_price is None:
                base_price = float(price)

        cost = lifecycle.calculate_cost(
            Cost(
                base_price=base_price or 0,
                additional_charges=data.cost.additional_charges,
                insurance_covered=data.cost.insurance_covered,
            )
        )

        appointment = Appointment(
            id=uuid4(),
            patient_id=identity.id,
            provider_id=data.provider_id,
            service_id=data.service_id,
            appointment_at=data.appointment_at,
            duration_minutes=data.duration_minutes,
            appointment_type=data.appointment_type,
            service_requested=data.service_requested,
            priority=data.priority,
            reason_for_visit=data.reason_for_visit,
            symptoms=data.symptoms,
            location=data.location,
            cost=cost,
            source=data.source,
            payment_reference=data.payment_reference,
        )
        appointment = await self._verify_payment(appointment)

        stmt = insert(appointments).values(**_to_row(appointment)).returning(appointments)
        result = await self.db.execute(stmt)
        await self.db.commit()

        created = _from_row(result.fetchone())
        logger.info(
            "appointment_created",
            appointment_id=str(created.id),
            status=created.status.value,
            payment_status=created.payment_status.value,
        )
        await self.notifier.publish(NotificationService.CREATED, created)
        return self._to_response(created, identity)

    async def book_service(
        self,
        identity: Identity,
        service_id: UUID,
        data: ServiceBooking,
    ) -> AppointmentResponse:
        """
        Book an appointment for a catalog service at the service's price.

        Raises:
            NotFoundException: If the service does not exist or is inactive
        """
        result = await self.db.execute(
            select(healthcare_services).where(
                and_(
                    healthcare_services.c.id == service_id,
                    healthcare_services.c.is_active.is_(True),
                )
            )
        )
        service = result.fetchone()
        if not service:
            raise NotFoundException("Service not found")

        booking = AppointmentCreate(
            provider_id=data.provider_id,
            service_id=service_id,
            appointment_at=data.appointment_at,
            duration_minutes=service.duration_minutes,
            appointment_type=data.appointment_type,
            service_requested=service.title,
            priority=data.priority,
            reason_for_visit=data.reason_for_visit,
            symptoms=data.symptoms,
            location=data.location,
            cost=CostInput(
                base_price=float(service.price),
                insurance_covered=data.insurance_covered,
            ),
            source=data.source,
            payment_reference=data.payment_reference,
        )
        return await self.create_appointment(identity, booking)

    # Reads

    async def get_appointment(
        self,
        appointment_id: UUID,
        identity: Identity,
        include_related: bool = False,
    ) -> AppointmentResponse:
        """
        Get appointment by ID.

        Args:
            appointment_id: Appointment ID
            identity: Authenticated caller
            include_related: Attach patient and provider summaries

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller doesn't have access
        """
        appointment = await self._load_for(appointment_id, identity)
        related = None
        if include_related:
            related = await self._load_users({appointment.patient_id, appointment.provider_id})
        return self._to_response(appointment, identity, related)

    async def list_appointments(
        self,
        identity: Identity,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the caller with filtering and pagination.

        Patients see their own bookings, providers the appointments assigned
        to them, and admins everything.
        """
        conditions = []

        if identity.role == UserRole.PATIENT:
            conditions.append(appointments.c.patient_id == identity.id)
        elif identity.is_provider:
            conditions.append(appointments.c.provider_id == identity.id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.provider_id:
            conditions.append(appointments.c.provider_id == filters.provider_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.appointment_type:
            conditions.append(appointments.c.appointment_type == filters.appointment_type.value)

        if filters.priority:
            conditions.append(appointments.c.priority == filters.priority.value)

        if filters.from_date:
            conditions.append(appointments.c.appointment_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_at <= filters.to_date)

        where = and_(true(), *conditions)

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.appointment_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        items = [_from_row(row) for row in result.fetchall()]

        related = None
        if filters.include_related:
            user_ids = {a.patient_id for a in items} | {a.provider_id for a in items}
            related = await self._load_users(user_ids)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[self._to_response(a, identity, related) for a in items],
        )

    # Writes

    async def update_appointment(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: AppointmentUpdate,
    ) -> AppointmentResponse:
        """
        Update appointment details.

        Patients may only change the visit reason, symptoms and location.
        Cost inputs are recomputed through the lifecycle rules.

        Raises:
            ForbiddenException: If a patient changes provider-managed fields
            BadRequestException: If the appointment is in a terminal status
        """
        current = await self._load_for(appointment_id, identity)

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return self._to_response(current, identity)

        if identity.role == UserRole.PATIENT and set(changes) - PATIENT_EDITABLE_FIELDS:
            raise ForbiddenException("Patients can only update reason, symptoms and location")

        if current.status in lifecycle.TERMINAL_STATUSES:
            raise BadRequestException(
                f"Cannot update a {current.status.value} appointment"
            )

        cost_changes = data.cost_fields
        updated = current.model_copy(deep=True)
        if cost_changes:
            updated = lifecycle.apply_cost_update(updated, cost_changes)

        details = {
            k: v for k, v in changes.items() if k not in cost_changes and v is not None
        }
        if details:
            merged = updated.model_dump()
            merged.update(details)
            updated = Appointment.model_validate(merged)

        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def update_status(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: AppointmentStatusUpdate,
    ) -> AppointmentResponse:
        """
        Move an appointment through its lifecycle.

        Cancellation and rescheduling have their own operations because they
        carry eligibility rules and extra records.

        Raises:
            ForbiddenException: If caller is a patient
            BadRequestException: If target is canceled or rescheduled
            IllegalTransitionException: If the transition is not allowed
        """
        if not (identity.is_provider or identity.is_admin):
            raise ForbiddenException("Only providers can change appointment status")

        if data.status in {AppointmentStatus.CANCELED, AppointmentStatus.RESCHEDULED}:
            raise BadRequestException(
                f"Use the {'cancel' if data.status == AppointmentStatus.CANCELED else 'reschedule'}"
                " operation for this status"
            )

        current = await self._load_for(appointment_id, identity)
        now = datetime.now(UTC)
        updated = lifecycle.transition(current, data.status, now)
        if data.note:
            updated = lifecycle.add_note(updated, identity.actor, data.note, now=now)

        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: AppointmentCancel,
    ) -> AppointmentResponse:
        """Cancel an appointment on behalf of the caller."""
        current = await self._load_for(appointment_id, identity)
        if data.refund_amount and not identity.is_admin:
            raise ForbiddenException("Only administrators can grant refunds")

        updated = lifecycle.cancel(
            current,
            identity.actor,
            reason=data.reason,
            refund_amount=data.refund_amount,
        )
        saved = await self._save(current, updated)
        logger.info(
            "appointment_canceled",
            appointment_id=str(saved.id),
            canceled_by=identity.actor.value,
        )
        return self._to_response(saved, identity)

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: AppointmentReschedule,
    ) -> AppointmentResponse:
        """Move an appointment to a new time on behalf of the caller."""
        current = await self._load_for(appointment_id, identity)
        updated = lifecycle.reschedule(
            current,
            data.new_date_time,
            identity.actor,
            reason=data.reason,
        )
        saved = await self._save(current, updated)
        logger.info(
            "appointment_rescheduled",
            appointment_id=str(saved.id),
            rescheduled_by=identity.actor.value,
        )
        return self._to_response(saved, identity)

    async def add_note(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: NoteCreate,
    ) -> AppointmentResponse:
        """
        Append a note.

        Raises:
            ForbiddenException: If a patient tries to add a private note
        """
        if data.is_private and identity.role == UserRole.PATIENT:
            raise ForbiddenException("Patients cannot add private notes")

        current = await self._load_for(appointment_id, identity)
        updated = lifecycle.add_note(current, identity.actor, data.content, data.is_private)
        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def update_consultation(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: ConsultationUpdate,
    ) -> AppointmentResponse:
        """Record clinical details of the visit (assigned provider or admin)."""
        current = await self._load_for(appointment_id, identity)
        if not (identity.is_admin or identity.id == current.provider_id):
            raise ForbiddenException("Only the assigned provider can record the consultation")

        updated = lifecycle.update_consultation(current, data)
        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def record_reminder(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: ReminderCreate,
    ) -> AppointmentResponse:
        """Record a reminder attempt reported by the delivery pipeline."""
        if not (identity.is_provider or identity.is_admin):
            raise ForbiddenException("Only providers and administrators can record reminders")

        current = await self._load_for(appointment_id, identity)
        updated = lifecycle.record_reminder(
            current,
            data.channel,
            data.successful,
            recipient=data.recipient,
            sent_at=data.sent_at,
        )
        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def rate_appointment(
        self,
        appointment_id: UUID,
        identity: Identity,
        data: RatingCreate,
    ) -> AppointmentResponse:
        """Rate a completed appointment as its patient or provider."""
        current = await self._load_for(appointment_id, identity)
        if identity.id == current.patient_id:
            rater = ActorRole.PATIENT
        elif identity.id == current.provider_id:
            rater = ActorRole.PROVIDER
        else:
            raise ForbiddenException("Only the patient or the provider can rate an appointment")

        updated = lifecycle.rate(current, rater, data.rating, data.review)
        saved = await self._save(current, updated)
        return self._to_response(saved, identity)

    async def verify_payment(
        self,
        appointment_id: UUID,
        identity: Identity,
    ) -> AppointmentResponse:
        """
        Retry payment verification for a booking.

        Raises:
            BadRequestException: If the booking has no payment reference
        """
        current = await self._load_for(appointment_id, identity)
        if not current.payment_reference:
            raise BadRequestException("Appointment has no payment reference")

        if current.payment_status == PaymentStatus.VERIFIED:
            return self._to_response(current, identity)

        updated = await self._verify_payment(current.model_copy(deep=True))
        if updated.payment_status == current.payment_status and updated.status == current.status:
            return self._to_response(current, identity)

        saved = await self._save(current, updated)
        return self._to_response(saved, identity)
