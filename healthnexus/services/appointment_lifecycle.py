"""
Appointment lifecycle rules.

Pure functions over :class:`Appointment` values: each takes the current
appointment and an explicit ``now`` and returns an updated copy, leaving the
input untouched. Persistence and authorization live in the service layer.
"""

import math
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from healthnexus.config import settings
from healthnexus.core.exceptions import (
    BadRequestException,
    ConflictException,
    EligibilityException,
    IllegalTransitionException,
    ValidationException,
)
from healthnexus.schemas.appointments import (
    Appointment,
    AppointmentNote,
    AppointmentStatus,
    CancellationDetails,
    Consultation,
    ConsultationUpdate,
    Cost,
    Rating,
    ReminderAttempt,
    ReminderChannel,
    RescheduleRecord,
)
from healthnexus.schemas.users import ActorRole

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELED,
            AppointmentStatus.RESCHEDULED,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELED,
            AppointmentStatus.NO_SHOW,
            AppointmentStatus.RESCHEDULED,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED}
    ),
    AppointmentStatus.RESCHEDULED: frozenset({AppointmentStatus.SCHEDULED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Statuses from which a patient or provider may still cancel or reschedule
MODIFIABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


def _now(now: datetime | None) -> datetime:
    return datetime.now(UTC) if now is None else now


def _is_user_initiated(actor: ActorRole) -> bool:
    return actor != ActorRole.SYSTEM


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether ``current -> target`` is in the transition table."""
    return target in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


def transition(
    appointment: Appointment,
    target: AppointmentStatus,
    now: datetime | None = None,
) -> Appointment:
    """
    Move an appointment to a new status.

    Entering ``in-progress`` stamps the consultation start time. Entering
    ``completed`` stamps the end time and, when a start time is known, the
    actual duration in whole minutes (half a minute rounds up).

    Args:
        appointment: Current appointment
        target: Requested status
        now: Clock reading used for timestamps

    Returns:
        Updated copy of the appointment

    Raises:
        IllegalTransitionException: If the pair is not in the transition table
    """
    now = _now(now)
    current = AppointmentStatus(appointment.status)
    target = AppointmentStatus(target)

    if not can_transition(current, target):
        raise IllegalTransitionException(current.value, target.value)

    updated = appointment.model_copy(deep=True)
    updated.status = target

    if target == AppointmentStatus.IN_PROGRESS:
        updated.consultation.start_time = now
    elif target == AppointmentStatus.COMPLETED:
        consultation = updated.consultation
        consultation.end_time = now
        if consultation.start_time is not None:
            minutes = (now - consultation.start_time).total_seconds() / 60
            consultation.actual_duration = math.floor(minutes + 0.5)
        else:
            logger.warning(
                "appointment_completed_without_start_time",
                appointment_id=str(appointment.id),
            )

    logger.info(
        "appointment_transitioned",
        appointment_id=str(appointment.id),
        from_status=current.value,
        to_status=target.value,
    )
    return updated


def calculate_cost(cost: Cost) -> Cost:
    """
    Recompute derived cost totals.

    ``total_amount`` is the base price plus every additional charge and
    ``patient_payment`` is what insurance leaves over, both rounded to cents.

    Raises:
        ValidationException: If insurance covers more than the total
    """
    total = round(cost.base_price + sum(charge.amount for charge in cost.additional_charges), 2)
    insurance = round(cost.insurance_covered, 2)

    if insurance > total:
        raise ValidationException(
            f"Insurance coverage ({insurance:.2f}) exceeds total amount ({total:.2f})"
        )

    return cost.model_copy(
        update={
            "base_price": round(cost.base_price, 2),
            "insurance_covered": insurance,
            "total_amount": total,
            "patient_payment": round(total - insurance, 2),
        },
        deep=True,
    )


def _lead_time(appointment: Appointment, now: datetime) -> timedelta:
    return appointment.appointment_at - now


def can_be_canceled(
    appointment: Appointment,
    now: datetime | None = None,
    window_hours: float | None = None,
) -> bool:
    """Check whether a patient or provider may still cancel."""
    hours = settings.cancellation_window_hours if window_hours is None else window_hours
    return appointment.status in MODIFIABLE_STATUSES and _lead_time(
        appointment, _now(now)
    ) >= timedelta(hours=hours)


def can_be_rescheduled(
    appointment: Appointment,
    now: datetime | None = None,
    window_hours: float | None = None,
) -> bool:
    """Check whether a patient or provider may still reschedule."""
    hours = settings.reschedule_window_hours if window_hours is None else window_hours
    return appointment.status in MODIFIABLE_STATUSES and _lead_time(
        appointment, _now(now)
    ) >= timedelta(hours=hours)


def cancel(
    appointment: Appointment,
    actor: ActorRole,
    reason: str | None = None,
    refund_amount: float = 0,
    now: datetime | None = None,
) -> Appointment:
    """
    Cancel an appointment and record who canceled it.

    The cancellation window applies to patients and providers only; system
    cancellations are bound by the transition table alone.

    Raises:
        EligibilityException: If a user cancels outside the window
        IllegalTransitionException: If the current status cannot be canceled
        ValidationException: If the refund exceeds the amount charged
    """
    now = _now(now)

    if _is_user_initiated(actor) and not can_be_canceled(appointment, now):
        raise EligibilityException(
            f"Appointments can only be canceled at least "
            f"{settings.cancellation_window_hours} hours in advance"
        )

    if refund_amount > appointment.cost.total_amount:
        raise ValidationException("Refund amount exceeds the appointment total")

    updated = transition(appointment, AppointmentStatus.CANCELED, now)
    updated.cancellation_details = CancellationDetails(
        canceled_by=actor,
        canceled_at=now,
        reason=reason,
        refund_amount=round(refund_amount, 2),
    )
    return updated


def reschedule(
    appointment: Appointment,
    new_date_time: datetime,
    actor: ActorRole,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Move an appointment to a new time.

    Records a history entry, then passes through ``rescheduled`` back to
    ``scheduled`` with the new time applied.

    Raises:
        EligibilityException: If a user reschedules outside the window
        ValidationException: If the new time is not in the future
        IllegalTransitionException: If the current status cannot be rescheduled
    """
    now = _now(now)

    if _is_user_initiated(actor) and not can_be_rescheduled(appointment, now):
        raise EligibilityException(
            f"Appointments can only be rescheduled at least "
            f"{settings.reschedule_window_hours} hours in advance"
        )

    if new_date_time <= now:
        raise ValidationException("New appointment time must be in the future")

    updated = transition(appointment, AppointmentStatus.RESCHEDULED, now)
    updated.reschedule_history.append(
        RescheduleRecord(
            original_date_time=appointment.appointment_at,
            new_date_time=new_date_time,
            rescheduled_by=actor,
            reason=reason,
            rescheduled_at=now,
        )
    )
    updated = transition(updated, AppointmentStatus.SCHEDULED, now)
    updated.appointment_at = new_date_time
    return updated


def add_note(
    appointment: Appointment,
    author: ActorRole,
    content: str,
    is_private: bool = False,
    now: datetime | None = None,
) -> Appointment:
    """Append a note."""
    updated = appointment.model_copy(deep=True)
    updated.notes.append(
        AppointmentNote(
            author=author,
            content=content,
            is_private=is_private,
            created_at=_now(now),
        )
    )
    return updated


def record_reminder(
    appointment: Appointment,
    channel: ReminderChannel,
    successful: bool,
    recipient: ActorRole = ActorRole.PATIENT,
    sent_at: datetime | None = None,
) -> Appointment:
    """
    Record the outcome of a reminder attempt.

    Failed attempts are logged in the reminder history but leave the
    notification flags and last communication time unchanged.
    """
    sent_at = _now(sent_at)
    updated = appointment.model_copy(deep=True)
    communication = updated.communication
    communication.reminders_sent.append(
        ReminderAttempt(channel=channel, sent_at=sent_at, successful=successful)
    )

    if successful:
        communication.last_communication = sent_at
        if recipient == ActorRole.PROVIDER:
            communication.provider_notified = True
        else:
            communication.patient_notified = True

    return updated


def update_consultation(appointment: Appointment, data: ConsultationUpdate) -> Appointment:
    """
    Merge clinical fields into the consultation record.

    Raises:
        BadRequestException: If the appointment was canceled or missed
    """
    if appointment.status in {AppointmentStatus.CANCELED, AppointmentStatus.NO_SHOW}:
        raise BadRequestException(
            f"Cannot record a consultation for a {AppointmentStatus(appointment.status).value} "
            "appointment"
        )

    merged = appointment.consultation.model_dump()
    merged.update(data.model_dump(exclude_unset=True, exclude_none=True))

    updated = appointment.model_copy(deep=True)
    updated.consultation = Consultation.model_validate(merged)
    return updated


def rate(
    appointment: Appointment,
    rater: ActorRole,
    rating: int,
    review: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Record a rating from the patient or the provider.

    Raises:
        BadRequestException: If the appointment is not completed or the rater
            is neither party
        ConflictException: If this party already rated the appointment
    """
    if appointment.status != AppointmentStatus.COMPLETED:
        raise BadRequestException("Only completed appointments can be rated")

    if rater == ActorRole.PATIENT:
        field = "patient_rating"
    elif rater == ActorRole.PROVIDER:
        field = "provider_rating"
    else:
        raise BadRequestException("Only the patient or the provider can rate an appointment")

    if getattr(appointment.ratings, field) is not None:
        raise ConflictException("Appointment already rated")

    updated = appointment.model_copy(deep=True)
    setattr(
        updated.ratings,
        field,
        Rating(rating=rating, review=review, rated_at=_now(now)),
    )
    return updated


def apply_cost_update(appointment: Appointment, changes: dict[str, Any]) -> Appointment:
    """
    Apply new cost inputs and recompute the totals.

    Args:
        appointment: Current appointment
        changes: Any of ``base_price``, ``additional_charges`` and
            ``insurance_covered``

    Raises:
        BadRequestException: If the appointment is in a terminal status
        ValidationException: If the new inputs are invalid or insurance would
            exceed the new total
    """
    if appointment.status in TERMINAL_STATUSES:
        raise BadRequestException(
            f"Cannot change the cost of a {AppointmentStatus(appointment.status).value} "
            "appointment"
        )

    merged = appointment.cost.model_dump()
    merged.update({name: value for name, value in changes.items() if value is not None})
    try:
        cost = Cost.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationException(f"Invalid cost update: {e.errors()[0]['msg']}") from e

    updated = appointment.model_copy(deep=True)
    updated.cost = calculate_cost(cost)
    return updated
