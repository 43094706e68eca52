"""Tests for appointment lifecycle rules."""

from datetime import UTC, datetime, timedelta

import pytest

from healthnexus.core.exceptions import (
    BadRequestException,
    ConflictException,
    EligibilityException,
    IllegalTransitionException,
    ValidationException,
)
from healthnexus.schemas.appointments import (
    AdditionalCharge,
    AppointmentStatus,
    AppointmentUpdate,
    ConsultationUpdate,
    Cost,
    Prescription,
    ReminderChannel,
)
from healthnexus.schemas.users import ActorRole
from healthnexus.services import appointment_lifecycle as lifecycle

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

S = AppointmentStatus

ALLOWED = {
    (S.SCHEDULED, S.CONFIRMED),
    (S.SCHEDULED, S.CANCELED),
    (S.SCHEDULED, S.RESCHEDULED),
    (S.CONFIRMED, S.IN_PROGRESS),
    (S.CONFIRMED, S.CANCELED),
    (S.CONFIRMED, S.NO_SHOW),
    (S.CONFIRMED, S.RESCHEDULED),
    (S.IN_PROGRESS, S.COMPLETED),
    (S.IN_PROGRESS, S.CANCELED),
    (S.RESCHEDULED, S.SCHEDULED),
}

ALL_PAIRS = [(current, target) for current in S for target in S]


@pytest.mark.parametrize("current,target", ALL_PAIRS)
def test_transition_table(make_appointment, current, target):
    """Every pair is allowed exactly when it is in the table."""
    appointment = make_appointment(status=current)

    if (current, target) in ALLOWED:
        updated = lifecycle.transition(appointment, target, NOW)
        assert updated.status == target
        assert appointment.status == current
    else:
        with pytest.raises(IllegalTransitionException) as exc_info:
            lifecycle.transition(appointment, target, NOW)
        assert exc_info.value.status_code == 409
        assert current.value in exc_info.value.message


def test_terminal_statuses():
    assert lifecycle.TERMINAL_STATUSES == {S.COMPLETED, S.CANCELED, S.NO_SHOW}


def test_start_and_complete_record_duration(make_appointment):
    """A 25 minute consultation records an actual duration of 25."""
    appointment = make_appointment(status=S.CONFIRMED)

    started = lifecycle.transition(appointment, S.IN_PROGRESS, NOW)
    assert started.consultation.start_time == NOW

    completed = lifecycle.transition(started, S.COMPLETED, NOW + timedelta(minutes=25))
    assert completed.consultation.end_time == NOW + timedelta(minutes=25)
    assert completed.consultation.actual_duration == 25


def test_duration_half_minute_rounds_up(make_appointment):
    started = lifecycle.transition(make_appointment(status=S.CONFIRMED), S.IN_PROGRESS, NOW)

    completed = lifecycle.transition(
        started, S.COMPLETED, NOW + timedelta(minutes=24, seconds=30)
    )

    assert completed.consultation.actual_duration == 25


def test_complete_without_start_time_leaves_duration_unset(make_appointment):
    appointment = make_appointment(status=S.IN_PROGRESS)

    completed = lifecycle.transition(appointment, S.COMPLETED, NOW)

    assert completed.consultation.end_time == NOW
    assert completed.consultation.actual_duration is None


def test_calculate_cost():
    """Base 100 plus a 20 charge with 30 covered leaves the patient 90."""
    cost = lifecycle.calculate_cost(
        Cost(
            base_price=100,
            additional_charges=[AdditionalCharge(description="Home visit", amount=20)],
            insurance_covered=30,
        )
    )

    assert cost.total_amount == 120
    assert cost.patient_payment == 90


def test_calculate_cost_rounds_to_cents():
    cost = lifecycle.calculate_cost(
        Cost(
            base_price=49.999,
            additional_charges=[AdditionalCharge(description="Supplies", amount=0.333)],
        )
    )

    assert cost.total_amount == 50.33
    assert cost.patient_payment == 50.33


def test_calculate_cost_rejects_excess_insurance():
    with pytest.raises(ValidationException):
        lifecycle.calculate_cost(Cost(base_price=100, insurance_covered=130))


def test_cancel_inside_window(make_appointment):
    appointment = make_appointment(
        status=S.CONFIRMED,
        appointment_at=NOW + timedelta(hours=30),
    )

    canceled = lifecycle.cancel(appointment, ActorRole.PATIENT, "Feeling better", now=NOW)

    assert canceled.status == S.CANCELED
    assert canceled.cancellation_details.canceled_by == ActorRole.PATIENT
    assert canceled.cancellation_details.canceled_at == NOW
    assert canceled.cancellation_details.reason == "Feeling better"


def test_cancel_too_late_for_patient(make_appointment):
    appointment = make_appointment(
        status=S.CONFIRMED,
        appointment_at=NOW + timedelta(hours=10),
    )

    assert not lifecycle.can_be_canceled(appointment, NOW)
    with pytest.raises(EligibilityException):
        lifecycle.cancel(appointment, ActorRole.PATIENT, now=NOW)


def test_system_cancel_ignores_window(make_appointment):
    appointment = make_appointment(
        status=S.IN_PROGRESS,
        appointment_at=NOW + timedelta(minutes=5),
    )

    canceled = lifecycle.cancel(appointment, ActorRole.SYSTEM, "Provider emergency", now=NOW)

    assert canceled.status == S.CANCELED
    assert canceled.cancellation_details.canceled_by == ActorRole.SYSTEM


def test_system_cancel_still_obeys_transition_table(make_appointment):
    appointment = make_appointment(status=S.COMPLETED)

    with pytest.raises(IllegalTransitionException):
        lifecycle.cancel(appointment, ActorRole.SYSTEM, now=NOW)


def test_cancel_refund_cannot_exceed_total(make_appointment):
    appointment = make_appointment()

    with pytest.raises(ValidationException):
        lifecycle.cancel(appointment, ActorRole.SYSTEM, refund_amount=500, now=NOW)

    canceled = lifecycle.cancel(appointment, ActorRole.SYSTEM, refund_amount=90, now=NOW)
    assert canceled.cancellation_details.refund_amount == 90


def test_reschedule_inside_window(make_appointment):
    original_time = NOW + timedelta(hours=3)
    new_time = NOW + timedelta(days=3)
    appointment = make_appointment(status=S.SCHEDULED, appointment_at=original_time)

    updated = lifecycle.reschedule(appointment, new_time, ActorRole.PROVIDER, "Clinic closed", NOW)

    assert updated.status == S.SCHEDULED
    assert updated.appointment_at == new_time
    assert len(updated.reschedule_history) == 1
    record = updated.reschedule_history[0]
    assert record.original_date_time == original_time
    assert record.new_date_time == new_time
    assert record.rescheduled_by == ActorRole.PROVIDER


def test_reschedule_too_late(make_appointment):
    appointment = make_appointment(appointment_at=NOW + timedelta(hours=1))

    assert not lifecycle.can_be_rescheduled(appointment, NOW)
    with pytest.raises(EligibilityException):
        lifecycle.reschedule(
            appointment, NOW + timedelta(days=1), ActorRole.PATIENT, now=NOW
        )


def test_reschedule_requires_future_time(make_appointment):
    appointment = make_appointment()

    with pytest.raises(ValidationException):
        lifecycle.reschedule(appointment, NOW - timedelta(hours=1), ActorRole.PATIENT, now=NOW)


def test_reschedule_from_terminal_status(make_appointment):
    appointment = make_appointment(status=S.CANCELED)

    with pytest.raises(IllegalTransitionException):
        lifecycle.reschedule(appointment, NOW + timedelta(days=1), ActorRole.SYSTEM, now=NOW)


def test_add_note(scheduled):
    updated = lifecycle.add_note(scheduled, ActorRole.PROVIDER, "Bring test results", True, NOW)

    assert len(updated.notes) == 1
    assert updated.notes[0].is_private is True
    assert updated.notes[0].created_at == NOW
    assert scheduled.notes == []


def test_successful_reminder_marks_patient_notified(scheduled):
    updated = lifecycle.record_reminder(scheduled, ReminderChannel.SMS, True, sent_at=NOW)

    assert updated.communication.patient_notified is True
    assert updated.communication.provider_notified is False
    assert updated.communication.last_communication == NOW
    assert updated.communication.reminders_sent[0].channel == ReminderChannel.SMS


def test_failed_reminder_only_logged(scheduled):
    updated = lifecycle.record_reminder(scheduled, ReminderChannel.EMAIL, False, sent_at=NOW)

    assert len(updated.communication.reminders_sent) == 1
    assert updated.communication.patient_notified is False
    assert updated.communication.last_communication is None


def test_update_consultation_merges_fields(make_appointment):
    appointment = make_appointment(status=S.IN_PROGRESS)
    first = lifecycle.update_consultation(
        appointment, ConsultationUpdate(chief_complaint="Cough", assessment="Bronchitis")
    )

    second = lifecycle.update_consultation(
        first,
        ConsultationUpdate(
            prescriptions=[
                Prescription(
                    medication="Amoxicillin",
                    dosage="500mg",
                    frequency="3x daily",
                    duration="7 days",
                )
            ]
        ),
    )

    assert second.consultation.chief_complaint == "Cough"
    assert second.consultation.assessment == "Bronchitis"
    assert second.consultation.prescriptions[0].medication == "Amoxicillin"


def test_update_consultation_rejected_when_canceled(make_appointment):
    with pytest.raises(BadRequestException):
        lifecycle.update_consultation(
            make_appointment(status=S.CANCELED), ConsultationUpdate(plan="Rest")
        )


def test_rate_completed_appointment(make_appointment):
    appointment = make_appointment(status=S.COMPLETED)

    rated = lifecycle.rate(appointment, ActorRole.PATIENT, 5, "Great care", NOW)

    assert rated.ratings.patient_rating.rating == 5
    assert rated.ratings.provider_rating is None

    with pytest.raises(ConflictException):
        lifecycle.rate(rated, ActorRole.PATIENT, 4, now=NOW)


def test_rate_requires_completion(scheduled):
    with pytest.raises(BadRequestException):
        lifecycle.rate(scheduled, ActorRole.PATIENT, 5, now=NOW)


def test_apply_cost_update_recalculates(scheduled):
    updated = lifecycle.apply_cost_update(scheduled, {"insurance_covered": 50})

    assert updated.cost.total_amount == 120
    assert updated.cost.patient_payment == 70


def test_apply_cost_update_rejected_when_terminal(make_appointment):
    with pytest.raises(BadRequestException):
        lifecycle.apply_cost_update(make_appointment(status=S.COMPLETED), {"base_price": 10})


def test_null_cost_fields_are_ignored(scheduled):
    changes = AppointmentUpdate.model_validate(
        {"base_price": None, "insurance_covered": 10}
    ).cost_fields

    assert changes == {"insurance_covered": 10}
    updated = lifecycle.apply_cost_update(scheduled, changes)
    assert updated.cost.base_price == 100
    assert updated.cost.patient_payment == 110


def test_apply_cost_update_rejects_invalid_values(scheduled):
    with pytest.raises(ValidationException):
        lifecycle.apply_cost_update(scheduled, {"base_price": "free"})
