"""Appointment schemas for the domain entity and request/response validation."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

from healthnexus.schemas.users import ActorRole, UserSummary


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no-show"
    RESCHEDULED = "rescheduled"


class AppointmentType(str, Enum):
    """Appointment type enumeration."""

    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    EMERGENCY = "emergency"
    ROUTINE_CHECKUP = "routine-checkup"
    HOME_VISIT = "home-visit"
    TELEMEDICINE = "telemedicine"


class AppointmentPriority(str, Enum):
    """Appointment priority enumeration."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class BookingSource(str, Enum):
    """Where the booking came from."""

    WEB = "web"
    MOBILE = "mobile"
    PHONE = "phone"
    WALK_IN = "walk-in"


class PaymentStatus(str, Enum):
    """Outcome of payment verification at booking time."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class ReminderChannel(str, Enum):
    """Reminder delivery channel."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class Urgency(str, Enum):
    """Urgency of referrals and lab orders."""

    ROUTINE = "routine"
    URGENT = "urgent"
    STAT = "stat"


class SymptomSeverity(str, Enum):
    """Symptom severity enumeration."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class LocationType(str, Enum):
    """Where the appointment takes place."""

    CLINIC = "clinic"
    HOME = "home"
    HOSPITAL = "hospital"
    TELEMEDICINE = "telemedicine"


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _require_future(value: datetime) -> datetime:
    value = _as_utc(value)
    if value <= datetime.now(UTC):
        raise ValueError("Appointment time must be in the future")
    return value


# Sub-records


class AdditionalCharge(BaseModel):
    """Extra line item on top of the base price."""

    description: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., ge=0)


class Cost(BaseModel):
    """Appointment cost breakdown; totals are derived."""

    base_price: float = Field(default=0, ge=0)
    additional_charges: list[AdditionalCharge] = Field(default_factory=list)
    insurance_covered: float = Field(default=0, ge=0)
    total_amount: float = 0
    patient_payment: float = 0


class Prescription(BaseModel):
    """Prescribed medication."""

    medication: str
    dosage: str
    frequency: str
    duration: str
    instructions: str | None = None


class Referral(BaseModel):
    """Referral to a specialist."""

    specialist_type: str
    reason: str | None = None
    urgency: Urgency = Urgency.ROUTINE


class LabOrder(BaseModel):
    """Requested laboratory test."""

    test_name: str
    reason: str | None = None
    urgency: Urgency = Urgency.ROUTINE


class BloodPressure(BaseModel):
    """Blood pressure reading."""

    systolic: int = Field(..., gt=0)
    diastolic: int = Field(..., gt=0)


class VitalSigns(BaseModel):
    """Vital signs captured during the consultation."""

    blood_pressure: BloodPressure | None = None
    heart_rate: int | None = Field(None, gt=0)
    temperature: float | None = Field(None, description="Fahrenheit")
    respiratory_rate: int | None = Field(None, gt=0)
    oxygen_saturation: float | None = Field(None, ge=0, le=100)
    weight: float | None = Field(None, gt=0, description="Kilograms")
    height: float | None = Field(None, gt=0, description="Centimeters")


class Consultation(BaseModel):
    """Clinical record of the visit."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    actual_duration: int | None = Field(None, description="Minutes")
    chief_complaint: str | None = None
    present_illness: str | None = None
    physical_examination: str | None = None
    assessment: str | None = None
    plan: str | None = None
    prescriptions: list[Prescription] = Field(default_factory=list)
    follow_up_required: bool = False
    follow_up_date: datetime | None = None
    referrals: list[Referral] = Field(default_factory=list)
    lab_orders_requested: list[LabOrder] = Field(default_factory=list)
    vital_signs: VitalSigns | None = None


class ReminderAttempt(BaseModel):
    """A single reminder send attempt and its outcome."""

    channel: ReminderChannel
    sent_at: datetime
    successful: bool = False


class Communication(BaseModel):
    """Notification flags and reminder log."""

    patient_notified: bool = False
    provider_notified: bool = False
    reminders_sent: list[ReminderAttempt] = Field(default_factory=list)
    last_communication: datetime | None = None


class CancellationDetails(BaseModel):
    """Populated only when the appointment is canceled."""

    canceled_by: ActorRole
    canceled_at: datetime
    reason: str | None = None
    refund_amount: float = Field(default=0, ge=0)
    refund_processed: bool = False


class RescheduleRecord(BaseModel):
    """Append-only reschedule history entry."""

    original_date_time: datetime
    new_date_time: datetime
    rescheduled_by: ActorRole
    reason: str | None = None
    rescheduled_at: datetime


class AppointmentNote(BaseModel):
    """Append-only note."""

    author: ActorRole
    content: str = Field(..., min_length=1, max_length=2000)
    is_private: bool = False
    created_at: datetime


class Symptom(BaseModel):
    """Reported symptom."""

    symptom: str = Field(..., min_length=1)
    severity: SymptomSeverity
    duration: str | None = None
    notes: str | None = None


class Address(BaseModel):
    """Postal address."""

    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str = "USA"


class Coordinates(BaseModel):
    """Geographic coordinates."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    """Appointment location."""

    type: LocationType
    address: Address | None = None
    coordinates: Coordinates | None = None
    instructions: str | None = None


class Rating(BaseModel):
    """Rating left by one party after the visit."""

    rating: int = Field(..., ge=1, le=5)
    review: str | None = Field(None, max_length=1000)
    rated_at: datetime


class Ratings(BaseModel):
    """Ratings from both sides of the appointment."""

    patient_rating: Rating | None = None
    provider_rating: Rating | None = None


# Entity


class Appointment(BaseModel):
    """Appointment document as stored and manipulated by the lifecycle rules."""

    id: UUID
    patient_id: UUID
    provider_id: UUID
    service_id: UUID | None = None
    appointment_at: datetime
    duration_minutes: int = Field(..., ge=15, le=480)
    appointment_type: AppointmentType
    service_requested: str
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    priority: AppointmentPriority = AppointmentPriority.NORMAL
    reason_for_visit: str
    symptoms: list[Symptom] = Field(default_factory=list)
    location: Location | None = None
    cost: Cost = Field(default_factory=Cost)
    consultation: Consultation = Field(default_factory=Consultation)
    communication: Communication = Field(default_factory=Communication)
    ratings: Ratings = Field(default_factory=Ratings)
    cancellation_details: CancellationDetails | None = None
    reschedule_history: list[RescheduleRecord] = Field(default_factory=list)
    notes: list[AppointmentNote] = Field(default_factory=list)
    source: BookingSource = BookingSource.WEB
    payment_reference: str | None = None
    payment_status: PaymentStatus = PaymentStatus.NOT_REQUIRED
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("appointment_at")
    @classmethod
    def normalize_appointment_at(cls, v: datetime) -> datetime:
        """Treat naive datetimes as UTC."""
        return _as_utc(v)


# Requests


class CostInput(BaseModel):
    """Cost inputs accepted from clients; totals are always computed."""

    base_price: float | None = Field(None, ge=0)
    additional_charges: list[AdditionalCharge] = Field(default_factory=list)
    insurance_covered: float = Field(default=0, ge=0)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    provider_id: UUID
    service_id: UUID | None = None
    appointment_at: datetime
    duration_minutes: int = Field(default=30, ge=15, le=480)
    appointment_type: AppointmentType
    service_requested: str = Field(..., min_length=1, max_length=200)
    priority: AppointmentPriority = AppointmentPriority.NORMAL
    reason_for_visit: str = Field(..., min_length=1, max_length=1000)
    symptoms: list[Symptom] = Field(default_factory=list)
    location: Location | None = None
    cost: CostInput = Field(default_factory=CostInput)
    source: BookingSource = BookingSource.WEB
    payment_reference: str | None = Field(None, max_length=200)

    @field_validator("appointment_at")
    @classmethod
    def validate_future(cls, v: datetime) -> datetime:
        """Require a future appointment time."""
        return _require_future(v)


class ServiceBooking(BaseModel):
    """Schema for booking an appointment directly from a catalog service."""

    provider_id: UUID
    appointment_at: datetime
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    priority: AppointmentPriority = AppointmentPriority.NORMAL
    reason_for_visit: str = Field(..., min_length=1, max_length=1000)
    symptoms: list[Symptom] = Field(default_factory=list)
    location: Location | None = None
    insurance_covered: float = Field(default=0, ge=0)
    source: BookingSource = BookingSource.WEB
    payment_reference: str | None = Field(None, max_length=200)

    @field_validator("appointment_at")
    @classmethod
    def validate_future(cls, v: datetime) -> datetime:
        """Require a future appointment time."""
        return _require_future(v)


class AppointmentUpdate(BaseModel):
    """Schema for updating appointment details (not status or time)."""

    duration_minutes: int | None = Field(None, ge=15, le=480)
    appointment_type: AppointmentType | None = None
    service_requested: str | None = Field(None, min_length=1, max_length=200)
    priority: AppointmentPriority | None = None
    reason_for_visit: str | None = Field(None, min_length=1, max_length=1000)
    symptoms: list[Symptom] | None = None
    location: Location | None = None
    base_price: float | None = Field(None, ge=0)
    additional_charges: list[AdditionalCharge] | None = None
    insurance_covered: float | None = Field(None, ge=0)

    @property
    def cost_fields(self) -> dict[str, Any]:
        """Cost inputs that were explicitly provided; nulls leave the current value."""
        return self.model_dump(
            include={"base_price", "additional_charges", "insurance_covered"},
            exclude_unset=True,
            exclude_none=True,
        )


class AppointmentStatusUpdate(BaseModel):
    """Schema for moving an appointment through its lifecycle."""

    status: AppointmentStatus
    note: str | None = Field(None, min_length=1, max_length=2000)


class AppointmentCancel(BaseModel):
    """Schema for canceling an appointment."""

    reason: str | None = Field(None, max_length=500)
    refund_amount: float = Field(default=0, ge=0)


class AppointmentReschedule(BaseModel):
    """Schema for rescheduling an appointment."""

    new_date_time: datetime
    reason: str | None = Field(None, max_length=500)

    @field_validator("new_date_time")
    @classmethod
    def normalize_new_date_time(cls, v: datetime) -> datetime:
        """Treat naive datetimes as UTC."""
        return _as_utc(v)


class NoteCreate(BaseModel):
    """Schema for adding a note."""

    content: str = Field(..., min_length=1, max_length=2000)
    is_private: bool = False


class ConsultationUpdate(BaseModel):
    """Clinical fields a provider may record; timestamps are lifecycle-owned."""

    chief_complaint: str | None = None
    present_illness: str | None = None
    physical_examination: str | None = None
    assessment: str | None = None
    plan: str | None = None
    prescriptions: list[Prescription] | None = None
    follow_up_required: bool | None = None
    follow_up_date: datetime | None = None
    referrals: list[Referral] | None = None
    lab_orders_requested: list[LabOrder] | None = None
    vital_signs: VitalSigns | None = None


class ReminderCreate(BaseModel):
    """Outcome of a reminder attempt reported by the notification service."""

    channel: ReminderChannel
    successful: bool
    recipient: ActorRole = ActorRole.PATIENT
    sent_at: datetime | None = None


class RatingCreate(BaseModel):
    """Schema for rating a completed appointment."""

    rating: int = Field(..., ge=1, le=5)
    review: str | None = Field(None, max_length=1000)


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    appointment_type: AppointmentType | None = None
    priority: AppointmentPriority | None = None
    patient_id: UUID | None = None
    provider_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    include_related: bool = False
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


# Responses


class AppointmentResponse(Appointment):
    """Appointment as returned to clients."""

    patient: UserSummary | None = None
    provider: UserSummary | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_in_hours(self) -> float:
        """Duration rounded to two decimals."""
        return round(self.duration_minutes / 60, 2)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]
