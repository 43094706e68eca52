"""Appointment event publishing."""

from typing import Any

import structlog

from healthnexus.schemas.appointments import Appointment

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Publishes appointment events for downstream delivery.

    Delivery (email, SMS, push) happens outside this service; delivery
    outcomes come back through the reminder endpoint.
    """

    CREATED = "appointment.created"
    UPDATED = "appointment.updated"

    def __init__(self) -> None:
        """Initialize with an empty in-memory outbox."""
        self.published: list[dict[str, Any]] = []

    async def publish(self, event: str, appointment: Appointment, **extra: Any) -> None:
        """
        Publish an appointment event.

        Args:
            event: Event type, e.g. ``appointment.created``
            appointment: Appointment the event refers to
            **extra: Additional event attributes
        """
        payload = {
            "type": event,
            "appointment_id": str(appointment.id),
            "patient_id": str(appointment.patient_id),
            "provider_id": str(appointment.provider_id),
            "status": appointment.status.value,
            "appointment_at": appointment.appointment_at.isoformat(),
            **extra,
        }
        self.published.append(payload)
        logger.info("appointment_event_published", **payload)


def get_notification_service() -> NotificationService:
    """Dependency for getting the notification service."""
    return NotificationService()
