"""Database models."""

from healthnexus.models.appointments import appointments
from healthnexus.models.base import metadata
from healthnexus.models.services import healthcare_services
from healthnexus.models.users import users

__all__ = [
    "appointments",
    "healthcare_services",
    "metadata",
    "users",
]
