"""Caller identity and user summary schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """User role enumeration."""

    PATIENT = "patient"
    NURSE = "nurse"
    DOCTOR = "doctor"
    ADMIN = "admin"


class ActorRole(str, Enum):
    """Who performed an action on an appointment."""

    PATIENT = "patient"
    PROVIDER = "provider"
    SYSTEM = "system"


PROVIDER_ROLES = frozenset({UserRole.NURSE, UserRole.DOCTOR})


class Identity(BaseModel):
    """Authenticated caller, as asserted by the access token."""

    id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        """Check if caller is an administrator."""
        return self.role == UserRole.ADMIN

    @property
    def is_provider(self) -> bool:
        """Check if caller is a nurse or doctor."""
        return self.role in PROVIDER_ROLES

    @property
    def actor(self) -> ActorRole:
        """Map the caller's role onto the appointment actor vocabulary."""
        if self.role == UserRole.PATIENT:
            return ActorRole.PATIENT
        if self.is_provider:
            return ActorRole.PROVIDER
        return ActorRole.SYSTEM


class UserSummary(BaseModel):
    """Public subset of a user profile attached to related documents."""

    id: UUID
    full_name: str | None = None
    email: str
    phone: str | None = None
    role: UserRole

    model_config = {"from_attributes": True}
