"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from healthnexus.config import settings
from healthnexus.core.redis_client import CacheStore, get_redis_client
from healthnexus.core.security import identity_from_token
from healthnexus.database import get_db
from healthnexus.schemas.users import Identity
from healthnexus.services.appointment_service import AppointmentService
from healthnexus.services.notification_service import (
    NotificationService,
    get_notification_service,
)
from healthnexus.services.payment_gateway import PaymentGateway, get_payment_gateway

# Security
security = HTTPBearer()


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Identity:
    """
    Extract and validate the caller identity from the JWT.

    Raises:
        HTTPException: If token is invalid or expired
    """
    identity = identity_from_token(credentials.credentials)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> Identity:
    """
    Require the caller to be an administrator.

    Raises:
        HTTPException: 403 if caller is not an admin
    """
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return identity


def get_cache_store() -> CacheStore:
    """Dependency for getting the response cache store."""
    return CacheStore(
        get_redis_client(),
        environment=settings.environment,
        enabled=settings.cache_enabled,
    )


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    payments: Annotated[PaymentGateway, Depends(get_payment_gateway)],
    notifier: Annotated[NotificationService, Depends(get_notification_service)],
) -> AppointmentService:
    """Dependency building the appointment service for a request."""
    return AppointmentService(db, payments=payments, notifier=notifier)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
AdminIdentity = Annotated[Identity, Depends(require_admin)]
Cache = Annotated[CacheStore, Depends(get_cache_store)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
