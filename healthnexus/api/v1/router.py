"""API v1 router configuration."""

from fastapi import APIRouter

from healthnexus.api.v1.endpoints import appointments, health, services

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(services.router, prefix="/services", tags=["Services"])
