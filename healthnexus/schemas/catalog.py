"""Healthcare service catalog schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ServiceCategory(str, Enum):
    """Service category enumeration."""

    CONSULTATION = "consultation"
    NURSING = "nursing"
    LABORATORY = "laboratory"
    PHYSIOTHERAPY = "physiotherapy"
    MENTAL_HEALTH = "mental-health"
    VACCINATION = "vaccination"
    EMERGENCY = "emergency"


CATEGORY_DESCRIPTIONS = {
    ServiceCategory.CONSULTATION: ("Consultation", "Online and offline doctor consultations"),
    ServiceCategory.NURSING: ("Home Nursing", "Professional nursing care at home"),
    ServiceCategory.LABORATORY: ("Laboratory", "Home sample collection and lab tests"),
    ServiceCategory.PHYSIOTHERAPY: ("Physiotherapy", "Physical therapy and rehabilitation"),
    ServiceCategory.MENTAL_HEALTH: ("Mental Health", "Counseling and mental health support"),
    ServiceCategory.VACCINATION: ("Vaccination", "Immunization and vaccination services"),
    ServiceCategory.EMERGENCY: ("Emergency", "Urgent care and emergency response"),
}


class ServiceSortField(str, Enum):
    """Sortable catalog columns."""

    CREATED_AT = "created_at"
    PRICE = "price"
    RATING = "rating_average"
    TITLE = "title"


class ServiceBase(BaseModel):
    """Base service schema with common fields."""

    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    category: ServiceCategory
    price: float = Field(..., ge=0)
    duration_minutes: int = Field(default=30, ge=15, le=480)
    features: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_popular: bool = False


class ServiceCreate(ServiceBase):
    """Schema for creating a service."""

    slug: str | None = Field(None, max_length=120, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class ServiceUpdate(BaseModel):
    """Schema for updating a service."""

    title: str | None = Field(None, min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=120, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: str | None = Field(None, min_length=1, max_length=500)
    category: ServiceCategory | None = None
    price: float | None = Field(None, ge=0)
    duration_minutes: int | None = Field(None, ge=15, le=480)
    features: list[str] | None = None
    tags: list[str] | None = None
    is_popular: bool | None = None
    is_active: bool | None = None


class ServiceResponse(ServiceBase):
    """Schema for service response."""

    id: UUID
    slug: str
    rating_average: float = 0
    rating_count: int = 0
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("price", "rating_average", mode="before")
    @classmethod
    def numeric_to_float(cls, v: object) -> object:
        """Convert database decimals to floats."""
        return float(v) if isinstance(v, Decimal) else v


class ServiceFilters(BaseModel):
    """Schema for catalog filtering."""

    category: ServiceCategory | None = None
    search: str | None = Field(None, min_length=1, max_length=100)
    min_price: float | None = Field(None, ge=0)
    max_price: float | None = Field(None, ge=0)
    min_rating: float | None = Field(None, ge=0, le=5)
    popular: bool | None = None
    sort_by: ServiceSortField = ServiceSortField.CREATED_AT
    sort_order: str = Field(default="desc", pattern="^(asc|desc)$")
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)


class ServiceListResponse(BaseModel):
    """Schema for paginated service list response."""

    total: int
    page: int
    page_size: int
    total_pages: int
    items: list[ServiceResponse]


class CategorySummary(BaseModel):
    """Category with its active service count."""

    slug: ServiceCategory
    name: str
    description: str
    service_count: int
