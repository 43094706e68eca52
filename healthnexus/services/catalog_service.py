"""Healthcare service catalog business logic."""

import math
import re
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from healthnexus.core.exceptions import ConflictException, NotFoundException
from healthnexus.models.services import healthcare_services
from healthnexus.schemas.catalog import (
    CATEGORY_DESCRIPTIONS,
    CategorySummary,
    ServiceCreate,
    ServiceFilters,
    ServiceListResponse,
    ServiceResponse,
    ServiceUpdate,
)

logger = structlog.get_logger(__name__)


def slugify(title: str) -> str:
    """Build a URL slug from a service title."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


class CatalogService:
    """Service for browsing and managing the healthcare service catalog."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def list_services(self, filters: ServiceFilters) -> ServiceListResponse:
        """
        List active services with filtering, sorting and pagination.

        Args:
            filters: Filter, sort and pagination parameters

        Returns:
            Paginated list of services
        """
        conditions = [healthcare_services.c.is_active.is_(True)]

        if filters.category:
            conditions.append(healthcare_services.c.category == filters.category.value)

        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    healthcare_services.c.title.ilike(pattern),
                    healthcare_services.c.description.ilike(pattern),
                    func.array_to_string(healthcare_services.c.tags, " ").ilike(pattern),
                )
            )

        if filters.min_price is not None:
            conditions.append(healthcare_services.c.price >= filters.min_price)

        if filters.max_price is not None:
            conditions.append(healthcare_services.c.price <= filters.max_price)

        if filters.min_rating is not None:
            conditions.append(healthcare_services.c.rating_average >= filters.min_rating)

        if filters.popular is not None:
            conditions.append(healthcare_services.c.is_popular.is_(filters.popular))

        count_stmt = select(func.count()).select_from(healthcare_services).where(and_(*conditions))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        sort_column = healthcare_services.c[filters.sort_by.value]
        order = sort_column.desc() if filters.sort_order == "desc" else sort_column.asc()

        stmt = (
            select(healthcare_services)
            .where(and_(*conditions))
            .order_by(order, healthcare_services.c.id)
            .limit(filters.page_size)
            .offset((filters.page - 1) * filters.page_size)
        )
        result = await self.db.execute(stmt)

        return ServiceListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=math.ceil(total / filters.page_size) if total else 0,
            items=[ServiceResponse.model_validate(dict(row)) for row in result.mappings()],
        )

    async def get_categories(self) -> list[CategorySummary]:
        """Get every category with its number of active services."""
        stmt = (
            select(healthcare_services.c.category, func.count().label("service_count"))
            .where(healthcare_services.c.is_active.is_(True))
            .group_by(healthcare_services.c.category)
        )
        counts = {row.category: row.service_count for row in await self.db.execute(stmt)}

        return [
            CategorySummary(
                slug=category.value,
                name=name,
                description=description,
                service_count=counts.get(category.value, 0),
            )
            for category, (name, description) in CATEGORY_DESCRIPTIONS.items()
        ]

    async def get_service(
        self, service_id: UUID, include_inactive: bool = False
    ) -> ServiceResponse:
        """
        Get service by ID.

        Raises:
            NotFoundException: If service not found (or inactive)
        """
        conditions = [healthcare_services.c.id == service_id]
        if not include_inactive:
            conditions.append(healthcare_services.c.is_active.is_(True))

        result = await self.db.execute(select(healthcare_services).where(and_(*conditions)))
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Service not found")
        return ServiceResponse.model_validate(dict(row))

    async def create_service(self, data: ServiceCreate) -> ServiceResponse:
        """
        Create a new service.

        Raises:
            ConflictException: If the slug is already taken
        """
        values = data.model_dump(exclude={"slug"})
        values["category"] = data.category.value
        values["slug"] = data.slug or slugify(data.title)

        stmt = healthcare_services.insert().values(**values).returning(healthcare_services)
        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictException(f"Service slug '{values['slug']}' already exists") from e

        row = result.mappings().first()
        await self.db.commit()

        logger.info("service_created", service_id=str(row["id"]), slug=row["slug"])
        return ServiceResponse.model_validate(dict(row))

    async def update_service(self, service_id: UUID, data: ServiceUpdate) -> ServiceResponse:
        """
        Update a service.

        Raises:
            NotFoundException: If service not found
            ConflictException: If the new slug is already taken
        """
        update_values: dict[str, Any] = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if "category" in update_values:
            update_values["category"] = update_values["category"].value

        if not update_values:
            return await self.get_service(service_id, include_inactive=True)

        update_values["updated_at"] = datetime.now(UTC)

        stmt = (
            update(healthcare_services)
            .where(healthcare_services.c.id == service_id)
            .values(**update_values)
            .returning(healthcare_services)
        )
        try:
            result = await self.db.execute(stmt)
        except IntegrityError as e:
            await self.db.rollback()
            slug = update_values.get("slug")
            raise ConflictException(f"Service slug '{slug}' already exists") from e
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Service not found")

        await self.db.commit()
        logger.info("service_updated", service_id=str(service_id), fields=sorted(update_values))
        return ServiceResponse.model_validate(dict(row))

    async def deactivate_service(self, service_id: UUID) -> None:
        """
        Deactivate a service; existing appointments keep their reference.

        Raises:
            NotFoundException: If service not found
        """
        stmt = (
            update(healthcare_services)
            .where(healthcare_services.c.id == service_id)
            .values(is_active=False, updated_at=datetime.now(UTC))
            .returning(healthcare_services.c.id)
        )
        result = await self.db.execute(stmt)
        if result.scalar() is None:
            raise NotFoundException("Service not found")

        await self.db.commit()
        logger.info("service_deactivated", service_id=str(service_id))
