"""Tests for the healthcare service catalog."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError

from healthnexus.core.exceptions import ConflictException
from healthnexus.schemas.catalog import ServiceUpdate
from healthnexus.services.catalog_service import CatalogService, slugify


def test_slugify():
    assert slugify("Home Nursing Visit") == "home-nursing-visit"
    assert slugify("  Mental-Health: Therapy & Counseling ") == "mental-health-therapy-counseling"


def service_payload(**overrides) -> dict:
    payload = {
        "title": "Home Nursing Visit",
        "description": "Skilled nursing care at home",
        "category": "nursing",
        "price": 80,
        "duration_minutes": 60,
        "tags": ["wound-care", "elderly"],
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_create_service_requires_admin(db_client: AsyncClient, seeded_users, headers_for):
    response = await db_client.post(
        "/api/v1/services",
        json=service_payload(),
        headers=headers_for(seeded_users["patient"]),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_catalog_read_through_and_invalidation(
    db_client: AsyncClient, seeded_users, headers_for
):
    admin_headers = headers_for(seeded_users["admin"])

    created = await db_client.post(
        "/api/v1/services", json=service_payload(), headers=admin_headers
    )
    assert created.status_code == 201
    assert created.json()["slug"] == "home-nursing-visit"

    first = await db_client.get("/api/v1/services", params={"category": "nursing"})
    second = await db_client.get("/api/v1/services", params={"category": "nursing"})
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert first.content == second.content
    assert first.json()["total"] == 1

    await db_client.post(
        "/api/v1/services",
        json=service_payload(title="Post-operative Care", tags=["surgery"]),
        headers=admin_headers,
    )

    third = await db_client.get("/api/v1/services", params={"category": "nursing"})
    assert third.headers["X-Cache"] == "MISS"
    assert third.json()["total"] == 2


@pytest.mark.asyncio
async def test_duplicate_slug_conflicts(db_client: AsyncClient, seeded_users, headers_for):
    admin_headers = headers_for(seeded_users["admin"])

    await db_client.post("/api/v1/services", json=service_payload(), headers=admin_headers)
    duplicate = await db_client.post(
        "/api/v1/services", json=service_payload(), headers=admin_headers
    )

    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_search_and_categories(db_client: AsyncClient, seeded_users, headers_for):
    admin_headers = headers_for(seeded_users["admin"])
    await db_client.post("/api/v1/services", json=service_payload(), headers=admin_headers)
    await db_client.post(
        "/api/v1/services",
        json=service_payload(
            title="Flu Vaccination",
            description="Seasonal influenza vaccine",
            category="vaccination",
            price=25,
            duration_minutes=15,
            tags=["flu"],
        ),
        headers=admin_headers,
    )

    by_tag = await db_client.get("/api/v1/services", params={"search": "flu"})
    assert [item["title"] for item in by_tag.json()["items"]] == ["Flu Vaccination"]

    categories = {c["slug"]: c for c in (await db_client.get("/api/v1/services/categories")).json()}
    assert categories["nursing"]["service_count"] == 1
    assert categories["vaccination"]["service_count"] == 1
    assert categories["emergency"]["service_count"] == 0


@pytest.mark.asyncio
async def test_deactivated_service_disappears(db_client: AsyncClient, seeded_users, headers_for):
    admin_headers = headers_for(seeded_users["admin"])
    created = await db_client.post(
        "/api/v1/services", json=service_payload(), headers=admin_headers
    )
    service_id = created.json()["id"]

    deleted = await db_client.delete(f"/api/v1/services/{service_id}", headers=admin_headers)
    assert deleted.status_code == 204

    missing = await db_client.get(f"/api/v1/services/{service_id}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_update_to_taken_slug_conflicts():
    db = MagicMock()
    db.execute = AsyncMock(side_effect=IntegrityError("UPDATE", {}, Exception("duplicate key")))
    db.rollback = AsyncMock()
    db.commit = AsyncMock()

    with pytest.raises(ConflictException):
        await CatalogService(db).update_service(uuid4(), ServiceUpdate(slug="home-nursing-visit"))

    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_rename_slug_over_existing_service(db_client: AsyncClient, seeded_users, headers_for):
    admin_headers = headers_for(seeded_users["admin"])
    await db_client.post("/api/v1/services", json=service_payload(), headers=admin_headers)
    other = await db_client.post(
        "/api/v1/services",
        json=service_payload(title="Flu Vaccination", category="vaccination"),
        headers=admin_headers,
    )

    renamed = await db_client.patch(
        f"/api/v1/services/{other.json()['id']}",
        json={"slug": "home-nursing-visit"},
        headers=admin_headers,
    )

    assert renamed.status_code == 409
