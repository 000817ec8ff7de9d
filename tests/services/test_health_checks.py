import json

import pytest
from conftest import BUCKET
from fastapi_healthcheck.enum import HealthCheckStatusEnum

from event_media.services.health_check.async_health_check_factory import (
    HealthCheckFactory,
)
from event_media.services.health_check.async_health_check_route import (
    create_health_check_route,
)
from event_media.services.health_check.health_check_mongo_db import MongoHealthCheck
from event_media.services.health_check.storage_health_check import StorageHealthCheck


@pytest.mark.asyncio
async def test_storage_check_healthy(object_store):
    check = StorageHealthCheck("storage", lambda: object_store, BUCKET)
    assert await check.check_health() == HealthCheckStatusEnum.HEALTHY


@pytest.mark.asyncio
async def test_storage_check_unknown_bucket(object_store):
    check = StorageHealthCheck("storage", lambda: object_store, "other-bucket")
    assert await check.check_health() == HealthCheckStatusEnum.UNHEALTHY


@pytest.mark.asyncio
async def test_storage_check_before_startup():
    check = StorageHealthCheck("storage", lambda: None, BUCKET)
    assert await check.check_health() == HealthCheckStatusEnum.UNHEALTHY


@pytest.mark.asyncio
async def test_mongo_check_without_client():
    check = MongoHealthCheck("mongodb")
    assert await check.check_health() == HealthCheckStatusEnum.UNHEALTHY


@pytest.mark.asyncio
async def test_route_reports_503_when_any_check_fails(object_store):
    factory = HealthCheckFactory()
    factory.add(StorageHealthCheck("storage", lambda: object_store, BUCKET))
    factory.add(MongoHealthCheck("mongodb", tags=["database"]))

    response = await create_health_check_route(factory)()
    body = json.loads(response.body)

    assert response.status_code == 503
    assert body["status"] == HealthCheckStatusEnum.UNHEALTHY.value
    assert [entity["alias"] for entity in body["entities"]] == ["storage", "mongodb"]


@pytest.mark.asyncio
async def test_route_reports_200_when_healthy(object_store):
    factory = HealthCheckFactory()
    factory.add(StorageHealthCheck("storage", lambda: object_store, BUCKET))

    response = await create_health_check_route(factory)()

    assert response.status_code == 200
