# Add Health Checks
from fastapi import FastAPI

from event_media.configurations.config import settings
from event_media.services.health_check.async_health_check_factory import (
    HealthCheckFactory,
)
from event_media.services.health_check.async_health_check_route import (
    create_health_check_route,
)
from event_media.services.health_check.health_check_mongo_db import MongoHealthCheck
from event_media.services.health_check.storage_health_check import StorageHealthCheck


def setup_health_checks(app: FastAPI) -> HealthCheckFactory:
    health_checks = HealthCheckFactory()

    health_checks.add(
        MongoHealthCheck(
            alias="mongodb",
            tags=["database", "mongodb"],
        )
    )

    def get_object_store():
        clients = getattr(app.state, "pipeline_clients", None)
        return clients.object_store if clients is not None else None

    health_checks.add(
        StorageHealthCheck(
            alias="storage",
            get_object_store=get_object_store,
            bucket_id=settings.storage_bucket_name,
            tags=["storage", "gcs"],
        )
    )

    app.add_api_route(
        "/health", endpoint=create_health_check_route(factory=health_checks)
    )
    return health_checks
