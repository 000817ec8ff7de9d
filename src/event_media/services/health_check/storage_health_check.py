import logging
from typing import Callable, List, Optional

from fastapi_healthcheck.enum import HealthCheckStatusEnum

from event_media.services.google_storage_service import ObjectStore
from event_media.services.health_check.async_health_check_interface import (
    HealthCheckProtocol,
)

logger = logging.getLogger(__name__)


class StorageHealthCheck(HealthCheckProtocol):
    """Checks that the ingest bucket is reachable with the worker's credentials."""

    def __init__(
        self,
        alias: str,
        get_object_store: Callable[[], Optional[ObjectStore]],
        bucket_id: str,
        tags: Optional[List[str]] = None,
    ) -> None:
        self.alias = alias
        self.get_object_store = get_object_store
        self.bucket_id = bucket_id
        self.tags = tags or []

    async def check_health(self) -> HealthCheckStatusEnum:
        object_store = self.get_object_store()
        if object_store is None:
            return HealthCheckStatusEnum.UNHEALTHY

        try:
            if await object_store.bucket_exists(self.bucket_id):
                return HealthCheckStatusEnum.HEALTHY
            logger.error(f"Bucket {self.bucket_id} does not exist")
        except Exception as e:
            logger.error(f"Storage health check failed: {e}")
        return HealthCheckStatusEnum.UNHEALTHY
