import time
from typing import List

from fastapi_healthcheck.enum import HealthCheckStatusEnum

from event_media.services.health_check.async_health_check_interface import (
    HealthCheckProtocol,
)


class HealthCheckFactory:
    def __init__(self) -> None:
        self._health_checks: List[HealthCheckProtocol] = []

    def add(self, item: HealthCheckProtocol) -> None:
        self._health_checks.append(item)

    async def check(self) -> dict:
        """Run every check in turn. One unhealthy dependency makes the service unhealthy."""
        status = HealthCheckStatusEnum.HEALTHY
        entities = []
        total_start = time.perf_counter()

        for item in self._health_checks:
            start = time.perf_counter()
            entity_status = await item.check_health()
            if entity_status == HealthCheckStatusEnum.UNHEALTHY:
                status = HealthCheckStatusEnum.UNHEALTHY

            entities.append(
                {
                    "alias": item.alias,
                    "status": entity_status.value,
                    "timeTaken": f"{time.perf_counter() - start:.4f}s",
                    "tags": item.tags or [],
                }
            )

        return {
            "status": status.value,
            "totalTimeTaken": f"{time.perf_counter() - total_start:.4f}s",
            "entities": entities,
        }
