from abc import ABC, abstractmethod
from typing import List, Optional

from fastapi_healthcheck.enum import HealthCheckStatusEnum


class HealthCheckProtocol(ABC):
    """A dependency the ingest worker cannot run without."""

    alias: str
    tags: Optional[List[str]]

    @abstractmethod
    async def check_health(self) -> HealthCheckStatusEnum:
        pass
