from collections.abc import Awaitable, Callable

from fastapi.responses import JSONResponse
from fastapi_healthcheck.enum import HealthCheckStatusEnum

from event_media.services.health_check.async_health_check_factory import (
    HealthCheckFactory,
)


def create_health_check_route(
    factory: HealthCheckFactory,
) -> Callable[[], Awaitable[JSONResponse]]:
    """
    Creates an async endpoint function for health checks that can be used with FastAPI's add_api_route.

    Returns 503 (Service Unavailable) if any health check is unhealthy, 200 (OK) otherwise.
    """

    async def endpoint() -> JSONResponse:
        result = await factory.check()
        status_code = (
            200 if result["status"] == HealthCheckStatusEnum.HEALTHY.value else 503
        )
        return JSONResponse(content=result, status_code=status_code)

    return endpoint
