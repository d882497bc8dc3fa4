"""
Health check routes.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from redis.exceptions import RedisError

from custom_scheduler.observability.metrics import get_metrics
from custom_scheduler.store import get_redis
from custom_scheduler.types.api import HealthResponse, ReadinessResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check that the API process is serving requests.",
)
async def health_check() -> HealthResponse:
    """Report that the API is up."""
    return HealthResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Check if the service can reach Redis.",
)
async def readiness_check() -> JSONResponse:
    """
    Kubernetes readiness probe endpoint.

    Returns:
        200 when Redis answers a PING, 503 otherwise.
    """
    try:
        await get_redis().ping()
    except (RedisError, RuntimeError, OSError):
        return JSONResponse(
            status_code=503,
            content=ReadinessResponse(ready=False, redis="unreachable").model_dump(),
        )
    return JSONResponse(content=ReadinessResponse(ready=True, redis="ok").model_dump())


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness probe endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
