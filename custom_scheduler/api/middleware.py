"""
Request logging middleware.
"""

import logging
import time
import uuid
from collections.abc import Callable

from fastapi import Request
from starlette.responses import Response

from custom_scheduler.constants import REQUEST_ID_HEADER, WORKER_ID_HEADER
from custom_scheduler.observability.metrics import get_metrics

logger = logging.getLogger("custom_scheduler.api.access")

# Probe and scrape traffic is not logged
QUIET_PATHS = frozenset({"/live", "/ready", "/metrics"})


def _endpoint_label(request: Request) -> str:
    """Route template for metrics labels, so ids do not explode cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


async def access_log_middleware(request: Request, call_next: Callable) -> Response:
    """
    Log every request with its status and duration and record API metrics.

    The ``Request-Id`` header is echoed back, or generated when absent.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    start = time.perf_counter()

    response = await call_next(request)

    duration = time.perf_counter() - start
    response.headers[REQUEST_ID_HEADER] = request_id

    get_metrics().record_api_request(
        method=request.method,
        endpoint=_endpoint_label(request),
        status=response.status_code,
        duration_seconds=duration,
    )

    if request.url.path not in QUIET_PATHS:
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration * 1000, 2),
                "request_id": request_id,
                "worker_id": request.headers.get(WORKER_ID_HEADER),
            },
        )

    return response
