"""
FastAPI application entry point.

The server process serves the matching API and, when an agent token is
configured, registers the stack and runs the reservation monitor alongside.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware

from custom_scheduler import __version__
from custom_scheduler.api.middleware import access_log_middleware
from custom_scheduler.api.routes import health_router, jobs_router
from custom_scheduler.config import get_settings
from custom_scheduler.errors import StacksAPIError
from custom_scheduler.monitor import Monitor
from custom_scheduler.observability.logging import setup_logging
from custom_scheduler.observability.metrics import setup_metrics
from custom_scheduler.observability.tracing import instrument_fastapi, setup_tracing
from custom_scheduler.stacks import StacksClient, register_stack
from custom_scheduler.store import JobStore, close_store, init_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup connects to Redis (fatal on failure), then registers the stack
    and starts the monitor. Shutdown stops the monitor within the grace
    period, deregisters the stack and closes Redis.
    """
    settings = get_settings()

    setup_logging()
    setup_metrics()
    setup_tracing()
    redis_client = await init_store()

    stacks_client: StacksClient | None = None
    monitor: Monitor | None = None

    if settings.buildkite_agent_token:
        stacks_client = StacksClient(settings.buildkite_agent_token)
        await register_stack(stacks_client, settings)
        monitor = Monitor(
            client=stacks_client,
            store=JobStore(redis_client),
            stack_key=settings.stack_key,
            queues=settings.scheduler_queues,
        )
        monitor.start()
    else:
        logger.warning("BUILDKITE_AGENT_TOKEN not set, reservation monitor disabled")

    app.state.monitor = monitor
    logger.info("Application started", extra={"listen": f"{settings.api_host}:{settings.api_port}"})

    yield

    logger.info("Shutting down gracefully...")
    if monitor is not None:
        await monitor.stop(settings.shutdown_grace_seconds)

    if stacks_client is not None:
        try:
            await stacks_client.deregister_stack(settings.stack_key)
            logger.info("Deregistered stack", extra={"stack_key": settings.stack_key})
        except StacksAPIError as e:
            logger.error(f"Failed to deregister stack: {e}")
        await stacks_client.close()

    await close_store()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Custom Scheduler API",
        description="Capability-matched job distribution for Buildkite workers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(BaseHTTPMiddleware, dispatch=access_log_middleware)

    app.include_router(health_router)
    app.include_router(jobs_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    run()
