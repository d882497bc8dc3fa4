"""
API routes module.
"""

from custom_scheduler.api.routes.health import router as health_router
from custom_scheduler.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
