"""
API module.
Contains the FastAPI application, routes, and middleware.
"""

from custom_scheduler.api.main import create_app, run

__all__ = ["create_app", "run"]
