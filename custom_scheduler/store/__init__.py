"""
Store module.
Contains the Redis connection and the job index.
"""

from custom_scheduler.store.connection import (
    close_store,
    create_client,
    get_redis,
    get_store,
    init_store,
)
from custom_scheduler.store.repository import JobStore, metadata_key, queue_key

__all__ = [
    "create_client",
    "init_store",
    "close_store",
    "get_redis",
    "get_store",
    "JobStore",
    "queue_key",
    "metadata_key",
]
