"""
Type definitions for the scheduler.
Contains input/output type definitions grouped by module.
"""

from custom_scheduler.types.api import (
    CompleteJobResponse,
    HealthResponse,
    ReadinessResponse,
    StatsResponse,
)
from custom_scheduler.types.job import Job, JobMetadata
from custom_scheduler.types.stacks import (
    BatchReserveJobsRequest,
    BatchReserveJobsResponse,
    ClusterQueue,
    ListScheduledJobsResponse,
    PageInfo,
    RegisterStackRequest,
    ScheduledJob,
    Stack,
)

__all__ = [
    # API types
    "HealthResponse",
    "StatsResponse",
    "CompleteJobResponse",
    "ReadinessResponse",
    # Job types
    "Job",
    "JobMetadata",
    # Stacks API types
    "RegisterStackRequest",
    "Stack",
    "ScheduledJob",
    "ClusterQueue",
    "PageInfo",
    "ListScheduledJobsResponse",
    "BatchReserveJobsRequest",
    "BatchReserveJobsResponse",
]
