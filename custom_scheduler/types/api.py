"""
API request and response type definitions.
"""

from pydantic import BaseModel, Field

from custom_scheduler.constants import JobStatus


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"


class StatsResponse(BaseModel):
    """Queue length snapshot across all capability keys."""

    queues: dict[str, int] = Field(default_factory=dict)
    total: int = 0

    @classmethod
    def from_lengths(cls, lengths: dict[str, int]) -> "StatsResponse":
        """Build a response and its total from per-key lengths."""
        return cls(queues=lengths, total=sum(lengths.values()))


class CompleteJobResponse(BaseModel):
    """Response body after reporting a job complete."""

    uuid: str
    status: JobStatus = JobStatus.COMPLETE


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    ready: bool
    redis: str
