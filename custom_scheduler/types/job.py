"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from custom_scheduler.constants import JobStatus
from custom_scheduler.rules import normalize_query_rules


class Job(BaseModel):
    """
    A job reserved upstream and waiting in the job index.

    This is the record pushed onto a capability queue and returned to the
    worker that claims it.
    """

    uuid: str
    queue_key: str
    agent_query_rules: list[str] = Field(default_factory=list)
    priority: int = 0
    scheduled_at: datetime | None = None
    reserved_at: datetime

    @property
    def capability_key(self) -> str:
        """Canonical key of the queue this job is indexed under."""
        return normalize_query_rules(self.agent_query_rules)


@dataclass
class JobMetadata:
    """
    Per-job metadata record kept next to the queues.

    Lives independently of the queue entry and outlasts the claim until
    its own TTL lapses.
    """

    uuid: str
    queue_key: str
    query_rules: str
    reserved_at: str
    status: JobStatus

    @classmethod
    def from_hash(cls, uuid: str, fields: dict[str, str]) -> "JobMetadata":
        """Build a metadata record from the stored hash fields."""
        return cls(
            uuid=uuid,
            queue_key=fields.get("queue_key", ""),
            query_rules=fields.get("query_rules", ""),
            reserved_at=fields.get("reserved_at", ""),
            status=JobStatus(fields["status"]),
        )
