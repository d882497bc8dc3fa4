"""
Stacks API request and response type definitions.

Only the fields the scheduler consumes are modelled; unknown fields in
upstream responses are ignored.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _StacksModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RegisterStackRequest(_StacksModel):
    """Body for registering the scheduler as a custom stack."""

    key: str
    type: str
    queue_key: str
    metadata: dict[str, str] = Field(default_factory=dict)


class Stack(_StacksModel):
    """A registered stack."""

    key: str
    type: str | None = None
    cluster_queue_key: str | None = None


class ScheduledJob(_StacksModel):
    """A job waiting upstream for an agent on a cluster queue."""

    id: str
    priority: int = 0
    agent_query_rules: list[str] = Field(default_factory=list)
    scheduled_at: datetime | None = None


class ClusterQueue(_StacksModel):
    """The cluster queue a listing page belongs to."""

    id: str | None = None
    key: str | None = None
    paused: bool = False


class PageInfo(_StacksModel):
    """Cursor pagination details."""

    has_next_page: bool = False
    end_cursor: str | None = None


class ListScheduledJobsResponse(_StacksModel):
    """One page of scheduled jobs."""

    jobs: list[ScheduledJob] = Field(default_factory=list)
    cluster_queue: ClusterQueue = Field(default_factory=ClusterQueue)
    page_info: PageInfo = Field(default_factory=PageInfo)


class BatchReserveJobsRequest(_StacksModel):
    """Body for reserving a batch of jobs."""

    job_uuids: list[str]
    reservation_expiry_seconds: int


class BatchReserveJobsResponse(_StacksModel):
    """Subset of requested jobs the authority granted."""

    reserved: list[str] = Field(default_factory=list)
    not_reserved: list[str] = Field(default_factory=list)
