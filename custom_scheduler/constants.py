"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states tracked in the job metadata record.

    State transitions:
    - RESERVED -> CLAIMED (a worker popped the job off its queue)
    - CLAIMED -> COMPLETE (the worker reported the agent exited)
    - RESERVED -> COMPLETE (completion reported without a recorded claim)

    Transitions only move forward; a status never regresses.
    """

    RESERVED = "reserved"
    CLAIMED = "claimed"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        """Position of the status in the lifecycle."""
        return _STATUS_ORDER.index(self)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed."""
        return target.rank > self.rank


_STATUS_ORDER: tuple[JobStatus, ...] = (
    JobStatus.RESERVED,
    JobStatus.CLAIMED,
    JobStatus.COMPLETE,
)

# Storage layout
QUEUE_KEY_PREFIX = "jobs:"
METADATA_KEY_PREFIX = "job:"
QUERY_RULE_SEPARATOR = ","
DEFAULT_STORE_TTL_SECONDS = 3600

# Upstream defaults
DEFAULT_PAGE_SIZE = 50
DEFAULT_RESERVATION_EXPIRY_SECONDS = 300
STACK_TYPE_CUSTOM = "custom"

# HTTP headers
WORKER_ID_HEADER = "X-Worker-ID"
REQUEST_ID_HEADER = "Request-Id"

# Metrics names
METRIC_QUEUE_DEPTH = "scheduler_queue_depth"
METRIC_JOBS_INSERTED = "scheduler_jobs_inserted_total"
METRIC_JOBS_CLAIMED = "scheduler_jobs_claimed_total"
METRIC_CLAIM_MISSES = "scheduler_claim_misses_total"
METRIC_JOBS_COMPLETED = "scheduler_jobs_completed_total"
METRIC_JOBS_RESERVED = "scheduler_jobs_reserved_total"
METRIC_JOBS_LISTED = "scheduler_jobs_listed_total"
METRIC_INSERT_FAILURES = "scheduler_insert_failures_total"
METRIC_MONITOR_ERRORS = "scheduler_monitor_errors_total"
METRIC_AGENT_RUNS = "scheduler_agent_runs_total"
METRIC_AGENT_DURATION = "scheduler_agent_duration_seconds"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_POLL_QUEUE = "poll_queue"
SPAN_RESERVE_JOBS = "reserve_jobs"
SPAN_RUN_AGENT = "run_agent"
