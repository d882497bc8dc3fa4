"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from custom_scheduler.constants import (
    METRIC_AGENT_DURATION,
    METRIC_AGENT_RUNS,
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_CLAIM_MISSES,
    METRIC_INSERT_FAILURES,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_INSERTED,
    METRIC_JOBS_LISTED,
    METRIC_JOBS_RESERVED,
    METRIC_MONITOR_ERRORS,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the scheduler.

    Collects metrics for:
    - Queue depth per capability key
    - Monitor listings, reservations and inserts
    - Claims, claim misses and completions
    - Agent runs on workers
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs waiting per capability key",
            ["query_rules"],
            registry=self._registry,
        )

        self.jobs_listed = Counter(
            METRIC_JOBS_LISTED,
            "Scheduled jobs seen in upstream listings",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_reserved = Counter(
            METRIC_JOBS_RESERVED,
            "Jobs granted by upstream batch reservations",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_inserted = Counter(
            METRIC_JOBS_INSERTED,
            "Jobs inserted into the job index",
            ["queue"],
            registry=self._registry,
        )

        self.insert_failures = Counter(
            METRIC_INSERT_FAILURES,
            "Reserved jobs that could not be inserted",
            ["queue"],
            registry=self._registry,
        )

        self.monitor_errors = Counter(
            METRIC_MONITOR_ERRORS,
            "Monitor polling errors",
            ["queue", "stage"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Jobs handed to workers",
            registry=self._registry,
        )

        self.claim_misses = Counter(
            METRIC_CLAIM_MISSES,
            "Claims that found no job",
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Completion reports received",
            ["found"],
            registry=self._registry,
        )

        self.agent_runs = Counter(
            METRIC_AGENT_RUNS,
            "Agent invocations by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.agent_duration = Histogram(
            METRIC_AGENT_DURATION,
            "Agent run duration in seconds",
            ["outcome"],
            buckets=(1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0),
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self._registry,
        )

    def record_page(self, queue: str, listed: int, reserved: int) -> None:
        """Record one listing page and its reservation result."""
        self.jobs_listed.labels(queue=queue).inc(listed)
        self.jobs_reserved.labels(queue=queue).inc(reserved)

    def record_insert(self, queue: str, success: bool) -> None:
        """Record an insert attempt for a reserved job."""
        if success:
            self.jobs_inserted.labels(queue=queue).inc()
        else:
            self.insert_failures.labels(queue=queue).inc()

    def record_monitor_error(self, queue: str, stage: str) -> None:
        """Record a listing or reservation failure."""
        self.monitor_errors.labels(queue=queue, stage=stage).inc()

    def record_claim(self, found: bool) -> None:
        """Record a claim attempt."""
        if found:
            self.jobs_claimed.inc()
        else:
            self.claim_misses.inc()

    def record_completion(self, found: bool) -> None:
        """Record a completion report."""
        self.jobs_completed.labels(found=str(found).lower()).inc()

    def record_agent_run(self, outcome: str, duration_seconds: float) -> None:
        """Record an agent run on a worker."""
        self.agent_runs.labels(outcome=outcome).inc()
        self.agent_duration.labels(outcome=outcome).observe(duration_seconds)

    def update_queue_depths(self, depths: dict[str, int]) -> None:
        """Replace the queue depth gauge with a fresh snapshot."""
        self.queue_depth.clear()
        for query_rules, depth in depths.items():
            self.queue_depth.labels(query_rules=query_rules).set(depth)

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
