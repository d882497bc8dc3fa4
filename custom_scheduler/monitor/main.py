"""
Reservation monitor.

Polls the Stacks API for jobs scheduled on each configured cluster queue,
reserves them in batches and indexes the granted ones so workers can claim
them.
"""

import asyncio
import logging
import signal
from datetime import UTC, datetime
from typing import Protocol

from custom_scheduler.config import Settings, get_settings
from custom_scheduler.constants import SPAN_POLL_QUEUE, SPAN_RESERVE_JOBS
from custom_scheduler.errors import StacksAPIError
from custom_scheduler.observability.logging import setup_logging
from custom_scheduler.observability.metrics import MetricsCollector, get_metrics
from custom_scheduler.observability.tracing import get_tracer
from custom_scheduler.runtime import BackgroundLoop
from custom_scheduler.stacks import StacksClient, register_stack
from custom_scheduler.store import JobStore, close_store, init_store
from custom_scheduler.types.job import Job
from custom_scheduler.types.stacks import (
    BatchReserveJobsResponse,
    ListScheduledJobsResponse,
    ScheduledJob,
)

logger = logging.getLogger(__name__)


class SchedulingAuthority(Protocol):
    """The Stacks API calls the monitor depends on."""

    async def list_scheduled_jobs(
        self,
        stack_key: str,
        queue_key: str,
        page_size: int = ...,
        cursor: str | None = ...,
    ) -> ListScheduledJobsResponse: ...

    async def batch_reserve_jobs(
        self,
        stack_key: str,
        job_uuids: list[str],
        reservation_expiry_seconds: int = ...,
    ) -> BatchReserveJobsResponse: ...


class Monitor:
    """
    Reservation monitor that moves scheduled jobs into the job index.

    Each tick walks the configured queues one after another. Per queue it:
    1. Pages through the scheduled-job listing from a fresh cursor
    2. Stops early if the queue is paused
    3. Batch-reserves every page and inserts the granted jobs

    Jobs listed but not granted lost a race to another stack and are
    dropped. Errors abandon the current queue for this tick only.
    """

    def __init__(
        self,
        client: SchedulingAuthority,
        store: JobStore,
        stack_key: str,
        queues: list[str],
        interval: float | None = None,
        page_size: int | None = None,
        reservation_expiry_seconds: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            client: Stacks API client.
            store: Job index to insert reserved jobs into.
            stack_key: The registered stack key.
            queues: Cluster queue keys to poll.
            interval: Seconds between ticks.
            page_size: Jobs requested per listing page.
            reservation_expiry_seconds: Upstream hold time for reservations.
            metrics: Metrics collector.
        """
        settings = get_settings()
        self.client = client
        self.store = store
        self.stack_key = stack_key
        self.queues = list(queues)
        self.interval = (
            settings.monitor_poll_interval_seconds if interval is None else interval
        )
        self.page_size = settings.monitor_page_size if page_size is None else page_size
        self.reservation_expiry_seconds = (
            settings.reservation_expiry_seconds
            if reservation_expiry_seconds is None
            else reservation_expiry_seconds
        )
        self._metrics = metrics or get_metrics()
        self.loop = BackgroundLoop("monitor", self.poll_once, self.interval)

    def start(self) -> asyncio.Task:
        """Start polling in the background."""
        logger.info(
            "Starting monitor",
            extra={"queues": self.queues, "interval": self.interval},
        )
        return self.loop.start()

    async def stop(self, grace_seconds: float) -> bool:
        """Stop polling, waiting up to ``grace_seconds`` for the current tick."""
        logger.info("Monitor shutting down")
        return await self.loop.stop(grace_seconds)

    async def poll_once(self) -> None:
        """Run one tick across all configured queues."""
        for queue_key in self.queues:
            if self.loop.stopping:
                break
            try:
                await self.poll_queue(queue_key)
            except Exception as e:
                logger.error(
                    f"Error polling queue: {e}",
                    extra={"queue": queue_key},
                )

    async def poll_queue(self, queue_key: str) -> int:
        """
        Page through one queue's scheduled jobs and reserve them.

        Args:
            queue_key: The cluster queue key.

        Returns:
            Number of jobs listed and sent for reservation.

        Raises:
            StacksAPIError: If a listing or reservation call fails.
        """
        cursor: str | None = None
        jobs_processed = 0

        with get_tracer().start_as_current_span(SPAN_POLL_QUEUE) as span:
            span.set_attribute("queue", queue_key)

            while True:
                try:
                    page = await self.client.list_scheduled_jobs(
                        stack_key=self.stack_key,
                        queue_key=queue_key,
                        page_size=self.page_size,
                        cursor=cursor,
                    )
                except StacksAPIError:
                    self._metrics.record_monitor_error(queue_key, "list")
                    raise

                if page.cluster_queue.paused:
                    logger.info("Queue is paused, skipping", extra={"queue": queue_key})
                    return jobs_processed

                if page.jobs:
                    try:
                        await self.reserve_jobs(queue_key, page.jobs)
                    except StacksAPIError:
                        self._metrics.record_monitor_error(queue_key, "reserve")
                        raise
                    jobs_processed += len(page.jobs)

                if not page.page_info.has_next_page:
                    break
                cursor = page.page_info.end_cursor

            span.set_attribute("jobs_processed", jobs_processed)

        if jobs_processed > 0:
            logger.info(
                "Processed jobs",
                extra={"count": jobs_processed, "queue": queue_key},
            )

        return jobs_processed

    async def reserve_jobs(self, queue_key: str, jobs: list[ScheduledJob]) -> list[Job]:
        """
        Reserve a page of jobs and index the granted ones.

        Args:
            queue_key: The cluster queue the jobs were listed on.
            jobs: The listed jobs.

        Returns:
            The jobs that were reserved and inserted.

        Raises:
            StacksAPIError: If the batch reservation call fails.
        """
        if not jobs:
            return []

        with get_tracer().start_as_current_span(SPAN_RESERVE_JOBS) as span:
            span.set_attribute("queue", queue_key)
            span.set_attribute("requested", len(jobs))

            reserved = await self.client.batch_reserve_jobs(
                stack_key=self.stack_key,
                job_uuids=[job.id for job in jobs],
                reservation_expiry_seconds=self.reservation_expiry_seconds,
            )
            granted = set(reserved.reserved)
            span.set_attribute("reserved", len(granted))
            self._metrics.record_page(queue_key, listed=len(jobs), reserved=len(granted))

            inserted: list[Job] = []
            for scheduled in jobs:
                if scheduled.id not in granted:
                    logger.debug(
                        "Job not reserved",
                        extra={"job_id": scheduled.id, "queue": queue_key},
                    )
                    continue

                job = Job(
                    uuid=scheduled.id,
                    queue_key=queue_key,
                    agent_query_rules=scheduled.agent_query_rules,
                    priority=scheduled.priority,
                    scheduled_at=scheduled.scheduled_at,
                    reserved_at=datetime.now(UTC),
                )

                try:
                    await self.store.insert(job)
                except Exception as e:
                    self._metrics.record_insert(queue_key, success=False)
                    logger.error(
                        f"Error storing job: {e}",
                        extra={"job_id": scheduled.id, "queue": queue_key},
                    )
                    continue

                self._metrics.record_insert(queue_key, success=True)
                inserted.append(job)

        logger.info(
            "Reserved jobs",
            extra={"reserved": len(granted), "total": len(jobs), "queue": queue_key},
        )
        return inserted


async def run_async(settings: Settings | None = None) -> None:
    """
    Run the monitor as a standalone process.

    Registers the stack, polls until SIGTERM/SIGINT, then deregisters.
    """
    settings = settings or get_settings()
    setup_logging()

    if not settings.buildkite_agent_token:
        raise RuntimeError("BUILDKITE_AGENT_TOKEN is required to run the monitor")

    redis_client = await init_store()
    client = StacksClient(settings.buildkite_agent_token)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await register_stack(client, settings)
        monitor = Monitor(
            client=client,
            store=JobStore(redis_client),
            stack_key=settings.stack_key,
            queues=settings.scheduler_queues,
        )
        monitor.start()

        await stop_requested.wait()
        logger.info("Shutting down gracefully...")
        await monitor.stop(settings.shutdown_grace_seconds)

        try:
            await client.deregister_stack(settings.stack_key)
            logger.info("Deregistered stack", extra={"stack_key": settings.stack_key})
        except StacksAPIError as e:
            logger.error(f"Failed to deregister stack: {e}")
    finally:
        await client.close()
        await close_store()

    logger.info("Shutdown complete")


def run() -> None:
    """Run the monitor."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
