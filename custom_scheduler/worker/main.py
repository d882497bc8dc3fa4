"""
Worker process for claiming and running jobs.

The worker polls the matching API for a job that fits its agent query
rules, runs the Buildkite agent against it and reports completion. One job
is in flight at a time.
"""

import asyncio
import logging
import signal
import uuid

import httpx
from prometheus_client import start_http_server

from custom_scheduler.config import Settings, get_settings
from custom_scheduler.constants import WORKER_ID_HEADER
from custom_scheduler.errors import MatchingAPIError
from custom_scheduler.observability.logging import bind_context, setup_logging
from custom_scheduler.observability.tracing import setup_tracing
from custom_scheduler.rules import normalize_query_rules
from custom_scheduler.runtime import BackgroundLoop
from custom_scheduler.types.job import Job
from custom_scheduler.worker.agent import AgentRunner

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls the matching API and runs the agent.

    Features:
    - Claims by normalized agent query rules, plus ``queue=<name>`` when a
      queue is configured
    - Strictly sequential: a slow job delays the next poll
    - Completion is reported whatever the agent's exit code
    - Graceful shutdown waits for the running agent up to a grace period
    """

    def __init__(
        self,
        api_server: str | None = None,
        agent_query_rules: list[str] | None = None,
        tags: list[str] | None = None,
        queue: str | None = None,
        agent_path: str | None = None,
        agent_token: str | None = None,
        poll_interval: float | None = None,
        worker_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        runner: AgentRunner | None = None,
    ):
        """
        Initialize the worker.

        Args:
            api_server: Matching API base URL.
            agent_query_rules: Rules this worker matches jobs on.
            tags: Extra agent tags (metadata only, not used for matching).
            queue: Optional Buildkite queue name.
            agent_path: Path to the ``buildkite-agent`` binary.
            agent_token: Buildkite agent token.
            poll_interval: Seconds between polls.
            worker_id: Unique worker identifier. Defaults to a new UUID.
            transport: Optional httpx transport (used by tests).
            runner: Optional pre-built agent runner.

        Raises:
            ValueError: If there is nothing to match on or no agent token.
        """
        settings = get_settings()

        self.worker_id = worker_id or str(uuid.uuid4())
        self.queue = settings.worker_queue if queue is None else queue
        self.agent_query_rules = list(
            settings.worker_agent_query_rules if agent_query_rules is None else agent_query_rules
        )
        self.tags = list(settings.worker_tags if tags is None else tags)
        self.poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )

        if not self.agent_query_rules and not self.queue:
            raise ValueError("at least one agent query rule is required")

        token = agent_token or settings.buildkite_agent_token
        if runner is None and not token:
            raise ValueError("an agent token is required")

        self.runner = runner or AgentRunner(
            agent_path=agent_path or settings.buildkite_agent_path,
            token=token or "",
            agent_query_rules=self.agent_query_rules,
            tags=self.tags,
            queue=self.queue,
        )

        self._client = httpx.AsyncClient(
            base_url=(api_server or settings.worker_api_server).rstrip("/"),
            headers={WORKER_ID_HEADER: self.worker_id},
            timeout=settings.worker_http_timeout_seconds,
            transport=transport,
        )
        self.loop = BackgroundLoop("worker", self.poll_once, self.poll_interval)

    @property
    def claim_rules(self) -> list[str]:
        """Rules sent with each claim."""
        rules = list(self.agent_query_rules)
        if self.queue:
            rules.insert(0, f"queue={self.queue}")
        return rules

    def start(self) -> asyncio.Task:
        """Start polling in the background."""
        logger.info(
            "Starting worker",
            extra={
                "worker_id": self.worker_id,
                "query_rules": self.claim_rules,
                "poll_interval": self.poll_interval,
            },
        )
        return self.loop.start()

    async def stop(self, grace_seconds: float) -> bool:
        """
        Stop polling and wait for the in-flight job.

        Args:
            grace_seconds: Longest time to wait for a running agent.

        Returns:
            True if the worker stopped within the grace period.
        """
        logger.info("Worker shutting down", extra={"worker_id": self.worker_id})
        stopped = await self.loop.stop(grace_seconds)
        await self._client.aclose()
        return stopped

    async def poll_once(self) -> None:
        """One tick of the poll loop."""
        try:
            await self.process_next_job()
        except MatchingAPIError as e:
            logger.error(f"Error processing job: {e}", extra={"worker_id": self.worker_id})

    async def process_next_job(self) -> Job | None:
        """
        Claim one job, run it and report completion.

        Returns:
            The processed job, or None if none was available.

        Raises:
            MatchingAPIError: If the claim request fails.
        """
        job = await self.get_job()
        if job is None:
            logger.debug("No job available", extra={"worker_id": self.worker_id})
            return None

        logger.info(
            "Claimed job",
            extra={
                "job_id": job.uuid,
                "queue": job.queue_key,
                "rules": job.agent_query_rules,
            },
        )

        try:
            exit_code = await self.runner.run(job.uuid)
        except Exception as e:
            logger.error(f"Error running agent: {e}", extra={"job_id": job.uuid})
        else:
            if exit_code != 0:
                logger.error(
                    "Agent exited with non-zero status",
                    extra={"job_id": job.uuid, "exit_code": exit_code},
                )

        try:
            await self.complete_job(job.uuid)
        except MatchingAPIError as e:
            logger.error(f"Error marking job complete: {e}", extra={"job_id": job.uuid})
        else:
            logger.info("Completed job", extra={"job_id": job.uuid})

        return job

    async def get_job(self) -> Job | None:
        """
        Ask the matching API for a job.

        Returns:
            The claimed job, or None on 204.

        Raises:
            MatchingAPIError: On transport errors or unexpected statuses.
        """
        params = {"query": normalize_query_rules(self.claim_rules)}
        try:
            response = await self._client.get("/jobs", params=params)
        except httpx.HTTPError as e:
            raise MatchingAPIError(f"getting job: {e}") from e

        if response.status_code == httpx.codes.NO_CONTENT:
            return None
        if response.status_code != httpx.codes.OK:
            raise MatchingAPIError(
                f"unexpected status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            return Job.model_validate_json(response.content)
        except ValueError as e:
            raise MatchingAPIError(f"decoding job: {e}") from e

    async def complete_job(self, job_id: str) -> None:
        """
        Report a job complete. Not retried on failure.

        Raises:
            MatchingAPIError: On transport errors or non-200 responses.
        """
        try:
            response = await self._client.post(f"/jobs/{job_id}/complete")
        except httpx.HTTPError as e:
            raise MatchingAPIError(f"completing job: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise MatchingAPIError(
                f"unexpected status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )


async def run_async(settings: Settings | None = None) -> None:
    """Run the worker until SIGTERM/SIGINT."""
    settings = settings or get_settings()
    setup_logging()
    setup_tracing()

    worker = Worker()
    bind_context(worker_id=worker.worker_id)

    if settings.worker_metrics_port:
        start_http_server(settings.worker_metrics_port)

    logger.info(
        "Starting worker...",
        extra={
            "api_server": settings.worker_api_server,
            "query_rules": worker.agent_query_rules,
            "tags": worker.tags,
            "queue": worker.queue,
            "agent_path": worker.runner.agent_path,
        },
    )

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_requested.set)

    worker.start()
    await stop_requested.wait()

    logger.info("Shutting down gracefully...")
    await worker.stop(settings.shutdown_grace_seconds)
    logger.info("Shutdown complete")


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
