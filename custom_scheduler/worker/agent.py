"""
Buildkite agent invocation.

A worker runs the agent once per claimed job with ``--acquire-job`` so the
agent picks up exactly that job and exits when it finishes.
"""

import asyncio
import logging
import socket
import time
from collections.abc import Iterable

from custom_scheduler.constants import SPAN_RUN_AGENT
from custom_scheduler.observability.metrics import MetricsCollector, get_metrics
from custom_scheduler.observability.tracing import get_tracer

logger = logging.getLogger(__name__)

QUEUE_TAG = "queue"
OUTPUT_LINE_LIMIT = 1024 * 1024
OUTPUT_READ_SIZE = 64 * 1024


def merge_tags(*tag_groups: Iterable[str]) -> str:
    """
    Combine tag lists into the comma-separated ``--tags`` value.

    For the ``queue`` key the last value wins and is emitted once, at the
    end, so later sources (extra tags) override earlier ones (query rules).
    All other tags pass through as-is, duplicates included. Entries without
    ``=`` are dropped.

    Example:
        ["queue=default", "arch=amd64"], ["queue=production"]
        -> "arch=amd64,queue=production"
    """
    result: list[str] = []
    last_queue = ""

    for group in tag_groups:
        for tag in group:
            key, sep, value = tag.partition("=")
            if not sep:
                continue
            if key == QUEUE_TAG:
                last_queue = value
            else:
                result.append(tag)

    if last_queue:
        result.append(f"{QUEUE_TAG}={last_queue}")

    return ",".join(result)


def build_agent_args(
    job_id: str,
    token: str,
    tags: str,
    name: str,
    queue: str | None = None,
) -> list[str]:
    """Build the ``buildkite-agent start`` arguments for one job."""
    args = [
        "start",
        "--acquire-job", job_id,
        "--token", token,
        "--tags", tags,
        "--name", name,
    ]
    if queue:
        args.extend(["--queue", queue])
    return args


def default_agent_name() -> str:
    """Agent name derived from the host name."""
    try:
        hostname = socket.gethostname() or "unknown"
    except OSError:
        hostname = "unknown"
    return f"worker-{hostname}"


class AgentRunner:
    """
    Runs the agent binary for a claimed job and forwards its output.

    The child process is never killed by the runner: if the awaiting task
    is cancelled, the agent keeps running on its own.
    """

    def __init__(
        self,
        agent_path: str,
        token: str,
        agent_query_rules: list[str],
        tags: list[str] | None = None,
        queue: str | None = None,
        name: str | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the runner.

        Args:
            agent_path: Path to the ``buildkite-agent`` binary.
            token: Agent token passed with ``--token``.
            agent_query_rules: The worker's matching rules, also sent as tags.
            tags: Extra metadata tags, not used for matching.
            queue: Optional queue name passed with ``--queue``.
            name: Agent name. Defaults to ``worker-<hostname>``.
            metrics: Metrics collector.
        """
        self.agent_path = agent_path
        self.token = token
        self.agent_query_rules = list(agent_query_rules)
        self.tags = list(tags or [])
        self.queue = queue or None
        self.name = name or default_agent_name()
        self._metrics = metrics or get_metrics()

    @property
    def tags_value(self) -> str:
        """The merged ``--tags`` value."""
        return merge_tags(self.agent_query_rules, self.tags)

    def args_for(self, job_id: str) -> list[str]:
        """Command-line arguments for running ``job_id``."""
        return build_agent_args(
            job_id=job_id,
            token=self.token,
            tags=self.tags_value,
            name=self.name,
            queue=self.queue,
        )

    async def run(self, job_id: str) -> int:
        """
        Run the agent for a job and wait for it to exit.

        Stdout and stderr are merged and logged line by line, prefixed with
        the short job id.

        Args:
            job_id: The claimed job UUID.

        Returns:
            The agent's exit code.

        Raises:
            OSError: If the binary cannot be started.
        """
        start_time = time.monotonic()

        logger.info(
            "Starting agent",
            extra={
                "job_id": job_id,
                "tags": self.tags_value,
                "queue": self.queue,
                "agent_name": self.name,
            },
        )

        with get_tracer().start_as_current_span(SPAN_RUN_AGENT) as span:
            span.set_attribute("job_id", job_id)

            try:
                process = await asyncio.create_subprocess_exec(
                    self.agent_path,
                    *self.args_for(job_id),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError:
                self._metrics.record_agent_run("launch_error", time.monotonic() - start_time)
                raise

            try:
                if process.stdout is not None:
                    await self._forward_output(process.stdout, job_id)
            except Exception as e:
                logger.error(f"Error reading agent output: {e}", extra={"job_id": job_id})
            exit_code = await process.wait()
            span.set_attribute("exit_code", exit_code)

        outcome = "success" if exit_code == 0 else "failure"
        self._metrics.record_agent_run(outcome, time.monotonic() - start_time)
        return exit_code

    async def _forward_output(self, stream: asyncio.StreamReader, job_id: str) -> None:
        """
        Log the agent's output line by line until EOF.

        Lines longer than ``OUTPUT_LINE_LIMIT`` are logged in pieces of at
        most that size so the pipe is always drained.
        """
        prefix = f"[{job_id[:8]}]"
        buffer = b""

        while True:
            chunk = await stream.read(OUTPUT_READ_SIZE)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            while len(buffer) >= OUTPUT_LINE_LIMIT:
                lines.append(buffer[:OUTPUT_LINE_LIMIT])
                buffer = buffer[OUTPUT_LINE_LIMIT:]
            for raw_line in lines:
                self._log_line(raw_line, prefix, job_id)

        if buffer:
            self._log_line(buffer, prefix, job_id)

    @staticmethod
    def _log_line(raw_line: bytes, prefix: str, job_id: str) -> None:
        line = raw_line.decode("utf-8", errors="replace").rstrip()
        if line:
            logger.info(line, extra={"prefix": prefix, "job_id": job_id})
