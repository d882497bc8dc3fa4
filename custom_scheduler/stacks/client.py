"""
Async client for the Buildkite Stacks API.

Covers the calls the scheduler needs: stack registration, paginated
scheduled-job listings per cluster queue, and batch reservation.
"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from custom_scheduler import __version__
from custom_scheduler.config import Settings, get_settings
from custom_scheduler.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_RESERVATION_EXPIRY_SECONDS,
    STACK_TYPE_CUSTOM,
)
from custom_scheduler.errors import StacksAPIError
from custom_scheduler.types.stacks import (
    BatchReserveJobsRequest,
    BatchReserveJobsResponse,
    ListScheduledJobsResponse,
    RegisterStackRequest,
    Stack,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StacksClient:
    """
    Stacks API client.

    Every call raises ``StacksAPIError`` on transport failures and non-2xx
    responses; retrying is left to the caller's next poll.
    """

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            token: Buildkite agent token.
            base_url: API root. Defaults to ``stacks_api_base_url``.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.stacks_api_base_url).rstrip("/"),
            headers={
                "Authorization": f"Token {token}",
                "User-Agent": f"custom-scheduler/{__version__}",
            },
            timeout=settings.stacks_api_timeout_seconds if timeout is None else timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "StacksClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def register_stack(
        self,
        key: str,
        queue_key: str,
        metadata: dict[str, str] | None = None,
    ) -> Stack:
        """Register this scheduler as a custom stack."""
        body = RegisterStackRequest(
            key=key,
            type=STACK_TYPE_CUSTOM,
            queue_key=queue_key,
            metadata=metadata or {},
        )
        data = await self._request("POST", "/stacks/register", json=body.model_dump())
        return self._parse(Stack, data)

    async def deregister_stack(self, key: str) -> None:
        """Deregister a stack."""
        await self._request("POST", f"/stacks/{key}/deregister")

    async def list_scheduled_jobs(
        self,
        stack_key: str,
        queue_key: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ListScheduledJobsResponse:
        """
        List one page of jobs scheduled on a cluster queue.

        Args:
            stack_key: The registered stack key.
            queue_key: The cluster queue key.
            page_size: Maximum jobs per page.
            cursor: ``end_cursor`` of the previous page.

        Returns:
            The page, including the queue's paused flag.
        """
        params: dict[str, Any] = {"queue_key": queue_key, "limit": page_size}
        if cursor:
            params["cursor"] = cursor
        data = await self._request(
            "GET", f"/stacks/{stack_key}/scheduled_jobs", params=params
        )
        return self._parse(ListScheduledJobsResponse, data)

    async def batch_reserve_jobs(
        self,
        stack_key: str,
        job_uuids: list[str],
        reservation_expiry_seconds: int = DEFAULT_RESERVATION_EXPIRY_SECONDS,
    ) -> BatchReserveJobsResponse:
        """
        Reserve a batch of jobs for this stack.

        Args:
            stack_key: The registered stack key.
            job_uuids: Jobs to reserve.
            reservation_expiry_seconds: How long upstream holds the jobs.

        Returns:
            The granted and refused job ids.
        """
        body = BatchReserveJobsRequest(
            job_uuids=job_uuids,
            reservation_expiry_seconds=reservation_expiry_seconds,
        )
        data = await self._request(
            "POST",
            f"/stacks/{stack_key}/scheduled_jobs/batch_reserve",
            json=body.model_dump(),
        )
        return self._parse(BatchReserveJobsResponse, data)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StacksAPIError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise StacksAPIError(
                f"{method} {path} failed",
                status_code=response.status_code,
                body=response.text[:1000],
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise StacksAPIError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _parse(model: type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise StacksAPIError(f"unexpected {model.__name__} payload: {e}") from e


async def register_stack(client: StacksClient, settings: Settings) -> Stack:
    """
    Register the configured stack under the first configured queue.

    Raises:
        StacksAPIError: If registration fails. This is fatal at startup.
        ValueError: If no queues are configured.
    """
    if not settings.scheduler_queues:
        raise ValueError("at least one queue is required")

    stack = await client.register_stack(
        key=settings.stack_key,
        queue_key=settings.scheduler_queues[0],
        metadata={"version": __version__, "type": "custom-scheduler"},
    )
    logger.info(
        "Registered stack",
        extra={"key": stack.key, "queue": stack.cluster_queue_key},
    )
    return stack
