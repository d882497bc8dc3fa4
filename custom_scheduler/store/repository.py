"""
Job index backed by Redis.
Implements the queue and metadata access patterns for reserved jobs.
"""

import logging
from collections.abc import Iterable

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from custom_scheduler.config import get_settings
from custom_scheduler.constants import (
    METADATA_KEY_PREFIX,
    QUEUE_KEY_PREFIX,
    JobStatus,
)
from custom_scheduler.errors import InvalidTransitionError, StoreError
from custom_scheduler.rules import normalize_query_rules
from custom_scheduler.types.job import Job, JobMetadata

logger = logging.getLogger(__name__)


def queue_key(capability_key: str) -> str:
    """Redis key of the list holding jobs for a capability key."""
    return f"{QUEUE_KEY_PREFIX}{capability_key}"


def metadata_key(job_id: str) -> str:
    """Redis key of the hash holding a job's metadata."""
    return f"{METADATA_KEY_PREFIX}{job_id}"


class JobStore:
    """
    Job index over Redis.

    Layout:
    - ``jobs:<capability key>``: list of serialized jobs, FIFO by insertion
    - ``job:<uuid>``: hash of queue_key, query_rules, reserved_at, status

    Both keys carry the same TTL, set independently and refreshed on insert.
    Claims are a single LPOP so each queued job is handed out at most once.
    """

    def __init__(self, client: Redis, ttl_seconds: int | None = None):
        """
        Initialize the store with a Redis client.

        Args:
            client: Async Redis client created with ``decode_responses=True``.
            ttl_seconds: Lifetime of queues and metadata. Defaults to the
                configured ``store_ttl_seconds``.
        """
        self._client = client
        if ttl_seconds is None:
            ttl_seconds = get_settings().store_ttl_seconds
        self._ttl = ttl_seconds

    async def insert(self, job: Job) -> None:
        """
        Append a job to the tail of its capability queue.

        Rewrites the job's metadata with status ``reserved`` and refreshes
        the TTL of both the queue and the metadata.

        Args:
            job: The reserved job.

        Raises:
            StoreError: If Redis rejects the write.
        """
        capability_key = job.capability_key
        list_key = queue_key(capability_key)
        meta_key = metadata_key(job.uuid)

        try:
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.rpush(list_key, job.model_dump_json())
                pipe.expire(list_key, self._ttl)
                pipe.hset(
                    meta_key,
                    mapping={
                        "queue_key": job.queue_key,
                        "query_rules": capability_key,
                        "reserved_at": job.reserved_at.isoformat(),
                        "status": JobStatus.RESERVED.value,
                    },
                )
                pipe.expire(meta_key, self._ttl)
                await pipe.execute()
        except RedisError as e:
            raise StoreError(f"adding job {job.uuid} to redis: {e}") from e

        logger.debug(
            "Indexed job",
            extra={"job_id": job.uuid, "query_rules": capability_key},
        )

    async def claim(self, rules: Iterable[str]) -> Job | None:
        """
        Remove and return the oldest job for a rule set.

        Args:
            rules: Agent query rules in any order.

        Returns:
            The claimed job, or None if the queue is empty or absent.

        Raises:
            StoreError: If Redis cannot be reached or the record is corrupt.
        """
        capability_key = normalize_query_rules(rules)

        try:
            data = await self._client.lpop(queue_key(capability_key))
        except RedisError as e:
            raise StoreError(f"popping job from redis: {e}") from e

        if data is None:
            return None

        try:
            job = Job.model_validate_json(data)
        except ValidationError as e:
            raise StoreError(f"unmarshaling job from {capability_key!r}: {e}") from e

        try:
            updated = await self._advance_status(job.uuid, JobStatus.CLAIMED)
        except InvalidTransitionError as e:
            # The pop already happened; the job belongs to this caller.
            logger.warning(str(e), extra={"job_id": job.uuid})
        else:
            if not updated:
                logger.debug(
                    "Claimed job has no metadata",
                    extra={"job_id": job.uuid},
                )

        return job

    async def complete(self, job_id: str) -> bool:
        """
        Mark a job complete.

        Args:
            job_id: The job UUID.

        Returns:
            True if the metadata now reads ``complete``, False if it had
            already expired (nothing is written in that case).

        Raises:
            StoreError: If Redis cannot be reached.
        """
        try:
            return await self._advance_status(job_id, JobStatus.COMPLETE)
        except InvalidTransitionError:
            # COMPLETE is terminal, so this only means it was already complete.
            return True

    async def get_metadata(self, job_id: str) -> JobMetadata | None:
        """
        Get a job's metadata record.

        Args:
            job_id: The job UUID.

        Returns:
            The metadata, or None if it has expired or never existed.
        """
        try:
            fields = await self._client.hgetall(metadata_key(job_id))
        except RedisError as e:
            raise StoreError(f"reading job metadata: {e}") from e

        if not fields:
            return None
        return JobMetadata.from_hash(job_id, fields)

    async def queue_length(self, capability_key: str) -> int:
        """Get the number of jobs waiting under a capability key."""
        try:
            return await self._client.llen(queue_key(capability_key))
        except RedisError as e:
            raise StoreError(f"reading queue length: {e}") from e

    async def stats(self) -> dict[str, int]:
        """
        Get queue lengths for every capability key.

        The snapshot is advisory: queues are scanned one by one and may
        change between reads.

        Returns:
            Dictionary of capability key -> queue length.
        """
        stats: dict[str, int] = {}
        try:
            async for key in self._client.scan_iter(match=f"{QUEUE_KEY_PREFIX}*"):
                length = await self._client.llen(key)
                if length:
                    stats[key[len(QUEUE_KEY_PREFIX):]] = length
        except RedisError as e:
            raise StoreError(f"getting keys: {e}") from e
        return stats

    async def _advance_status(self, job_id: str, target: JobStatus) -> bool:
        """
        Move a job's status forward under WATCH so it never regresses.

        Args:
            job_id: The job UUID.
            target: The status to move to.

        Returns:
            True if the status was written, False if the metadata is gone.

        Raises:
            InvalidTransitionError: If the current status is not before
                ``target``.
            StoreError: If Redis cannot be reached.
        """
        meta_key = metadata_key(job_id)

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(meta_key)
                        current = await pipe.hget(meta_key, "status")
                        if current is None:
                            return False

                        current_status = JobStatus(current)
                        if not current_status.can_transition_to(target):
                            raise InvalidTransitionError(current_status, target)

                        pipe.multi()
                        pipe.hset(meta_key, "status", target.value)
                        await pipe.execute()
                        return True
                    except WatchError:
                        continue
        except RedisError as e:
            raise StoreError(f"updating job status: {e}") from e
