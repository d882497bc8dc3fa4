"""
Job matching routes.
"""

import logging
import re
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status

from custom_scheduler.constants import SPAN_CLAIM_JOB, WORKER_ID_HEADER
from custom_scheduler.errors import StoreError
from custom_scheduler.observability.metrics import get_metrics
from custom_scheduler.observability.tracing import get_tracer
from custom_scheduler.rules import normalize_query_rules, split_query_param
from custom_scheduler.store import JobStore, get_store
from custom_scheduler.types.api import CompleteJobResponse, StatsResponse
from custom_scheduler.types.job import Job

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Jobs"])

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@router.get(
    "/jobs",
    response_model=Job,
    summary="Claim a job",
    description="Atomically claim the oldest job whose agent query rules match the query.",
    responses={204: {"description": "No job matches the query"}},
)
async def claim_job(
    store: Annotated[JobStore, Depends(get_store)],
    query: Annotated[
        str | None,
        Query(description="Comma-separated key=value agent query rules"),
    ] = None,
    worker_id: Annotated[str | None, Header(alias=WORKER_ID_HEADER)] = None,
) -> Job | Response:
    """
    Claim a job for a worker.

    The rules are normalized, so their order does not matter. A claimed job
    is removed from the index and will not be handed out again.

    Args:
        store: Job index.
        query: Comma-separated agent query rules.
        worker_id: Optional worker identifier, used for logging only.

    Returns:
        The claimed job, or an empty 204 response if none matches.

    Raises:
        HTTPException: 400 if no rules were given, 500 on store errors.
    """
    if not query or not query.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="query parameter is required",
        )

    rules = [rule for rule in split_query_param(query) if rule]
    if not rules:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="query must contain at least one rule",
        )

    logger.debug(
        "claiming job",
        extra={"query_rules": rules, "worker_id": worker_id},
    )

    with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
        span.set_attribute("query_rules", normalize_query_rules(rules))
        try:
            job = await store.claim(rules)
        except StoreError as e:
            logger.error(f"Error claiming job: {e}", extra={"worker_id": worker_id})
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="internal server error",
            ) from e
        span.set_attribute("found", job is not None)

    get_metrics().record_claim(found=job is not None)

    if job is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    logger.info(
        "Job claimed",
        extra={"job_id": job.uuid, "queue": job.queue_key, "worker_id": worker_id},
    )
    return job


@router.post(
    "/jobs/{job_id:path}/complete",
    response_model=CompleteJobResponse,
    summary="Complete a job",
    description="Mark a claimed job complete. A no-op if its metadata has expired.",
)
async def complete_job(
    job_id: str,
    store: Annotated[JobStore, Depends(get_store)],
    worker_id: Annotated[str | None, Header(alias=WORKER_ID_HEADER)] = None,
) -> CompleteJobResponse:
    """
    Report a job as complete.

    Args:
        job_id: The job UUID.
        store: Job index.
        worker_id: Optional worker identifier, used for logging only.

    Returns:
        CompleteJobResponse echoing the job id.

    Raises:
        HTTPException: 400 for a missing or malformed id, 500 on store errors.
    """
    job_id = job_id.strip()
    if not job_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="job uuid is required",
        )
    if not JOB_ID_PATTERN.match(job_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="job uuid is malformed",
        )

    try:
        found = await store.complete(job_id)
    except StoreError as e:
        logger.error(f"Error completing job: {e}", extra={"job_id": job_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="internal server error",
        ) from e

    get_metrics().record_completion(found=found)

    if found:
        logger.info("Job completed", extra={"job_id": job_id, "worker_id": worker_id})
    else:
        logger.info(
            "Completed job has no metadata (expired)",
            extra={"job_id": job_id, "worker_id": worker_id},
        )

    return CompleteJobResponse(uuid=job_id)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Queue statistics",
    description="Snapshot of queue lengths per capability key.",
)
async def get_stats(
    store: Annotated[JobStore, Depends(get_store)],
) -> StatsResponse:
    """
    Get queue lengths for every capability key.

    The snapshot is advisory and may race with concurrent claims.

    Args:
        store: Job index.

    Returns:
        StatsResponse with per-key lengths and their total.
    """
    try:
        lengths = await store.stats()
    except StoreError as e:
        logger.error(f"Error getting stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="internal server error",
        ) from e

    get_metrics().update_queue_depths(lengths)
    return StatsResponse.from_lengths(lengths)
