"""
Job API endpoints: discovery, update, status and cancellation.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status

from pricetracker.api.dependencies import get_orchestrator
from pricetracker.api.schemas.job_schemas import (
    DiscoverRequest,
    DiscoverResponse,
    DiscoveryResult,
    Job,
    UpdateRequest,
    UpdateResponse,
)
from pricetracker.core.logging import get_logger
from pricetracker.models.enums import JobStatus
from pricetracker.services.job_orchestrator import JobOrchestrator

logger = get_logger(__name__)

router = APIRouter(tags=["Jobs"])


@router.post(
    "/discover",
    response_model=DiscoverResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Discover product sources for a query",
)
async def discover(
    request: DiscoverRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> DiscoverResponse:
    """
    Run a discovery job for a free-text query.

    Search hits are extracted, registered as sources and priced. Failures
    on individual URLs are recorded in the job, not returned as errors.

    Example:
        ```bash
        curl -X POST http://localhost:8000/discover \\
          -H "Content-Type: application/json" \\
          -d '{"query": "nintendo switch oled"}'
        ```
    """
    job = await orchestrator.dispatch_discovery(request.query)
    result = job.result or {}

    if job.status == JobStatus.FAILED.value:
        return DiscoverResponse(success=False, job_id=job.id, error=result.get("error"))

    return DiscoverResponse(
        success=True,
        job_id=job.id,
        results=[DiscoveryResult.model_validate(row) for row in result.get("results", [])],
    )


@router.post(
    "/update",
    response_model=UpdateResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Refresh prices for sources",
)
async def update(
    request: UpdateRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> UpdateResponse:
    """
    Run an update job for explicit source ids or, with ``all``, every
    actionable source.

    Example:
        ```bash
        curl -X POST http://localhost:8000/update \\
          -H "Content-Type: application/json" \\
          -d '{"all": true}'
        ```
    """
    job = await orchestrator.dispatch_update(
        source_ids=request.source_ids,
        all_sources=request.all_sources,
    )
    result = job.result or {}

    return UpdateResponse(
        success=job.status == JobStatus.COMPLETED.value,
        job_id=job.id,
        updated=result.get("updated", 0),
        failed=result.get("failed", 0),
        skipped=result.get("skipped", 0),
        errors=result.get("errors") or None,
        error=result.get("error"),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=Job,
    summary="Get job status and result",
)
async def get_job(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Any:
    return Job.model_validate(await orchestrator.get_job(job_id))


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=Job,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Cancel a pending or running job",
)
async def cancel_job(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Ask a job to stop. Sources already in flight finish; the rest are
    skipped and the job completes with ``cancelled: true``.
    """
    job = await orchestrator.cancel(job_id)
    logger.info("Job cancel accepted", extra={"job_id": str(job_id)})
    return Job.model_validate(job)


# Export router
__all__ = ["router"]
