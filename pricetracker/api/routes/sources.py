"""
Source management API endpoints.
"""

from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.api.dependencies import get_orchestrator
from pricetracker.api.schemas.source_schemas import (
    RediscoverResponse,
    Source,
    SourceCreateRequest,
    SourceUpdateRequest,
)
from pricetracker.core.config import settings
from pricetracker.core.database import get_db
from pricetracker.core.inngest import REDISCOVERY_REQUESTED, send_event
from pricetracker.core.logging import get_logger
from pricetracker.models.enums import JobStatus
from pricetracker.services.job_orchestrator import JobOrchestrator
from pricetracker.services.source_registry import source_registry

logger = get_logger(__name__)

router = APIRouter(prefix="/sources", tags=["Sources"])


@router.get(
    "",
    response_model=Union[Source, List[Source]],
    summary="Get one source or list sources",
)
async def get_sources(
    source_id: Optional[UUID] = Query(None, alias="id", description="Return a single source"),
    active: bool = Query(False, description="Only active sources"),
    limit: int = Query(
        settings.MAX_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Max sources to list",
    ),
    db: AsyncSession = Depends(get_db),
) -> Union[Source, List[Source]]:
    """
    Get a source by ``id``, or list sources newest first.

    Example:
        ```bash
        curl "http://localhost:8000/sources?active=true"
        ```
    """
    if source_id is not None:
        return Source.model_validate(await source_registry.get(source_id, db))

    sources = await source_registry.list_sources(db, active_only=active, limit=limit)
    return [Source.model_validate(source) for source in sources]


@router.post(
    "",
    response_model=Source,
    status_code=status.HTTP_201_CREATED,
    summary="Register a source",
)
async def create_source(
    request: SourceCreateRequest,
    db: AsyncSession = Depends(get_db),
) -> Source:
    """
    Register a product page as a source.

    Example:
        ```bash
        curl -X POST http://localhost:8000/sources \\
          -H "Content-Type: application/json" \\
          -d '{"url": "https://shop.example.com/products/widget", "sourceType": "ecommerce"}'
        ```
    """
    source = await source_registry.register(
        request.url,
        db,
        source_type=request.source_type,
        config=request.scrape_config,
    )
    await db.commit()
    return Source.model_validate(source)


@router.patch(
    "/{source_id}",
    response_model=Source,
    summary="Activate, retire or re-recipe a source",
)
async def update_source(
    source_id: UUID,
    request: SourceUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> Source:
    source = await source_registry.get(source_id, db)
    if request.scrape_config is not None:
        source = await source_registry.update_config(source_id, request.scrape_config, db)
    if request.is_active is not None:
        source = await source_registry.set_active(source_id, request.is_active, db)
    await db.commit()
    return Source.model_validate(source)


@router.post(
    "/{source_id}/rediscover",
    response_model=RediscoverResponse,
    response_model_exclude_none=True,
    summary="Regenerate a source's extraction recipe",
)
async def rediscover_source(
    source_id: UUID,
    background: bool = Query(False, description="Queue through Inngest instead of running inline"),
    db: AsyncSession = Depends(get_db),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Run a rediscovery job for one source.

    With ``background=true`` the job is queued as an Inngest event and the
    response is 202 with the event ids.
    """
    if background:
        await source_registry.get(source_id, db)
        event_ids = await send_event(REDISCOVERY_REQUESTED, {"source_id": str(source_id)})
        body = RediscoverResponse(success=True, queued=True, event_ids=event_ids)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    job = await orchestrator.dispatch_rediscovery(source_id)
    result = job.result or {}
    return RediscoverResponse(
        success=job.status == JobStatus.COMPLETED.value,
        job_id=job.id,
        script_generated=bool(result.get("scriptGenerated")),
        error=result.get("error"),
    )


# Export router
__all__ = ["router"]
