"""
Pydantic schemas for discovery, update and job endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field, StrictStr

from pricetracker.models.base import CamelModel


class DiscoverRequest(CamelModel):
    """Request schema for a discovery job."""

    query: StrictStr = Field(
        ...,
        description="Free-text product query",
        examples=["nintendo switch oled"],
        max_length=500,
    )


class DiscoveryResult(CamelModel):
    """One candidate page found by discovery."""

    url: str
    title: str = ""
    price: Optional[str] = None
    currency: Optional[str] = None
    domain: str = ""
    snippet: Optional[str] = None


class DiscoverResponse(CamelModel):
    """Response schema for a discovery job."""

    success: bool
    job_id: UUID
    results: Optional[List[DiscoveryResult]] = None
    error: Optional[str] = None


class UpdateRequest(CamelModel):
    """Request schema for an update job: explicit source ids or every source."""

    source_ids: Optional[List[StrictStr]] = Field(
        None,
        description="Sources to update",
        max_length=500,
    )
    all_sources: bool = Field(
        default=False,
        alias="all",
        description="Update every active source not awaiting rediscovery",
    )


class UpdateResponse(CamelModel):
    """Response schema for an update job."""

    success: bool
    job_id: UUID
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None


class Job(CamelModel):
    """Scrape job audit record."""

    id: UUID
    source_id: Optional[UUID] = None
    status: str
    job_type: str
    query: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
