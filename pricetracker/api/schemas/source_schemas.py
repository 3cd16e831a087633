"""
Pydantic schemas for scrape source management.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import Field, StrictStr

from pricetracker.models.base import CamelModel
from pricetracker.models.enums import SourceType
from pricetracker.models.scraping import ScrapeConfig


class SourceCreateRequest(CamelModel):
    """Request schema for registering a source."""

    url: StrictStr = Field(
        ...,
        description="Product page URL",
        examples=["https://shop.example.com/products/widget"],
        max_length=2048,
    )
    source_type: SourceType = Field(
        default=SourceType.CUSTOM,
        description="ecommerce, marketplace, classified or custom",
    )
    scrape_config: Optional[Dict[str, Any]] = Field(
        None,
        description="Extraction recipe (scriptType, selectors, ...)",
    )


class SourceUpdateRequest(CamelModel):
    """Request schema for changing a source's activity or recipe."""

    is_active: Optional[bool] = Field(None, description="Activate or retire the source")
    scrape_config: Optional[Dict[str, Any]] = Field(
        None,
        description="Replacement recipe; resets the success rate to the neutral prior",
    )


class Source(CamelModel):
    """Scrape source."""

    id: UUID
    url: str
    domain: str
    source_type: str
    scrape_config: ScrapeConfig
    is_active: bool
    needs_rediscovery: bool
    last_scraped_at: Optional[datetime] = None
    consecutive_failures: int = 0
    structural_failures: int = 0
    rediscovery_attempts: int = 0
    created_at: datetime
    updated_at: datetime


class SourceSummary(CamelModel):
    """Source fields embedded in price rows."""

    id: UUID
    url: str
    domain: str
    source_type: str


class RediscoverResponse(CamelModel):
    """Response for a rediscovery request."""

    success: bool
    job_id: Optional[UUID] = None
    script_generated: bool = False
    queued: bool = False
    event_ids: Optional[list[str]] = None
    error: Optional[str] = None
