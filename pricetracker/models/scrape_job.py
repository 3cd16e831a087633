"""
Scrape job data model.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pricetracker.core.database import Base, JSONType


class ScrapeJob(Base):
    """Audit record for one discovery, update or rediscovery run."""

    __tablename__ = "scrape_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    # Null for discovery jobs and multi-source updates
    source_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("scrape_sources.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    query: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # productsFound, pricesUpdated, updated, failed, skipped, errors, ...
    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ScrapeJob(id={self.id}, type={self.job_type}, status={self.status})>"
