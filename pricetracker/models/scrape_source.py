"""
Scrape source data model.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricetracker.core.database import Base, JSONType

if TYPE_CHECKING:
    from pricetracker.models.price import Price
    from pricetracker.models.product_source import ProductSource


class ScrapeSource(Base):
    """A product page URL plus the recipe used to extract data from it."""

    __tablename__ = "scrape_sources"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    url: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Extraction recipe (selectors, script, success_rate, last_generated, ...)
    scrape_config: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    needs_rediscovery: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    last_scraped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Health counters
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    structural_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rediscovery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    prices: Mapped[list["Price"]] = relationship(
        "Price",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    product_sources: Mapped[list["ProductSource"]] = relationship(
        "ProductSource",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def success_rate(self) -> float:
        """Rolling success rate stored in the recipe."""
        return float((self.scrape_config or {}).get("success_rate", 0.0))

    def __repr__(self) -> str:
        return (
            f"<ScrapeSource(id={self.id}, domain={self.domain}, "
            f"active={self.is_active}, needs_rediscovery={self.needs_rediscovery})>"
        )
