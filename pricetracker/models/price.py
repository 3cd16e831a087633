"""
Price history entity model.

Rows are append-only; they disappear only through cascade deletes of their
product or source.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricetracker.core.database import Base

if TYPE_CHECKING:
    from pricetracker.models.product import Product
    from pricetracker.models.scrape_source import ScrapeSource


class Price(Base):
    """
    Price observation entity.

    Attributes:
        id: Unique price record identifier
        product_id: Observed product
        source_id: Source the observation came from
        price: Observed price (two-decimal fixed point)
        currency: Currency code (ISO 4217)
        original_price: Pre-discount price, when the page shows one
        in_stock: Availability at observation time
        scraped_at: When the extractor observed the page
        created_at: When the row was written
    """

    __tablename__ = "prices"
    __table_args__ = (
        Index("prices_product_scraped_idx", "product_id", "scraped_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    # Foreign keys
    product_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("scrape_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2, asdecimal=True), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2, asdecimal=True), nullable=True
    )
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    scraped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="prices")
    source: Mapped["ScrapeSource"] = relationship("ScrapeSource", back_populates="prices")

    def __repr__(self) -> str:
        return (
            f"<Price(id={self.id}, product_id={self.product_id}, "
            f"source_id={self.source_id}, price={self.price}, scraped_at={self.scraped_at})>"
        )


__all__ = ["Price"]
