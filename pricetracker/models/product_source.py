"""
Product/source link model.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricetracker.core.database import Base

if TYPE_CHECKING:
    from pricetracker.models.product import Product
    from pricetracker.models.scrape_source import ScrapeSource


class ProductSource(Base):
    """Records how a source identifies a product; one row per (product, source)."""

    __tablename__ = "product_sources"
    __table_args__ = (
        UniqueConstraint("product_id", "source_id", name="uq_product_sources_product_source"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

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

    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="product_sources")
    source: Mapped["ScrapeSource"] = relationship("ScrapeSource", back_populates="product_sources")

    def __repr__(self) -> str:
        return (
            f"<ProductSource(product_id={self.product_id}, source_id={self.source_id}, "
            f"external_id={self.external_id})>"
        )
