"""
Product data model.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pricetracker.core.database import Base, JSONType

if TYPE_CHECKING:
    from pricetracker.models.price import Price
    from pricetracker.models.product_source import ProductSource


class Product(Base):
    """A distinct item being tracked across one or more sources."""

    __tablename__ = "products"

    # Primary key (assigned by the catalog's id factory)
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)

    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # "metadata" is reserved on declarative classes
    extra_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    prices: Mapped[list["Price"]] = relationship(
        "Price",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    product_sources: Mapped[list["ProductSource"]] = relationship(
        "ProductSource",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, name={self.name[:50]})>"
