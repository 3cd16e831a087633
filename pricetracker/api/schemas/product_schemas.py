"""
Pydantic schemas for products and price history.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pricetracker.api.schemas.source_schemas import SourceSummary
from pricetracker.models.base import CamelModel
from pricetracker.models.price import Price as PriceRow
from pricetracker.models.product import Product as ProductRow


class Price(CamelModel):
    """One price observation."""

    id: UUID
    product_id: UUID
    source_id: UUID
    price: Decimal
    currency: str
    original_price: Optional[Decimal] = None
    in_stock: bool
    scraped_at: datetime
    created_at: datetime
    source: Optional[SourceSummary] = None

    @classmethod
    def from_row(cls, row: PriceRow, source: Optional[SourceSummary] = None) -> "Price":
        return cls(
            id=row.id,
            product_id=row.product_id,
            source_id=row.source_id,
            price=row.price,
            currency=row.currency,
            original_price=row.original_price,
            in_stock=row.in_stock,
            scraped_at=row.scraped_at,
            created_at=row.created_at,
            source=source,
        )


class ProductLink(CamelModel):
    """How a source identifies the product."""

    source_id: UUID
    external_id: Optional[str] = None
    product_url: Optional[str] = None


class Product(CamelModel):
    """Tracked product."""

    id: UUID
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: ProductRow) -> "Product":
        return cls(
            id=row.id,
            name=row.name,
            description=row.description,
            image_url=row.image_url,
            category=row.category,
            metadata=row.extra_metadata,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class ProductDetail(Product):
    """Product with recent prices, latest price per source and source links."""

    prices: List[Price] = []
    current_prices: List[Price] = []
    sources: List[ProductLink] = []


class PriceHistory(CamelModel):
    """Price history for one product."""

    product_id: UUID
    source_id: Optional[UUID] = None
    prices: List[Price]
