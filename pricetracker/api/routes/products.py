"""
Product and price history API endpoints.
"""

from typing import Dict, List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.api.schemas.product_schemas import (
    Price,
    PriceHistory,
    Product,
    ProductDetail,
    ProductLink,
)
from pricetracker.api.schemas.source_schemas import SourceSummary
from pricetracker.core.config import settings
from pricetracker.core.database import get_db
from pricetracker.models.price import Price as PriceRow
from pricetracker.models.scrape_source import ScrapeSource
from pricetracker.services.price_ledger import price_ledger
from pricetracker.services.product_catalog import product_catalog

router = APIRouter(prefix="/products", tags=["Products"])


async def _source_summaries(rows: List[PriceRow], db: AsyncSession) -> Dict[UUID, SourceSummary]:
    source_ids = {row.source_id for row in rows}
    if not source_ids:
        return {}
    result = await db.execute(select(ScrapeSource).where(ScrapeSource.id.in_(source_ids)))
    return {source.id: SourceSummary.model_validate(source) for source in result.scalars()}


async def _prices(rows: List[PriceRow], db: AsyncSession) -> List[Price]:
    sources = await _source_summaries(rows, db)
    return [Price.from_row(row, sources.get(row.source_id)) for row in rows]


@router.get(
    "",
    response_model=Union[ProductDetail, List[Product]],
    summary="Get one product with prices or list products",
)
async def get_products(
    product_id: Optional[UUID] = Query(None, alias="id", description="Return a single product"),
    limit: int = Query(
        settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Max products to list",
    ),
    db: AsyncSession = Depends(get_db),
) -> Union[ProductDetail, List[Product]]:
    """
    Get a product by ``id`` with its latest prices (with source) and the
    current price per source, or list products most recently updated first.

    Example:
        ```bash
        curl "http://localhost:8000/products?id=3f1c..."
        ```
    """
    if product_id is None:
        products = await product_catalog.list_products(db, limit=limit)
        return [Product.from_row(product) for product in products]

    product = await product_catalog.get(product_id, db)
    recent = await price_ledger.history(product_id, db, limit=settings.PRODUCT_PRICE_PREVIEW)
    current = await price_ledger.current(product_id, db)
    links = await product_catalog.links(product_id, db)

    return ProductDetail(
        **Product.from_row(product).model_dump(),
        prices=await _prices(recent, db),
        current_prices=await _prices(current, db),
        sources=[ProductLink.model_validate(link) for link in links],
    )


@router.get(
    "/{product_id}/history",
    response_model=PriceHistory,
    summary="Price history for a product",
)
async def get_price_history(
    product_id: UUID,
    source_id: Optional[UUID] = Query(None, alias="sourceId", description="Only this source"),
    limit: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE, description="Max rows"),
    db: AsyncSession = Depends(get_db),
) -> PriceHistory:
    """Price rows, most recent observation first."""
    await product_catalog.get(product_id, db)
    rows = await price_ledger.history(product_id, db, limit=limit, source_id=source_id)
    return PriceHistory(
        product_id=product_id,
        source_id=source_id,
        prices=await _prices(rows, db),
    )


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a product with its prices and links",
)
async def delete_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    await product_catalog.delete(product_id, db)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Export router
__all__ = ["router"]
