"""
Price ledger: append-only price history per product and source.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.core.exceptions import InvalidInputError, UnknownProductError, UnknownSourceError
from pricetracker.core.identity import Clock, IdFactory, random_ids, utcnow
from pricetracker.core.logging import get_logger
from pricetracker.models.price import Price
from pricetracker.models.product import Product
from pricetracker.models.scrape_source import ScrapeSource
from pricetracker.models.scraping import ProductData
from pricetracker.services.page_parser import parse_currency

logger = get_logger(__name__)

TWO_PLACES = Decimal("0.01")
DEFAULT_CURRENCY = "USD"


def to_money(value: Any, field: str = "price") -> Decimal:
    """
    Convert a number to a two-decimal fixed-point amount.

    Raises:
        InvalidInputError: If the value is not a finite number
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError(f"{field} is not a number: {value!r}", field=field)
    if not amount.is_finite():
        raise InvalidInputError(f"{field} must be finite", field=field)
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_currency(value: Optional[str]) -> str:
    """
    ISO 4217 code for an extracted currency; blank means the default.

    Raises:
        InvalidInputError: If no code or known symbol can be read
    """
    raw = (value or "").strip()
    if not raw:
        return DEFAULT_CURRENCY
    if len(raw) == 3 and raw.isalpha():
        return raw.upper()
    code = parse_currency(raw.upper())
    if code is None:
        raise InvalidInputError(f"currency is not an ISO 4217 code: {value!r}", field="currency")
    return code


class PriceLedger:
    """Append and query price observations. Rows are never updated."""

    def __init__(self, id_factory: IdFactory = random_ids, clock: Clock = utcnow):
        self.id_factory = id_factory
        self.clock = clock

    async def append(
        self,
        product_id: UUID,
        source_id: UUID,
        product_data: ProductData,
        db: AsyncSession,
    ) -> Price:
        """
        Append one price observation.

        Args:
            product_id: Observed product
            source_id: Source the observation came from
            product_data: Extracted data; ``scraped_at`` becomes the row's time
            db: Database session

        Returns:
            The new price row (flushed, not committed)

        Raises:
            InvalidInputError: Negative or malformed price, or unreadable currency
            UnknownProductError: Product does not exist
            UnknownSourceError: Source does not exist
        """
        price = to_money(product_data.price)
        if price < 0:
            raise InvalidInputError(f"price must be >= 0, got {price}", field="price")

        original_price = None
        if product_data.original_price is not None:
            original_price = to_money(product_data.original_price, field="originalPrice")
            if original_price < 0:
                raise InvalidInputError("originalPrice must be >= 0", field="originalPrice")

        # Foreign keys checked here so stores without FK support behave the same
        if await db.get(Product, product_id) is None:
            raise UnknownProductError(str(product_id))
        if await db.get(ScrapeSource, source_id) is None:
            raise UnknownSourceError(str(source_id))

        currency = normalize_currency(product_data.currency)

        row = Price(
            id=self.id_factory(),
            product_id=product_id,
            source_id=source_id,
            price=price,
            currency=currency,
            original_price=original_price,
            in_stock=product_data.in_stock,
            scraped_at=product_data.scraped_at,
            created_at=self.clock(),
        )
        db.add(row)
        await db.flush()

        logger.info(
            "Price appended",
            extra={
                "price_id": str(row.id),
                "product_id": str(product_id),
                "source_id": str(source_id),
                "price": str(price),
                "currency": row.currency,
            },
        )
        return row

    async def history(
        self,
        product_id: UUID,
        db: AsyncSession,
        limit: int = 50,
        source_id: Optional[UUID] = None,
    ) -> List[Price]:
        """Price rows for a product, most recent observation first."""
        query = select(Price).where(Price.product_id == product_id)
        if source_id is not None:
            query = query.where(Price.source_id == source_id)
        query = query.order_by(Price.scraped_at.desc(), Price.source_id, Price.id).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def current(self, product_id: UUID, db: AsyncSession) -> List[Price]:
        """
        Latest price per source for a product.

        Ordered by ``scraped_at`` descending; equal times fall back to
        source id ascending.
        """
        result = await db.execute(
            select(Price)
            .where(Price.product_id == product_id)
            .order_by(Price.source_id, Price.scraped_at.desc(), Price.id)
        )

        latest: dict[UUID, Price] = {}
        for row in result.scalars():
            latest.setdefault(row.source_id, row)

        rows = sorted(latest.values(), key=lambda p: str(p.source_id))
        rows.sort(key=lambda p: p.scraped_at, reverse=True)
        return rows


# Global instance
price_ledger = PriceLedger()
