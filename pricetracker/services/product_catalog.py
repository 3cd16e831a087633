"""
Product catalog: owns products and their links to sources.

Matching an extraction to a product is deterministic so the catalog can be
rebuilt from the same extraction stream:

1. An existing (source, external id) link wins.
2. Otherwise the best fuzzy name match within the same category, scored as
   ``max(ratio, token_sort_ratio)`` over normalized names. Ties go to the
   oldest product.
3. Otherwise a new product is created.
"""

import re
import unicodedata
from typing import List, Optional, Tuple
from uuid import UUID

from rapidfuzz import fuzz
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricetracker.core.config import settings
from pricetracker.core.exceptions import InvalidInputError, UnknownProductError
from pricetracker.core.identity import Clock, IdFactory, random_ids, utcnow
from pricetracker.core.logging import get_logger
from pricetracker.models.product import Product
from pricetracker.models.product_source import ProductSource
from pricetracker.models.scraping import ProductData

logger = get_logger(__name__)

_NON_WORD = re.compile(r"[^\w\s]+")
_SPACES = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not name:
        return ""
    text = unicodedata.normalize("NFKD", name)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_WORD.sub(" ", text.lower())
    return _SPACES.sub(" ", text).strip()


def name_similarity(a: str, b: str) -> float:
    """
    Similarity of two product names on a 0-100 scale.

    Pure function of the two strings.
    """
    norm_a, norm_b = normalize_name(a), normalize_name(b)
    if not norm_a or not norm_b:
        return 0.0
    return max(fuzz.ratio(norm_a, norm_b), fuzz.token_sort_ratio(norm_a, norm_b))


class ProductCatalog:
    """Repository and matching policy for products."""

    def __init__(
        self,
        id_factory: IdFactory = random_ids,
        clock: Clock = utcnow,
        match_threshold: Optional[float] = None,
    ):
        self.id_factory = id_factory
        self.clock = clock
        self.match_threshold = (
            match_threshold if match_threshold is not None else settings.CATALOG_MATCH_THRESHOLD
        )

    async def upsert(
        self,
        product_data: ProductData,
        source_id: UUID,
        db: AsyncSession,
        external_id: Optional[str] = None,
        product_url: Optional[str] = None,
    ) -> Product:
        """
        Map an extraction onto a product, creating it if needed.

        Args:
            product_data: Extracted product data
            source_id: Source the data came from
            db: Database session
            external_id: Source-specific product id (defaults to the data's)
            product_url: Product page URL at the source

        Returns:
            Matched or created product (flushed, not committed)

        Raises:
            InvalidInputError: If the product name is empty
        """
        name = (product_data.name or "").strip()
        if not name:
            raise InvalidInputError("Product name must not be empty", field="name")

        external_id = external_id if external_id is not None else product_data.external_id
        product_url = product_url if product_url is not None else product_data.product_url

        product = await self._find_linked(source_id, external_id, db)
        matched_by = "link"
        if product is None:
            product, score = await self._find_similar(name, product_data.category, db)
            matched_by = f"fuzzy:{score:.1f}" if product is not None else "created"

        now = self.clock()
        if product is None:
            product = Product(
                id=self.id_factory(),
                name=name,
                description=product_data.description,
                image_url=product_data.image_url,
                category=product_data.category,
                extra_metadata=product_data.metadata,
                created_at=now,
                updated_at=now,
            )
            db.add(product)
            await db.flush()
        else:
            self._apply(product, product_data, name, now)

        await self._ensure_link(product.id, source_id, external_id, product_url, db)
        await db.flush()

        logger.info(
            "Product upserted",
            extra={
                "product_id": str(product.id),
                "source_id": str(source_id),
                "matched_by": matched_by,
            },
        )
        return product

    async def get(self, product_id: UUID, db: AsyncSession) -> Product:
        """
        Get product by ID.

        Raises:
            UnknownProductError: If no product has this ID
        """
        product = await db.get(Product, product_id)
        if product is None:
            raise UnknownProductError(str(product_id))
        return product

    async def list_products(self, db: AsyncSession, limit: Optional[int] = None) -> List[Product]:
        """List products, most recently updated first."""
        query = select(Product).order_by(Product.updated_at.desc(), Product.id)
        if limit:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def links(self, product_id: UUID, db: AsyncSession) -> List[ProductSource]:
        """Source links for a product."""
        result = await db.execute(
            select(ProductSource)
            .where(ProductSource.product_id == product_id)
            .order_by(ProductSource.created_at, ProductSource.id)
        )
        return list(result.scalars().all())

    async def delete(self, product_id: UUID, db: AsyncSession) -> None:
        """Manually remove a product together with its prices and links."""
        product = await self.get(product_id, db)
        await db.delete(product)
        await db.flush()
        logger.info("Product deleted", extra={"product_id": str(product_id)})

    async def _find_linked(
        self,
        source_id: UUID,
        external_id: Optional[str],
        db: AsyncSession,
    ) -> Optional[Product]:
        if external_id is None:
            return None
        result = await db.execute(
            select(Product)
            .join(ProductSource, ProductSource.product_id == Product.id)
            .where(
                ProductSource.source_id == source_id,
                ProductSource.external_id == external_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_similar(
        self,
        name: str,
        category: Optional[str],
        db: AsyncSession,
    ) -> Tuple[Optional[Product], float]:
        """Best candidate at or above the threshold, with its score."""
        result = await db.execute(select(Product).order_by(Product.created_at, Product.id))

        wanted_category = normalize_name(category)
        best: Optional[Product] = None
        best_score = 0.0
        for candidate in result.scalars():
            if normalize_name(candidate.category) != wanted_category:
                continue
            score = name_similarity(name, candidate.name)
            # Strict comparison keeps the oldest product on ties
            if score >= self.match_threshold and score > best_score:
                best, best_score = candidate, score

        return best, best_score

    async def _ensure_link(
        self,
        product_id: UUID,
        source_id: UUID,
        external_id: Optional[str],
        product_url: Optional[str],
        db: AsyncSession,
    ) -> ProductSource:
        result = await db.execute(
            select(ProductSource).where(
                ProductSource.product_id == product_id,
                ProductSource.source_id == source_id,
            )
        )
        link = result.scalar_one_or_none()
        if link is None:
            link = ProductSource(
                id=self.id_factory(),
                product_id=product_id,
                source_id=source_id,
                external_id=external_id,
                product_url=product_url,
                created_at=self.clock(),
            )
            db.add(link)
            return link

        if external_id is not None:
            link.external_id = external_id
        if product_url is not None:
            link.product_url = product_url
        return link

    @staticmethod
    def _apply(product: Product, data: ProductData, name: str, now) -> None:
        product.name = name
        if data.description is not None:
            product.description = data.description
        if data.image_url is not None:
            product.image_url = data.image_url
        if data.category is not None:
            product.category = data.category
        if data.metadata:
            product.extra_metadata = {**(product.extra_metadata or {}), **data.metadata}
        product.updated_at = now


# Global instance
product_catalog = ProductCatalog()
