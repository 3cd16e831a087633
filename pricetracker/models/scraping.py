"""
Value types exchanged with extraction collaborators.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field, model_validator

from pricetracker.core.identity import utcnow
from pricetracker.models.base import CamelModel
from pricetracker.models.enums import FailureType


class ScrapeAction(CamelModel):
    """A browser step to run before extraction (click, type, scroll, wait)."""

    type: str = Field(..., description="click, type, scroll or wait")
    selector: Optional[str] = None
    value: Optional[str] = None
    delay: Optional[int] = Field(None, description="Delay in milliseconds")


class ScrapeConfig(CamelModel):
    """
    Extraction recipe stored on a source.

    ``selectors`` maps a product field (name, price, currency, original_price,
    in_stock, image_url, description) to a CSS selector or a list of
    fallback selectors.
    """

    model_config = ConfigDict(extra="allow")

    script_type: str = Field(default="generic", description="generic, css, jsonld, playwright")
    script: Optional[str] = None
    selectors: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    wait_for: Optional[str] = None
    actions: List[ScrapeAction] = Field(default_factory=list)
    last_generated: Optional[datetime] = None
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    failure_count: int = Field(default=0, ge=0)

    def to_storage(self) -> Dict[str, Any]:
        """Snake-case JSON form persisted on the source row."""
        return self.model_dump(mode="json", by_alias=False)


class ProductData(CamelModel):
    """Structured product data returned by a successful extraction."""

    name: str
    price: Decimal
    currency: Optional[str] = None
    original_price: Optional[Decimal] = None
    in_stock: bool = True
    image_url: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    external_id: Optional[str] = None
    product_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    # Observation time; the ledger stores this, never the insert time
    scraped_at: datetime = Field(default_factory=utcnow)


class ScrapingError(CamelModel):
    """Typed extraction failure."""

    type: FailureType
    message: str = ""
    selector: Optional[str] = None


class ScrapingResult(CamelModel):
    """Either ``success`` with ``data`` or a failure with ``error``."""

    success: bool
    data: Optional[ProductData] = None
    error: Optional[ScrapingError] = None

    @model_validator(mode="after")
    def check_shape(self) -> "ScrapingResult":
        if self.success and self.data is None:
            raise ValueError("successful result requires data")
        if not self.success and self.error is None:
            raise ValueError("failed result requires error")
        return self

    @classmethod
    def ok(cls, data: ProductData) -> "ScrapingResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        failure_type: FailureType,
        message: str = "",
        selector: Optional[str] = None,
    ) -> "ScrapingResult":
        return cls(
            success=False,
            error=ScrapingError(type=failure_type, message=message, selector=selector),
        )


class SearchResult(CamelModel):
    """A candidate product page returned by web search."""

    url: str
    title: str = ""
    domain: str = ""
    snippet: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
