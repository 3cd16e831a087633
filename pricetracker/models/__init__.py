"""Data models package."""

from pricetracker.models.enums import FailureType, JobStatus, JobType, SourceType
from pricetracker.models.price import Price
from pricetracker.models.product import Product
from pricetracker.models.product_source import ProductSource
from pricetracker.models.scrape_job import ScrapeJob
from pricetracker.models.scrape_source import ScrapeSource
from pricetracker.models.scraping import (
    ProductData,
    ScrapeConfig,
    ScrapingError,
    ScrapingResult,
    SearchResult,
)
from pricetracker.models.source_lock import SourceLock

__all__ = [
    "FailureType",
    "JobStatus",
    "JobType",
    "SourceType",
    "Price",
    "Product",
    "ProductSource",
    "ScrapeJob",
    "ScrapeSource",
    "SourceLock",
    "ProductData",
    "ScrapeConfig",
    "ScrapingError",
    "ScrapingResult",
    "SearchResult",
]
