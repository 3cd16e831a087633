"""
Extractor: fetch a product page and turn it into ``ProductData``.

Every extractor honours the same contract: ``extract(url, config)`` returns a
``ScrapingResult`` and never raises for page-level problems. Failures are
typed with ``FailureType`` so the source registry can tell a redesigned page
(structural) from a network blip (transient).
"""

import asyncio
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Union

import httpx
from bs4 import BeautifulSoup

from pricetracker.core.config import settings
from pricetracker.core.exceptions import ExtractionError
from pricetracker.core.logging import get_logger
from pricetracker.core.url_utils import extract_domain
from pricetracker.models.enums import FailureType
from pricetracker.models.scraping import ProductData, ScrapeConfig, ScrapingResult
from pricetracker.services import page_parser

logger = get_logger(__name__)

REQUIRED_FIELDS = ("name", "price")


class Extractor(Protocol):
    """Fetches a product page with a recipe and returns a typed result."""

    async def extract(self, url: str, config: ScrapeConfig) -> ScrapingResult:
        ...


class DomainRateLimiter:
    """Spaces out requests to the same domain."""

    def __init__(self, requests_per_minute: int):
        self.interval = 60.0 / max(requests_per_minute, 1)
        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def wait(self, domain: str) -> None:
        lock = self._locks.setdefault(domain, asyncio.Lock())
        async with lock:
            last = self._last_request.get(domain)
            elapsed = time.monotonic() - last if last is not None else self.interval
            if elapsed < self.interval:
                wait_time = self.interval - elapsed
                logger.debug(
                    f"Rate limiting: waiting {wait_time:.2f}s for {domain}",
                    extra={"domain": domain, "wait_time": wait_time},
                )
                await asyncio.sleep(wait_time)
            self._last_request[domain] = time.monotonic()


class HttpExtractor:
    """Default extractor: httpx for fetching, BeautifulSoup for parsing."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.EXTRACTION_TIMEOUT
        self._client = client
        self.rate_limiter = rate_limiter or DomainRateLimiter(settings.CRAWL_RATE_LIMIT_PER_DOMAIN)

    async def extract(self, url: str, config: Union[ScrapeConfig, Dict[str, Any]]) -> ScrapingResult:
        """
        Extract product data from ``url`` using ``config``.

        Args:
            url: Product page URL
            config: Stored recipe; ``script_type`` picks the strategy

        Returns:
            ScrapingResult with data, or with a typed error
        """
        recipe = config if isinstance(config, ScrapeConfig) else ScrapeConfig.model_validate(config or {})

        try:
            html = await self.fetch(url)
            data = self.parse(url, html, recipe)
        except ExtractionError as e:
            logger.warning(
                "Extraction failed",
                extra={
                    "url": url,
                    "failure_type": e.failure_type,
                    "selector": e.selector,
                    "error": e.message,
                },
            )
            return ScrapingResult.fail(FailureType(e.failure_type), e.message, e.selector)

        logger.info(
            "Extraction succeeded",
            extra={"url": url, "price": str(data.price), "currency": data.currency},
        )
        return ScrapingResult.ok(data)

    async def fetch(self, url: str) -> str:
        """
        GET a page and return its HTML.

        Raises:
            ExtractionError: Typed as timeout, blocked, captcha or network_error
        """
        domain = extract_domain(url)
        if domain:
            await self.rate_limiter.wait(domain)

        headers = {
            "User-Agent": settings.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml",
        }
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=headers, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise ExtractionError(FailureType.TIMEOUT.value, f"Timed out fetching {url}", url=url) from e
        except httpx.HTTPError as e:
            raise ExtractionError(FailureType.NETWORK_ERROR.value, f"Request failed: {e}", url=url) from e

        if response.status_code in (401, 403, 429):
            raise ExtractionError(
                FailureType.BLOCKED.value,
                f"HTTP {response.status_code} for {url}",
                url=url,
            )
        if response.status_code >= 400:
            raise ExtractionError(
                FailureType.NETWORK_ERROR.value,
                f"HTTP {response.status_code} for {url}",
                url=url,
            )

        html = response.text
        if page_parser.looks_like_captcha(html):
            raise ExtractionError(FailureType.CAPTCHA.value, "Bot challenge page", url=url)
        return html

    def parse(self, url: str, html: str, recipe: ScrapeConfig) -> ProductData:
        """
        Parse fetched HTML with a recipe.

        Raises:
            ExtractionError: selector_not_found or data_validation
        """
        soup = page_parser.parse_html(html)

        if recipe.selectors and recipe.script_type in ("css", "generic"):
            fields = self._parse_selectors(soup, recipe)
        elif recipe.script_type == "jsonld":
            fields = page_parser.extract_jsonld(soup)
        elif recipe.script_type == "opengraph":
            fields = page_parser.extract_opengraph(soup)
        else:
            fields = page_parser.extract_jsonld(soup) or page_parser.extract_opengraph(soup)

        if not fields:
            raise ExtractionError(
                FailureType.SELECTOR_NOT_FOUND.value,
                f"No product data found using {recipe.script_type} recipe",
                url=url,
            )

        return self._to_product_data(url, soup, fields)

    def _parse_selectors(self, soup: BeautifulSoup, recipe: ScrapeConfig) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for field, selectors in recipe.selectors.items():
            text, _ = page_parser.select_text(soup, selectors)
            if text is None and field in REQUIRED_FIELDS:
                raise ExtractionError(
                    FailureType.SELECTOR_NOT_FOUND.value,
                    f"Selector for {field} matched nothing",
                    selector=page_parser.first_selector(selectors),
                )
            if text is not None:
                fields[field] = text

        if "in_stock" in fields:
            fields["in_stock"] = page_parser.parse_availability(fields["in_stock"])
        if "currency" not in fields and "price" in fields:
            fields["currency"] = page_parser.parse_currency(fields["price"])
        return fields

    @staticmethod
    def _to_product_data(url: str, soup: BeautifulSoup, fields: Dict[str, Any]) -> ProductData:
        price = page_parser.parse_price(fields.get("price"))
        if price is None or price < 0:
            raise ExtractionError(
                FailureType.DATA_VALIDATION.value,
                f"Unparseable price: {fields.get('price')!r}",
                url=url,
            )

        name = (fields.get("name") or page_parser.page_title(soup) or "").strip()
        if not name:
            raise ExtractionError(FailureType.DATA_VALIDATION.value, "Missing product name", url=url)

        original_price: Optional[Decimal] = page_parser.parse_price(fields.get("original_price"))
        currency = fields.get("currency")
        if currency and len(currency) != 3:
            currency = page_parser.parse_currency(currency)

        return ProductData(
            name=name,
            price=price,
            currency=currency.upper() if currency else None,
            original_price=original_price,
            in_stock=fields.get("in_stock", True),
            image_url=page_parser.absolute_url(url, fields.get("image_url")),
            description=fields.get("description"),
            category=fields.get("category"),
            external_id=str(fields["external_id"]) if fields.get("external_id") else page_parser.external_id_from_url(url),
            product_url=url,
        )


__all__ = ["DomainRateLimiter", "Extractor", "HttpExtractor"]
