"""
Search provider: turns a free-text query into candidate product pages.
"""

from typing import Any, Dict, List, Optional, Protocol

import httpx

from pricetracker.core.config import settings
from pricetracker.core.exceptions import SearchProviderError
from pricetracker.core.logging import get_logger
from pricetracker.core.url_utils import extract_domain, is_valid_url
from pricetracker.models.scraping import SearchResult
from pricetracker.services.page_parser import parse_currency, parse_price

logger = get_logger(__name__)


class SearchProvider(Protocol):
    """Web search used by discovery jobs."""

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        ...


class SerpApiSearchProvider:
    """
    Google search through SerpAPI.

    Shopping results come first since they point at product pages and carry
    a price; organic results fill the remaining slots.
    """

    BASE_URL = "https://serpapi.com/search.json"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize SerpAPI client.

        Args:
            api_key: SerpAPI API key (defaults to settings.SERPAPI_API_KEY)
            timeout: Request timeout in seconds
            client: Shared HTTP client (tests pass one with a mock transport)
        """
        self.api_key = api_key or settings.SERPAPI_API_KEY
        self.timeout = timeout
        self._client = client

        if not self.api_key:
            logger.warning("SerpAPI API key not configured")

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        """
        Search for product pages.

        Raises:
            SearchProviderError: If the key is missing or the request fails
        """
        if not self.api_key:
            raise SearchProviderError("SerpAPI API key not configured")

        params = {
            "api_key": self.api_key,
            "engine": "google",
            "q": query,
            "num": limit,
            "hl": "en",
            "gl": "us",
        }

        try:
            payload = await self._make_request(params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "SerpAPI search failed",
                extra={"query": query, "error": str(e)},
            )
            raise SearchProviderError(f"Search failed for query {query!r}", original_error=e) from e

        results = self._parse_results(payload)[:limit]
        logger.info(
            "Search completed",
            extra={"query": query, "result_count": len(results)},
        )
        return results

    async def _make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            response = await self._client.get(self.BASE_URL, params=params)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(self.BASE_URL, params=params)
            response.raise_for_status()
            return response.json()

    def _parse_results(self, payload: Dict[str, Any]) -> List[SearchResult]:
        results: List[SearchResult] = []

        for item in payload.get("shopping_results", []):
            url = item.get("product_link") or item.get("link")
            if not url or not is_valid_url(url):
                continue
            raw_price = item.get("extracted_price", item.get("price"))
            results.append(
                SearchResult(
                    url=url,
                    title=item.get("title", ""),
                    domain=extract_domain(url) or "",
                    snippet=item.get("source"),
                    price=parse_price(raw_price) if raw_price is not None else None,
                    currency=parse_currency(item.get("price")) if isinstance(item.get("price"), str) else None,
                )
            )

        for item in payload.get("organic_results", []):
            url = item.get("link", "")
            if not url or not is_valid_url(url):
                continue
            results.append(
                SearchResult(
                    url=url,
                    title=item.get("title", ""),
                    domain=extract_domain(url) or "",
                    snippet=item.get("snippet"),
                )
            )

        return results


__all__ = ["SearchProvider", "SerpApiSearchProvider"]
