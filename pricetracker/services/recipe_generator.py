"""
Recipe generator: derives a fresh extraction recipe for a source whose
stored one stopped working.
"""

from typing import Dict, List, Optional, Protocol, Union

from pricetracker.core.exceptions import ExtractionError, RecipeGenerationError
from pricetracker.core.logging import get_logger
from pricetracker.models.scraping import ScrapeConfig
from pricetracker.services import page_parser
from pricetracker.services.extractor import HttpExtractor

logger = get_logger(__name__)

# Common markup for product fields, most specific first
CANDIDATE_SELECTORS: Dict[str, List[str]] = {
    "name": ["[itemprop=name]", "h1.product-title", "h1.product_title", "h1"],
    "price": [
        "[itemprop=price]",
        "[data-price]",
        ".price-current",
        ".product-price",
        ".price",
    ],
    "currency": ["[itemprop=priceCurrency]"],
    "original_price": [".price-old", ".was-price", "del .price", "s.price"],
    "image_url": ["[itemprop=image]", "img.product-image"],
    "in_stock": ["[itemprop=availability]", ".stock-status", ".availability"],
}


class RecipeGenerator(Protocol):
    """Produces a new recipe for a source."""

    async def generate(self, url: str, previous: Optional[ScrapeConfig] = None) -> ScrapeConfig:
        ...


class HeuristicRecipeGenerator:
    """
    Builds a recipe by probing the live page.

    Structured data is preferred over CSS because it survives redesigns:
    JSON-LD first, then OpenGraph tags, then a selector set assembled from
    common product markup. A candidate only counts if the extractor can
    parse the page with it.
    """

    def __init__(self, extractor: Optional[HttpExtractor] = None):
        self.extractor = extractor or HttpExtractor()

    async def generate(self, url: str, previous: Optional[ScrapeConfig] = None) -> ScrapeConfig:
        """
        Generate and verify a recipe for ``url``.

        Raises:
            RecipeGenerationError: If the page cannot be fetched or no recipe parses it
        """
        try:
            html = await self.extractor.fetch(url)
        except ExtractionError as e:
            raise RecipeGenerationError(f"Could not fetch page: {e.message}", url=url) from e

        soup = page_parser.parse_html(html)
        candidates: List[ScrapeConfig] = []
        if page_parser.extract_jsonld(soup):
            candidates.append(ScrapeConfig(script_type="jsonld"))
        if page_parser.extract_opengraph(soup):
            candidates.append(ScrapeConfig(script_type="opengraph"))

        selectors = self._probe_selectors(soup)
        if "price" in selectors:
            candidates.append(ScrapeConfig(script_type="css", selectors=selectors))

        # The recipe that just stopped working is the last resort
        if previous is not None:
            candidates.sort(key=lambda recipe: self._same_recipe(recipe, previous))

        for recipe in candidates:
            try:
                self.extractor.parse(url, html, recipe)
            except ExtractionError:
                continue

            logger.info(
                "Recipe generated",
                extra={"url": url, "script_type": recipe.script_type},
            )
            return recipe

        raise RecipeGenerationError("No extraction strategy matched the page", url=url)

    @staticmethod
    def _probe_selectors(soup) -> Dict[str, Union[str, List[str]]]:
        found: Dict[str, Union[str, List[str]]] = {}
        for field, options in CANDIDATE_SELECTORS.items():
            for selector in options:
                text, _ = page_parser.select_text(soup, selector)
                if text is None:
                    continue
                if field == "price" and page_parser.parse_price(text) is None:
                    continue
                found[field] = selector
                break
        return found

    @staticmethod
    def _same_recipe(candidate: ScrapeConfig, previous: ScrapeConfig) -> bool:
        return (
            candidate.script_type == previous.script_type
            and candidate.selectors == previous.selectors
        )


__all__ = ["HeuristicRecipeGenerator", "RecipeGenerator"]
