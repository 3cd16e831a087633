"""Tests for the HTTP extractor and per-domain rate limiting."""

import json
import time
from decimal import Decimal

import httpx
import pytest

from pricetracker.models.enums import FailureType
from pricetracker.models.scraping import ScrapeConfig
from pricetracker.services.extractor import DomainRateLimiter, HttpExtractor

PRODUCT_URL = "https://shop.test/products/acme-widget"

JSONLD_PAGE = (
    "<html><head><script type='application/ld+json'>"
    + json.dumps(
        {
            "@type": "Product",
            "name": "Acme Widget",
            "sku": "W-1",
            "image": "/img/w.jpg",
            "offers": {"price": "19.99", "priceCurrency": "usd"},
        }
    )
    + "</script></head><body><h1>Acme Widget</h1></body></html>"
)

CSS_PAGE = """
<html><body>
  <h1 class="title">Selector Widget</h1>
  <div class="price-box"><span class="price">R$ 1.299,90</span></div>
  <span class="was">R$ 1.499,90</span>
  <span class="stock">Esgotado</span>
</body></html>
"""


def make_extractor(handler) -> HttpExtractor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpExtractor(client=client, timeout=5, rate_limiter=DomainRateLimiter(6000))


def serve(html: str, status_code: int = 200):
    return lambda request: httpx.Response(status_code, text=html)


class TestExtractSuccess:
    """Tests for successful extraction."""

    async def test_generic_recipe_uses_jsonld(self) -> None:
        result = await make_extractor(serve(JSONLD_PAGE)).extract(PRODUCT_URL, ScrapeConfig())

        assert result.success is True
        data = result.data
        assert data.name == "Acme Widget"
        assert data.price == Decimal("19.99")
        assert data.currency == "USD"
        assert data.external_id == "W-1"
        assert data.image_url == "https://shop.test/img/w.jpg"
        assert data.product_url == PRODUCT_URL

    async def test_css_recipe(self) -> None:
        recipe = ScrapeConfig(
            script_type="css",
            selectors={
                "name": "h1.title",
                "price": [".sale-price", ".price-box .price"],
                "original_price": ".was",
                "in_stock": ".stock",
            },
        )

        result = await make_extractor(serve(CSS_PAGE)).extract(PRODUCT_URL, recipe)

        assert result.success is True
        data = result.data
        assert data.name == "Selector Widget"
        assert data.price == Decimal("1299.90")
        assert data.original_price == Decimal("1499.90")
        assert data.currency == "BRL"
        assert data.in_stock is False
        assert data.external_id == "acme-widget"

    async def test_dict_config_accepted(self) -> None:
        result = await make_extractor(serve(JSONLD_PAGE)).extract(PRODUCT_URL, {"script_type": "jsonld"})
        assert result.success is True

    async def test_sends_user_agent(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["ua"] = request.headers.get("user-agent")
            return httpx.Response(200, text=JSONLD_PAGE)

        await make_extractor(handler).extract(PRODUCT_URL, ScrapeConfig())

        assert seen["ua"]


class TestExtractFailures:
    """Every page-level problem comes back as a typed failure."""

    @pytest.mark.parametrize(
        "status_code,failure_type",
        [
            (403, FailureType.BLOCKED),
            (429, FailureType.BLOCKED),
            (404, FailureType.NETWORK_ERROR),
            (503, FailureType.NETWORK_ERROR),
        ],
    )
    async def test_http_status(self, status_code, failure_type) -> None:
        result = await make_extractor(serve("nope", status_code)).extract(PRODUCT_URL, ScrapeConfig())

        assert result.success is False
        assert result.error.type == failure_type
        assert str(status_code) in result.error.message

    async def test_timeout(self) -> None:
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await make_extractor(handler).extract(PRODUCT_URL, ScrapeConfig())

        assert result.error.type == FailureType.TIMEOUT

    async def test_connection_error(self) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await make_extractor(handler).extract(PRODUCT_URL, ScrapeConfig())

        assert result.error.type == FailureType.NETWORK_ERROR

    async def test_captcha(self) -> None:
        page = "<html><body><form>Please complete the CAPTCHA</form></body></html>"
        result = await make_extractor(serve(page)).extract(PRODUCT_URL, ScrapeConfig())

        assert result.error.type == FailureType.CAPTCHA

    async def test_missing_selector_names_it(self) -> None:
        recipe = ScrapeConfig(script_type="css", selectors={"name": "h1.title", "price": [".sale", ".now"]})

        result = await make_extractor(serve(CSS_PAGE)).extract(PRODUCT_URL, recipe)

        assert result.error.type == FailureType.SELECTOR_NOT_FOUND
        assert result.error.selector == ".sale"

    async def test_no_structured_data(self) -> None:
        page = "<html><body><h1>Blog post</h1></body></html>"
        result = await make_extractor(serve(page)).extract(PRODUCT_URL, ScrapeConfig())

        assert result.error.type == FailureType.SELECTOR_NOT_FOUND

    async def test_unparseable_price(self) -> None:
        recipe = ScrapeConfig(script_type="css", selectors={"name": "h1", "price": "h1"})
        page = "<html><body><h1>Call us</h1></body></html>"

        result = await make_extractor(serve(page)).extract(PRODUCT_URL, recipe)

        assert result.error.type == FailureType.DATA_VALIDATION


class TestDomainRateLimiter:
    """Tests for per-domain request spacing."""

    async def test_same_domain_is_spaced(self) -> None:
        limiter = DomainRateLimiter(600)

        started = time.monotonic()
        await limiter.wait("shop.test")
        await limiter.wait("shop.test")

        assert time.monotonic() - started >= 0.09

    async def test_other_domains_do_not_wait(self) -> None:
        limiter = DomainRateLimiter(6)

        started = time.monotonic()
        await limiter.wait("a.test")
        await limiter.wait("b.test")

        assert time.monotonic() - started < 1
