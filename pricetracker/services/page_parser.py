"""
HTML parsing helpers for product pages.

Three strategies, tried by the generic recipe in order: schema.org JSON-LD,
OpenGraph/product meta tags, and CSS selectors from a stored recipe.
"""

import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from pricetracker.core.logging import get_logger

logger = get_logger(__name__)

CAPTCHA_MARKERS = (
    "captcha",
    "verify you are human",
    "unusual traffic",
    "automated requests",
    "cf-turnstile",
    "cf_chl_opt",
)

CURRENCY_SYMBOLS = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "R$": "BRL",
}

OUT_OF_STOCK_PHRASES = ("out of stock", "sold out", "unavailable", "esgotado")

# URL patterns that carry a retailer's product id
EXTERNAL_ID_PATTERNS = (
    r"/dp/([A-Z0-9]{10})",
    r"/gp/product/([A-Z0-9]{10})",
    r"/catalog/product/view/id/(\d+)",
    r"/products?/([A-Za-z0-9][A-Za-z0-9-]{2,})",
    r"/item/([A-Za-z0-9-]{4,})",
)
EXTERNAL_ID_PARAMS = ("product_id", "productId", "pid", "item_id", "itemId", "sku", "id")

_PRICE_NUMBER = re.compile(r"\d[\d.,\s]*")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def looks_like_captcha(html: str) -> bool:
    """
    Whether a page is a bot challenge rather than a product page.

    Large pages with a body are assumed real so a "captcha" string in a
    footer script does not trip detection.
    """
    lower = html.lower()
    if "<body" in lower and len(html) > 5000:
        return any(marker in lower for marker in ("cf-turnstile", "cf_chl_opt"))
    return any(marker in lower for marker in CAPTCHA_MARKERS)


def parse_price(text: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """
    Parse a price from text such as ``"$1,299.00"`` or ``"R$ 1.299,90"``.

    Returns None when no number is present.
    """
    if text is None:
        return None
    if isinstance(text, (int, float, Decimal)):
        return Decimal(str(text))

    match = _PRICE_NUMBER.search(text)
    if not match:
        return None
    number = re.sub(r"\s+", "", match.group(0)).rstrip(".,")

    # Whichever separator comes last is the decimal mark
    if "," in number and "." in number:
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        head, _, tail = number.rpartition(",")
        number = f"{head.replace(',', '')}.{tail}" if len(tail) in (1, 2) else number.replace(",", "")

    try:
        return Decimal(number)
    except InvalidOperation:
        return None


def parse_currency(text: Optional[str]) -> Optional[str]:
    """ISO code from a currency string or symbol."""
    if not text:
        return None
    stripped = text.strip()
    code = re.search(r"\b([A-Z]{3})\b", stripped)
    if code:
        return code.group(1)
    for symbol in sorted(CURRENCY_SYMBOLS, key=len, reverse=True):
        if symbol in stripped:
            return CURRENCY_SYMBOLS[symbol]
    return None


def parse_availability(value: Optional[str]) -> bool:
    if not value:
        return True
    lower = value.lower()
    if "instock" in lower.replace(" ", "") or "in stock" in lower:
        return True
    return not any(phrase in lower.replace("outofstock", "out of stock") for phrase in OUT_OF_STOCK_PHRASES)


def _iter_jsonld(node: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(node, list):
        for item in node:
            yield from _iter_jsonld(item)
    elif isinstance(node, dict):
        yield node
        if "@graph" in node:
            yield from _iter_jsonld(node["@graph"])


def _is_product(node: Dict[str, Any]) -> bool:
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return "Product" in types


def extract_jsonld(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """
    Product fields from a schema.org ``Product`` JSON-LD block.

    Returns a dict of raw fields, or None if no product block has a price.
    """
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue

        for node in _iter_jsonld(payload):
            if not _is_product(node):
                continue
            offers = node.get("offers") or {}
            if isinstance(offers, list):
                offers = offers[0] if offers else {}
            price = offers.get("price", offers.get("lowPrice"))
            if price is None:
                continue

            image = node.get("image")
            if isinstance(image, list):
                image = image[0] if image else None
            if isinstance(image, dict):
                image = image.get("url")

            return {
                "name": node.get("name"),
                "price": price,
                "currency": offers.get("priceCurrency"),
                "in_stock": parse_availability(offers.get("availability")),
                "image_url": image,
                "description": node.get("description"),
                "category": node.get("category"),
                "external_id": node.get("sku") or node.get("productID") or node.get("mpn"),
            }
    return None


def _meta(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag is not None and tag.get("content"):
            return tag["content"].strip()
    return None


def extract_opengraph(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """Product fields from OpenGraph and ``product:*`` meta tags."""
    price = _meta(soup, "product:price:amount", "og:price:amount")
    if price is None:
        return None

    return {
        "name": _meta(soup, "og:title") or (soup.title.string.strip() if soup.title and soup.title.string else None),
        "price": price,
        "currency": _meta(soup, "product:price:currency", "og:price:currency"),
        "in_stock": parse_availability(_meta(soup, "product:availability", "og:availability")),
        "image_url": _meta(soup, "og:image"),
        "description": _meta(soup, "og:description", "description"),
        "category": _meta(soup, "product:category"),
        "external_id": _meta(soup, "product:retailer_item_id", "product:sku", "og:product:sku"),
    }


def select_text(soup: BeautifulSoup, selectors: Union[str, List[str]]) -> Tuple[Optional[str], Optional[str]]:
    """
    Text of the first selector that matches.

    Returns:
        Tuple of (text, selector used); (None, None) when nothing matched
    """
    candidates = [selectors] if isinstance(selectors, str) else list(selectors)
    for selector in candidates:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = _element_value(element)
        if text:
            return text, selector
    return None, None


def _element_value(element: Tag) -> Optional[str]:
    for attr in ("content", "data-price", "value"):
        if element.get(attr):
            return str(element[attr]).strip()
    if element.name == "img" and element.get("src"):
        return str(element["src"]).strip()
    text = element.get_text(" ", strip=True)
    return text or None


def first_selector(selectors: Union[str, List[str]]) -> str:
    return selectors if isinstance(selectors, str) else (selectors[0] if selectors else "")


def external_id_from_url(url: str) -> Optional[str]:
    """Retailer product id embedded in a product URL, if any."""
    for pattern in EXTERNAL_ID_PATTERNS:
        match = re.search(pattern, url)
        if match:
            return match.group(1)

    params = parse_qs(urlparse(url).query)
    for name in EXTERNAL_ID_PARAMS:
        if params.get(name):
            return params[name][0]
    return None


def absolute_url(base_url: str, value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return urljoin(base_url, value)


def page_title(soup: BeautifulSoup) -> Optional[str]:
    heading = soup.find("h1")
    if heading is not None and heading.get_text(strip=True):
        return heading.get_text(" ", strip=True)
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None
