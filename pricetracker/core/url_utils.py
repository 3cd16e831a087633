"""
URL normalization and cleaning utilities using url-normalize and w3lib.
"""

from typing import Optional, Set
from urllib.parse import urlparse

from url_normalize import url_normalize
from w3lib.url import canonicalize_url, url_query_cleaner

from pricetracker.core.logging import get_logger

logger = get_logger(__name__)

# Query parameters that never identify a product
TRACKING_PARAMS: Set[str] = {
    # Google Analytics
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    # Click IDs
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "igshid",
    # Mailchimp / HubSpot
    "mc_eid",
    "mc_cid",
    "_hsenc",
    "_hsmi",
    # Amazon referral noise
    "ref",
    "ref_",
    "pf_rd_p",
    "pf_rd_r",
    "pf_rd_s",
    "pf_rd_t",
    "pf_rd_i",
    "qid",
    # Session IDs
    "sessionid",
    "sid",
    "phpsessid",
    "jsessionid",
}


def is_valid_url(url: str) -> bool:
    """
    Check if URL is valid and well-formed.

    Example:
        >>> is_valid_url("https://example.com")
        True
        >>> is_valid_url("not a url")
        False
    """
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        result = urlparse(url.strip())
        return all([result.scheme, result.netloc]) and result.scheme in ["http", "https"]
    except ValueError:
        return False


def normalize_url(url: str, keep_fragments: bool = False) -> str:
    """
    Normalize URL for consistent comparison and storage.

    Lowercases scheme and host, drops default ports, strips tracking
    parameters, sorts the remaining query and drops the fragment.

    Args:
        url: URL to normalize
        keep_fragments: Whether to keep URL fragments (default: False)

    Returns:
        Normalized URL string

    Example:
        >>> normalize_url("HTTPS://Example.COM/Path?utm_source=test&id=123")
        'https://example.com/Path?id=123'
    """
    normalized = url_normalize(url.strip())
    cleaned = url_query_cleaner(
        normalized,
        parameterlist=tuple(TRACKING_PARAMS),
        remove=True,
        keep_fragments=keep_fragments,
    )
    canonical = canonicalize_url(cleaned, keep_fragments=keep_fragments)

    logger.debug(
        "URL normalized",
        extra={"original": url, "normalized": canonical},
    )
    return canonical


def extract_domain(url: str) -> Optional[str]:
    """
    Extract the host name from a URL, without port or credentials.

    Example:
        >>> extract_domain("https://www.example.com:8443/path")
        'www.example.com'
    """
    try:
        hostname = urlparse(url).hostname
    except ValueError as e:
        logger.warning(
            "Domain extraction failed",
            extra={"url": url, "error": str(e)},
        )
        return None
    return hostname.lower() if hostname else None


__all__ = [
    "TRACKING_PARAMS",
    "normalize_url",
    "extract_domain",
    "is_valid_url",
]
