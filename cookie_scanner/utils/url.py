"""
URL and domain utility functions for cookie attribution.
"""

from __future__ import annotations

from urllib import parse

import tldextract

# Bundled public-suffix snapshot only; never fetch the list at runtime.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def extract_domain(url: str) -> str:
    """Extract the hostname from a URL string."""
    try:
        parsed = parse.urlparse(url)
        return parsed.hostname or "unknown"
    except ValueError:
        return "unknown"


def get_base_domain(domain: str) -> str:
    """Extract the registrable root domain from a hostname or URL.

    Uses the public-suffix list so multi-part suffixes such as
    ``co.uk`` are handled, and strips a leading ``.`` as found on
    cookie domains.  Input that has no registrable part (``localhost``,
    a bare suffix, an IP address) is returned lower-cased as-is.

    Args:
        domain: A hostname like ``"www.example.co.uk"``, a cookie
            domain like ``".example.com"`` or a full URL.

    Returns:
        The root domain, e.g. ``"example.co.uk"``.
    """
    if not domain:
        return ""
    host = domain.strip()
    if host.startswith(("http://", "https://")):
        host = extract_domain(host)
    host = host.removeprefix(".").lower()

    extracted = _extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


def is_third_party(request_url: str, page_url: str) -> bool:
    """Determine if a request URL is from a third-party domain relative to the page URL."""
    request_domain = extract_domain(request_url)
    page_domain = extract_domain(page_url)
    return get_base_domain(request_domain) != get_base_domain(page_domain)


def has_public_suffix(host: str) -> bool:
    """Return ``True`` when *host* ends in a known public suffix."""
    return bool(_extract(host.lower()).suffix)


def build_subdomain_url(main_url: str, subdomain_name: str) -> str:
    """Rebuild the URL of a scanned subdomain from its label.

    ``main`` maps back to *main_url* itself.
    """
    if subdomain_name == "main":
        return main_url
    root = get_base_domain(main_url)
    scheme = "https" if main_url.startswith("https") else "http"
    return f"{scheme}://{subdomain_name}.{root}"
