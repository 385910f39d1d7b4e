"""
Cookie capture and merge.

Two independent sources feed one scan-wide dedup map:

- cookies read from the browser context's cookie jar, and
- cookies observed in ``Set-Cookie`` headers of network responses.

A cookie's identity is ``(name, lower(domain), subdomain_name)``.  The
first observation of a key wins; later observations of the same key,
from either source, are ignored.  Each capture pass returns only the
cookies it newly discovered so the caller can categorize and persist
them as one batch.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from email import utils as email_utils
from urllib import parse

from cookie_scanner.models import scan
from cookie_scanner.utils import logger
from cookie_scanner.utils import url as url_mod

log = logger.create_logger("CookieCapture")

_DOMAIN_RE = re.compile(r"^[a-z0-9_.-]*[a-z0-9][a-z0-9_.-]*$")

_SAME_SITE_VALUES: dict[str, scan.SameSite] = {
    "strict": "STRICT",
    "lax": "LAX",
    "none": "NONE",
}


@dataclasses.dataclass(frozen=True)
class ObservedCookie:
    """A cookie as seen by one source, before attribution to a scan target."""

    name: str
    domain: str
    path: str = "/"
    expires_at: datetime | None = None
    secure: bool = False
    http_only: bool = False
    same_site: scan.SameSite = "UNSPECIFIED"


# ============================================================================
# Attribute helpers
# ============================================================================


def parse_same_site(value: object) -> scan.SameSite:
    """Normalise a SameSite attribute.

    Missing values are ``UNSPECIFIED``; unrecognised values fall back
    to ``LAX``, the browser default.
    """
    if value is None:
        return "UNSPECIFIED"
    text = str(value).strip().lower()
    if not text:
        return "UNSPECIFIED"
    if text in _SAME_SITE_VALUES:
        return _SAME_SITE_VALUES[text]
    log.debug("Unknown SameSite value, defaulting to LAX", {"sameSite": text[:40]})
    return "LAX"


def expiry_from_epoch(expires: object) -> datetime | None:
    """Convert a cookie-jar ``expires`` (epoch seconds, ``-1`` for session) to a datetime."""
    if not isinstance(expires, (int, float)) or isinstance(expires, bool) or expires <= 0:
        return None
    try:
        return datetime.fromtimestamp(float(expires), tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def determine_source(cookie_domain: str | None, site_root: str | None) -> scan.CookieSource:
    """Classify a cookie as first- or third-party by registrable domain.

    A leading ``.`` on the cookie domain is ignored.  Missing or
    malformed domain information yields ``UNKNOWN``.
    """
    if not cookie_domain or not site_root:
        return "UNKNOWN"
    cleaned = cookie_domain.strip().removeprefix(".").lower()
    if not cleaned or not _DOMAIN_RE.match(cleaned):
        return "UNKNOWN"
    cookie_root = url_mod.get_base_domain(cleaned)
    if cookie_root == url_mod.get_base_domain(site_root):
        return "FIRST_PARTY"
    return "THIRD_PARTY"


def cookie_key(name: str, domain: str, subdomain_name: str) -> tuple[str, str, str]:
    """Dedup identity shared by :class:`CookieRecord` and the collector."""
    return (name, (domain or "").lower(), subdomain_name or scan.MAIN_SUBDOMAIN)


# ============================================================================
# Sources
# ============================================================================


def observed_from_browser(cookie: Mapping[str, object]) -> ObservedCookie:
    """Build an :class:`ObservedCookie` from a Playwright cookie-jar entry."""
    return ObservedCookie(
        name=str(cookie.get("name") or ""),
        domain=str(cookie.get("domain") or ""),
        path=str(cookie.get("path") or "/"),
        expires_at=expiry_from_epoch(cookie.get("expires")),
        secure=bool(cookie.get("secure", False)),
        http_only=bool(cookie.get("httpOnly", False)),
        same_site=parse_same_site(cookie.get("sameSite")),
    )


def _parse_expires(value: str) -> datetime | None:
    try:
        parsed = email_utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_set_cookie_line(line: str, default_domain: str) -> ObservedCookie | None:
    parts = [part.strip() for part in line.split(";")]
    name, sep, _value = parts[0].partition("=")
    name = name.strip()
    if not sep or not name:
        return None

    domain = default_domain
    path = "/"
    secure = False
    http_only = False
    same_site: scan.SameSite = "UNSPECIFIED"
    expires_at: datetime | None = None
    max_age: int | None = None

    for attribute in parts[1:]:
        if not attribute:
            continue
        key, _, raw = attribute.partition("=")
        key = key.strip().lower()
        raw = raw.strip()
        if key == "domain" and raw.strip("."):
            # Stored the way the browser jar stores domain cookies.
            domain = "." + raw.lstrip(".").lower()
        elif key == "path" and raw:
            path = raw
        elif key == "secure":
            secure = True
        elif key == "httponly":
            http_only = True
        elif key == "samesite":
            same_site = parse_same_site(raw)
        elif key == "expires" and raw:
            expires_at = _parse_expires(raw)
        elif key == "max-age" and raw:
            try:
                max_age = int(raw)
            except ValueError:
                continue

    # Max-Age takes precedence over Expires.
    if max_age is not None:
        try:
            expires_at = datetime.now(UTC) + timedelta(seconds=max_age)
        except OverflowError:
            log.debug("Ignoring out-of-range Max-Age", {"cookie": name[:80]})
            expires_at = None

    return ObservedCookie(
        name=name,
        domain=domain,
        path=path,
        expires_at=expires_at,
        secure=secure,
        http_only=http_only,
        same_site=same_site,
    )


def parse_set_cookie_header(header_value: str | None, response_url: str) -> list[ObservedCookie]:
    """Parse a (possibly multi-line) ``Set-Cookie`` header value.

    Playwright joins repeated ``Set-Cookie`` headers with newlines.
    Each line is split on ``;``; the domain defaults to the response's
    host and the path to ``/``.  Lines without a ``name=value`` pair
    are dropped.
    """
    if not header_value:
        return []

    try:
        default_domain = (parse.urlparse(response_url).hostname or "").lower()
    except ValueError:
        default_domain = ""

    observed: list[ObservedCookie] = []
    for line in header_value.split("\n"):
        if not line.strip():
            continue
        cookie = _parse_set_cookie_line(line, default_domain)
        if cookie is None:
            log.debug("Dropped unparseable Set-Cookie line", {"responseUrl": response_url[:200]})
            continue
        observed.append(cookie)
    return observed


# ============================================================================
# Merge
# ============================================================================


class CookieCollector:
    """Scan-wide first-seen-wins dedup map of discovered cookies."""

    def __init__(self, site_root: str) -> None:
        self.site_root = site_root
        self._records: dict[tuple[str, str, str], scan.CookieRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def records(self) -> list[scan.CookieRecord]:
        return list(self._records.values())

    def add(
        self,
        observed: ObservedCookie,
        *,
        subdomain_name: str,
        page_url: str,
    ) -> scan.CookieRecord | None:
        """Record *observed* unless its key was already seen.

        Returns:
            The new record, or ``None`` for a duplicate or nameless cookie.
        """
        if not observed.name:
            return None
        key = cookie_key(observed.name, observed.domain, subdomain_name)
        if key in self._records:
            return None

        record = scan.CookieRecord(
            name=observed.name,
            domain=observed.domain,
            path=observed.path or "/",
            page_url=page_url,
            expires_at=observed.expires_at,
            secure=observed.secure,
            http_only=observed.http_only,
            same_site=observed.same_site,
            source=determine_source(observed.domain, self.site_root),
            subdomain_name=subdomain_name,
        )
        self._records[key] = record
        return record

    def add_all(
        self,
        observed: Iterable[ObservedCookie],
        *,
        subdomain_name: str,
        page_url: str,
    ) -> list[scan.CookieRecord]:
        """Merge a batch and return only the newly discovered records."""
        batch: list[scan.CookieRecord] = []
        for cookie in observed:
            record = self.add(cookie, subdomain_name=subdomain_name, page_url=page_url)
            if record is not None:
                batch.append(record)
        return batch

    def add_browser_cookies(
        self,
        cookies: Iterable[Mapping[str, object]],
        *,
        subdomain_name: str,
        page_url: str,
    ) -> list[scan.CookieRecord]:
        """Merge Playwright cookie-jar entries; malformed entries are skipped."""
        observed: list[ObservedCookie] = []
        for cookie in cookies:
            try:
                observed.append(observed_from_browser(cookie))
            except (TypeError, ValueError) as exc:
                log.warn("Skipping malformed browser cookie", {"error": str(exc)[:100]})
        return self.add_all(observed, subdomain_name=subdomain_name, page_url=page_url)
