"""Pydantic models for scans, discovered cookies and the scan API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import pydantic

from cookie_scanner.models.base import CamelModel

ScanStatus = Literal["PENDING", "RUNNING", "COMPLETED", "FAILED"]

# Forward-only ordering used by the status guard.
STATUS_ORDER: dict[str, int] = {"PENDING": 0, "RUNNING": 1, "COMPLETED": 2, "FAILED": 2}
TERMINAL_STATUSES = frozenset(["COMPLETED", "FAILED"])

SameSite = Literal["STRICT", "LAX", "NONE", "UNSPECIFIED"]

CookieSource = Literal["FIRST_PARTY", "THIRD_PARTY", "UNKNOWN"]

MAIN_SUBDOMAIN = "main"


def can_transition(current: str, new: str) -> bool:
    """Return ``True`` when moving from *current* to *new* status is allowed.

    Terminal statuses never change, and no status moves backwards.
    Re-writing the same non-terminal status is permitted.
    """
    if current in TERMINAL_STATUSES:
        return current == new
    return STATUS_ORDER[new] >= STATUS_ORDER[current]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CookieRecord(CamelModel):
    """One distinct cookie discovered during a scan.

    ``category``, ``description`` and ``provider`` stay ``None`` when
    categorization could not resolve the name, including while the
    upstream is unavailable.  No placeholder category is stored;
    status summaries count these records as ``uncategorized``.
    """

    name: str
    domain: str
    path: str = "/"
    page_url: str = ""
    expires_at: datetime | None = None
    secure: bool = False
    http_only: bool = False
    same_site: SameSite = "UNSPECIFIED"
    source: CookieSource = "UNKNOWN"
    category: str | None = None
    description: str | None = None
    provider: str | None = None
    subdomain_name: str = MAIN_SUBDOMAIN

    def key(self) -> tuple[str, str, str]:
        """Dedup identity: name, lower-cased domain and subdomain label."""
        return (self.name, self.domain.lower(), self.subdomain_name)


class ScanResult(CamelModel):
    """The persisted record of one scan invocation."""

    transaction_id: str
    url: str
    status: ScanStatus = "PENDING"
    cookies_by_subdomain: dict[str, list[CookieRecord]] = pydantic.Field(default_factory=dict)
    error_message: str | None = None
    created_at: datetime = pydantic.Field(default_factory=_utcnow)
    updated_at: datetime = pydantic.Field(default_factory=_utcnow)

    def all_cookies(self) -> list[CookieRecord]:
        return [cookie for cookies in self.cookies_by_subdomain.values() for cookie in cookies]


class ScanTarget(CamelModel):
    """A URL to visit and the subdomain label its cookies are filed under."""

    url: str
    subdomain_name: str


# ============================================================================
# API payloads
# ============================================================================


class ScanRequest(CamelModel):
    """Body of ``POST /api/scan``."""

    url: str
    subdomains: list[str] | None = None


class ScanStartResponse(CamelModel):
    """Returned as soon as a scan has been accepted."""

    transaction_id: str
    status: ScanStatus = "PENDING"
    message: str = "Scan started"


class CookieUpdateRequest(CamelModel):
    """Body of ``PUT /api/scan/{transactionId}/cookie``."""

    name: str
    subdomain_name: str | None = None
    category: str
    description: str
    provider: str | None = None


class SubdomainCookieGroup(CamelModel):
    """Per-subdomain overview in a status response."""

    subdomain_name: str
    url: str
    cookie_count: int


class ScanSummary(CamelModel):
    """Cookie counts across the whole scan."""

    total_cookies: int = 0
    subdomain_count: int = 0
    by_source: dict[str, int] = pydantic.Field(default_factory=dict)
    by_category: dict[str, int] = pydantic.Field(default_factory=dict)


class ScanStatusResponse(CamelModel):
    """Body of ``GET /api/scan/{transactionId}``."""

    transaction_id: str
    url: str
    status: ScanStatus
    error_message: str | None = None
    cookies_by_subdomain: dict[str, list[CookieRecord]] = pydantic.Field(default_factory=dict)
    subdomains: list[SubdomainCookieGroup] = pydantic.Field(default_factory=list)
    summary: ScanSummary = pydantic.Field(default_factory=ScanSummary)
    created_at: datetime
    updated_at: datetime


class CookieAddRequest(CamelModel):
    """Body of ``POST /api/scan/{transactionId}/cookies``.

    The subdomain bucket is derived from ``domain``.
    """

    name: str = pydantic.Field(min_length=1)
    domain: str = pydantic.Field(min_length=1)
    path: str = "/"
    expires_at: datetime | None = None
    secure: bool = False
    http_only: bool = False
    same_site: Literal["STRICT", "LAX", "NONE"] = "LAX"
    category: str | None = None
    description: str | None = None
    provider: str | None = None


class CookieAddResponse(CamelModel):
    """Returned after a cookie was added manually."""

    transaction_id: str
    name: str
    domain: str
    subdomain_name: str
    provider: str | None = None
    message: str = "Cookie added"
