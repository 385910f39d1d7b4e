"""
Scan-target validation.

Rejects anything that should never be handed to the browser: non-HTTP
schemes, reserved or internal hosts, private address space, direct file
downloads and unusual ports.  Subdomain lists are validated as a whole
so the caller gets every problem in one error message.
"""

from __future__ import annotations

import dataclasses
import ipaddress
import re
from urllib import parse

from cookie_scanner.utils import logger
from cookie_scanner.utils import url as url_mod

log = logger.create_logger("Validation")

MAX_URL_LENGTH = 2048

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):")

_BLOCKED_HOSTS = frozenset(["localhost", "test", "invalid", "example", "local"])
_BLOCKED_HOST_SUFFIXES = (".local", ".test", ".localhost", ".invalid")

_INTERNAL_LABEL_RE = re.compile(r"(^|\.)(internal|staging|dev|test|local|private)\.")

_HOST_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

_BLOCKED_EXTENSIONS = frozenset([
    "pdf", "doc", "docx", "xls", "xlsx", "zip", "rar", "exe", "dmg",
    "pkg", "deb", "rpm", "tar", "gz", "mp4", "avi", "mp3", "wav",
    "jpg", "png", "gif",
])


@dataclasses.dataclass(frozen=True)
class UrlValidationResult:
    """Outcome of validating a single URL."""

    valid: bool
    normalized_url: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, normalized_url: str) -> UrlValidationResult:
        return cls(valid=True, normalized_url=normalized_url)

    @classmethod
    def invalid(cls, message: str) -> UrlValidationResult:
        return cls(valid=False, error_message=message)


@dataclasses.dataclass(frozen=True)
class SubdomainValidationResult:
    """Outcome of validating a list of subdomain URLs."""

    valid: bool
    subdomains: list[str] = dataclasses.field(default_factory=list)
    error_message: str | None = None


def _is_allowed_port(port: int) -> bool:
    return port in (80, 443, 8080, 8443) or 3000 <= port <= 3999 or 8000 <= port <= 8999


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def _is_valid_domain_name(host: str) -> bool:
    """Check label syntax and that the host ends in a public suffix."""
    if "." not in host or ".." in host:
        return False
    if host.startswith((".", "-")) or host.endswith((".", "-")):
        return False
    if not all(_HOST_LABEL_RE.match(label) for label in host.split(".")):
        return False
    return url_mod.has_public_suffix(host)


def _has_blocked_extension(path: str) -> bool:
    last_segment = path.rsplit("/", 1)[-1]
    if "." not in last_segment:
        return False
    return last_segment.rsplit(".", 1)[-1].lower() in _BLOCKED_EXTENSIONS


def validate_url_for_scanning(url: str | None) -> UrlValidationResult:
    """Validate and normalize a URL before it is scanned.

    Returns:
        A result carrying the trimmed URL when valid, or a
        human-readable reason when not.
    """
    if url is None or not url.strip():
        return UrlValidationResult.invalid("URL cannot be null or empty")

    candidate = url.strip()
    if len(candidate) > MAX_URL_LENGTH:
        return UrlValidationResult.invalid("URL exceeds maximum allowed length")

    scheme_match = _SCHEME_RE.match(candidate)
    if not scheme_match:
        return UrlValidationResult.invalid("URL must include HTTP or HTTPS protocol (e.g., https://example.com)")
    if scheme_match.group(1).lower() not in ("http", "https"):
        return UrlValidationResult.invalid("Only HTTP and HTTPS protocols are allowed")

    try:
        parsed = parse.urlparse(candidate)
        port = parsed.port
    except ValueError as exc:
        return UrlValidationResult.invalid(f"Invalid URL format: {exc}")

    host = (parsed.hostname or "").lower()
    if not host:
        return UrlValidationResult.invalid("URL must have a valid host")

    ip = _parse_ip(host)
    if ip is not None:
        if ip.is_loopback or ip.is_unspecified:
            return UrlValidationResult.invalid("Localhost and loopback addresses are not allowed")
        if ip.is_private or ip.is_link_local or ip.is_reserved or ip.is_multicast:
            return UrlValidationResult.invalid("Private or reserved IP addresses are not allowed")
    else:
        if host in _BLOCKED_HOSTS or host.endswith(_BLOCKED_HOST_SUFFIXES):
            return UrlValidationResult.invalid("Domain is reserved or for testing purposes")
        if not _is_valid_domain_name(host):
            return UrlValidationResult.invalid("Invalid domain name format")
        if _INTERNAL_LABEL_RE.search(host):
            return UrlValidationResult.invalid("URL appears to target internal/admin services")

    path = parsed.path or ""
    if _has_blocked_extension(path):
        return UrlValidationResult.invalid("URL points to a file type that cannot be scanned for cookies")

    if port is not None and not _is_allowed_port(port):
        return UrlValidationResult.invalid(f"Port {port} is not allowed for scanning")

    if ".." in path or "//" in path:
        return UrlValidationResult.invalid("URL contains suspicious path traversal patterns")

    return UrlValidationResult.ok(candidate)


def validate_subdomains(main_url: str, subdomains: list[str] | None) -> SubdomainValidationResult:
    """Check every subdomain URL belongs to *main_url*'s root domain.

    A subdomain is rejected when it fails URL validation, has a
    different root domain, or is the same host as the main URL.
    All rejections are reported together.
    """
    if not subdomains:
        return SubdomainValidationResult(valid=True)

    main_root = url_mod.get_base_domain(main_url)
    if not main_root:
        return SubdomainValidationResult(valid=False, error_message=f"Cannot extract root domain from main URL: {main_url}")
    main_host = url_mod.extract_domain(main_url).lower()

    validated: list[str] = []
    problems: list[str] = []

    for raw in subdomains:
        if raw is None or not raw.strip():
            problems.append("Empty subdomain")
            continue
        candidate = raw.strip()

        result = validate_url_for_scanning(candidate)
        if not result.valid or result.normalized_url is None:
            problems.append(f"{candidate} - {result.error_message}")
            continue

        if url_mod.get_base_domain(candidate) != main_root:
            problems.append(f"{candidate} - Does not belong to domain: {main_root}")
            continue

        if url_mod.extract_domain(candidate).lower() == main_host:
            problems.append(f"{candidate} - Subdomain cannot be the same as the main URL")
            continue

        validated.append(result.normalized_url)

    if problems:
        return SubdomainValidationResult(valid=False, error_message="Invalid subdomains found: " + ", ".join(problems))

    log.debug("Subdomains validated", {"root": main_root, "count": len(validated)})
    return SubdomainValidationResult(valid=True, subdomains=validated)


def extract_subdomain_name(url: str, root_domain: str) -> str:
    """Derive the bucket label for a subdomain URL.

    ``https://shop.example.com`` with root ``example.com`` yields
    ``"shop"``; the bare root yields ``"main"``; anything outside
    the root yields ``"unknown"``.
    """
    host = url_mod.extract_domain(url if "://" in url else f"https://{url}").lower()
    root = root_domain.lower()
    if host == root:
        return "main"
    if host.endswith("." + root):
        return host[: -len(root) - 1] or "main"
    return "unknown"
