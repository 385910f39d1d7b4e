"""
Network request patterns that indicate tracking beacons.

Used only to count tracking traffic per scan; nothing is blocked or
altered based on a match.
"""

from __future__ import annotations

import re

# ============================================================================
# URL Patterns
# ============================================================================

TRACKING_PATH_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"/collect", re.I),
    re.compile(r"/analytics", re.I),
    re.compile(r"/track", re.I),
    re.compile(r"/pixel", re.I),
    re.compile(r"/beacon", re.I),
    re.compile(r"/impression", re.I),
]

TRACKING_HOST_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"google-analytics\.com", re.I),
    re.compile(r"googletagmanager\.com", re.I),
    re.compile(r"facebook\.com/tr", re.I),
    re.compile(r"doubleclick\.net", re.I),
]

# Pixel images with query parameters and common click/visitor ids.
TRACKING_PARAM_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\.(gif|png)\?", re.I),
    re.compile(r"_ga=", re.I),
    re.compile(r"_gid=", re.I),
    re.compile(r"fbclid=", re.I),
]


def _combine(patterns: list[re.Pattern[str]]) -> re.Pattern[str]:
    """Merge a list of compiled patterns into one alternation regex."""
    combined = "|".join(f"(?:{p.pattern})" for p in patterns)
    return re.compile(combined, re.IGNORECASE)


TRACKING_REQUEST_COMBINED: re.Pattern[str] = _combine(
    TRACKING_PATH_PATTERNS + TRACKING_HOST_PATTERNS + TRACKING_PARAM_PATTERNS
)


def is_tracking_request(url: str | None) -> bool:
    """Return ``True`` when *url* looks like a tracking beacon."""
    if not url:
        return False
    return TRACKING_REQUEST_COMBINED.search(url) is not None
