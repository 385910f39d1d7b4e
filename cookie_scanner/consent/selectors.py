"""Selectors and frame heuristics for consent-banner dismissal."""

from __future__ import annotations

import re
from urllib import parse

from playwright import async_api

# Tried in order; the first visible, safe match is clicked.
ACCEPT_SELECTORS: tuple[str, ...] = (
    # Text-labelled buttons
    "button:has-text('Accept')",
    "button:has-text('Accept All')",
    "button:has-text('ACCEPT ALL')",
    "button:has-text('I Accept')",
    "button:has-text('Agree')",
    "button:has-text('AGREE')",
    # Attribute hints
    "[data-testid*='accept']",
    "[data-cy*='accept']",
    "button[id*='accept']",
    "button[class*='accept']",
    "[aria-label*='accept']",
    # Cookie-specific
    "[id*='cookie-accept']",
    "[class*='cookie-accept']",
    ".accept-cookies",
    # Consent-manager platforms
    "#onetrust-accept-btn-handler",
    ".fc-primary-button",
    "#CybotCookiebotDialogBodyButtonAccept",
    ".qc-cmp-button",
    # Generic
    ".btn-accept",
    ".button-accept",
    ".consent-accept",
)

# Fallback: any button whose text reads like an acceptance.
ACCEPT_TEXT_RE = re.compile(r"accept|agree|allow", re.I)

# How many fallback buttons to try per frame.
MAX_FALLBACK_BUTTONS = 10

# Consent-manager keywords matched against iframe hostname only.
CONSENT_HOST_KEYWORDS: tuple[str, ...] = (
    "consent",
    "onetrust",
    "cookiebot",
    "sourcepoint",
    "trustarc",
    "didomi",
    "quantcast",
    "gdpr",
    "privacy",
    "cmp",
    "cookie",
)

# Hostname fragments of ad-tech sync frames that only look like consent frames.
CONSENT_HOST_EXCLUDE: tuple[str, ...] = (
    "cookie-sync",
    "pixel",
    "-sync.",
    "ad-sync",
    "user-sync",
    "match.",
    "prebid",
)


def is_consent_host(url: str) -> bool:
    """Return ``True`` if *url*'s hostname looks like a consent manager."""
    try:
        hostname = (parse.urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    if not hostname or any(ex in hostname for ex in CONSENT_HOST_EXCLUDE):
        return False
    return any(kw in hostname for kw in CONSENT_HOST_KEYWORDS)


def is_consent_frame(frame: async_api.Frame, main_frame: async_api.Frame) -> bool:
    """Return ``True`` if *frame* is a consent-manager iframe (never the main frame)."""
    if frame == main_frame:
        return False
    return is_consent_host(frame.url)
