"""
Best-effort consent-banner dismissal.

``dismiss_banner`` tries a fixed list of accept-button selectors on
the main frame and then on consent-manager iframes, followed by a
text-based fallback over plain buttons.  Every attempt shares one
wall-clock deadline.  The function never raises; a banner that
cannot be dismissed is reported as ``False``.
"""

from __future__ import annotations

import asyncio
import time

from playwright import async_api

from cookie_scanner.consent import selectors
from cookie_scanner.utils import errors, logger

log = logger.create_logger("Consent-Dismiss")

# Per-click timeout (ms); the overall deadline still applies.
_CLICK_TIMEOUT_MS = 2000


async def dismiss_banner(page: async_api.Page, timeout_ms: int) -> bool:
    """Try to accept a cookie-consent banner on *page* within *timeout_ms*.

    Returns:
        ``True`` when an accept control was clicked and the page did
        not navigate away as a result.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    original_url = page.url

    try:
        frames = [page.main_frame] + [f for f in page.frames if selectors.is_consent_frame(f, page.main_frame)]
        for frame in frames:
            if time.monotonic() >= deadline:
                break
            matched = await _click_first_match(frame, deadline)
            if matched is None:
                continue
            if await _did_navigate_away(page, original_url):
                continue
            log.success("Consent banner dismissed", {"selector": matched, "frame": frame.url[:80]})
            return True
    except Exception as exc:
        log.warn("Consent dismissal failed", {"error": errors.get_error_message(exc)[:200]})
        return False

    log.info("No consent banner dismissed", {"timedOut": time.monotonic() >= deadline})
    return False


async def _click_first_match(frame: async_api.Frame, deadline: float) -> str | None:
    """Click the first visible accept control in *frame* and return what matched."""
    for selector in selectors.ACCEPT_SELECTORS:
        if time.monotonic() >= deadline:
            return None
        try:
            locator = frame.locator(selector).first
            if not await locator.is_visible():
                continue
        except Exception:
            log.debug("Selector lookup failed", {"selector": selector})
            continue
        if await _safe_click(locator, _click_timeout(deadline)):
            return selector

    try:
        buttons = frame.locator("button").filter(has_text=selectors.ACCEPT_TEXT_RE)
        count = min(await buttons.count(), selectors.MAX_FALLBACK_BUTTONS)
    except Exception:
        log.debug("Fallback button lookup failed", {"frame": frame.url[:80]})
        return None

    for index in range(count):
        if time.monotonic() >= deadline:
            return None
        button = buttons.nth(index)
        try:
            if not await button.is_visible():
                continue
        except Exception:
            continue
        if await _safe_click(button, _click_timeout(deadline)):
            return f"button:text-match[{index}]"
    return None


def _click_timeout(deadline: float) -> int:
    remaining_ms = int((deadline - time.monotonic()) * 1000)
    return max(min(_CLICK_TIMEOUT_MS, remaining_ms), 100)


async def _is_safe_to_click(locator: async_api.Locator, timeout: int = 1000) -> bool | None:
    """Return whether clicking this element stays on the current page.

    ``None`` means the element could not be evaluated (detached,
    cross-origin, timed out).
    """
    try:
        return await locator.evaluate(  # type: ignore[no-any-return]
            r"""
            el => {
                const tag = el.tagName.toLowerCase();
                if (tag === 'button' || el.type === 'submit' || el.type === 'button') {
                    return true;
                }
                if (el.hasAttribute('onclick')) {
                    return true;
                }
                const href = el.getAttribute('href');
                if (href === null || href === undefined) {
                    return true;
                }
                const trimmed = href.trim();
                return trimmed === '' || trimmed.startsWith('#') || /^javascript:/i.test(trimmed);
            }
            """,
            timeout=timeout,
        )
    except Exception:
        log.debug("Could not evaluate element safety")
        return None


async def _safe_click(locator: async_api.Locator, timeout: int) -> bool:
    """Click *locator* unless it is a real navigation link."""
    try:
        if await _is_safe_to_click(locator) is False:
            log.debug("Skipping click, element would navigate away")
            return False
        await locator.click(timeout=timeout)
        return True
    except Exception:
        return False


async def _did_navigate_away(page: async_api.Page, original_url: str) -> bool:
    """Go back and report ``True`` if the click changed the page URL."""
    try:
        await asyncio.sleep(0.3)
        current_url = page.url
        if current_url != original_url:
            log.warn(
                "Click caused navigation, going back",
                {"from": original_url[:80], "to": current_url[:80]},
            )
            await page.go_back(wait_until="domcontentloaded", timeout=5000)
            return True
    except Exception as exc:
        log.warn("Navigation check failed", {"error": str(exc)[:200]})
    return False
