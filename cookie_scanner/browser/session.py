"""
Browser session management for concurrent scans.
Each BrowserSession owns its own Playwright runtime, browser and
context, so concurrent scans never share browser state.  A session
lives for exactly one scan.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from playwright import async_api

from cookie_scanner import config
from cookie_scanner.capture import cookies as cookie_capture
from cookie_scanner.capture import tracking
from cookie_scanner.utils import errors, logger, metrics

log = logger.create_logger("BrowserSession")

# ============================================================================
# Constants
# ============================================================================

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

# Each tier waits for less than the one before it.
NAVIGATION_TIERS: tuple[tuple[WaitUntil, int], ...] = (
    ("networkidle", 20000),
    ("domcontentloaded", 15000),
    ("load", 10000),
)

MAX_PENDING_HEADER_COOKIES = 5000

_HAS_EMBEDDED_CONTENT_JS = "document.querySelectorAll('iframe, embed, object').length > 0"
_SCROLL_TO_JS = "(fraction) => window.scrollTo(0, document.body.scrollHeight * fraction)"
_DISPATCH_EVENTS_JS = """
() => {
    window.dispatchEvent(new Event('scroll'));
    window.dispatchEvent(new Event('resize'));
}
"""


class BrowserSession:
    """
    Manages an isolated browser session for a single scan.

    Use as an async context manager, or call :meth:`launch` and
    :meth:`close` explicitly.  :meth:`close` never raises.
    """

    def __init__(
        self,
        settings: config.BrowserSettings,
        tracker: metrics.ScanPhaseTracker | None = None,
    ) -> None:
        self._settings = settings
        self._tracker = tracker
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._context: async_api.BrowserContext | None = None
        self._page: async_api.Page | None = None
        self._pending_header_cookies: list[cookie_capture.ObservedCookie] = []
        self.responses_seen = 0
        self.tracking_requests = 0

    async def __aenter__(self) -> BrowserSession:
        await self.launch()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ==========================================================================
    # State Getters
    # ==========================================================================

    @property
    def page(self) -> async_api.Page:
        if self._page is None:
            raise errors.ScanExecutionError("No browser session active", "Browser session is not available")
        return self._page

    @property
    def context(self) -> async_api.BrowserContext:
        if self._context is None:
            raise errors.ScanExecutionError("No browser context active", "Browser session is not available")
        return self._context

    # ==========================================================================
    # Browser Lifecycle
    # ==========================================================================

    async def launch(self) -> None:
        """Start Playwright, launch Chromium and open one page.

        Raises:
            ScanExecutionError: If the browser cannot be started.
        """
        s = self._settings
        log.info("Launching browser", {"headless": s.headless, "viewport": f"{s.viewport_width}x{s.viewport_height}"})
        try:
            self._playwright = await async_api.async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=s.headless, timeout=s.launch_timeout_ms)
            self._context = await self._browser.new_context(
                user_agent=s.user_agent,
                viewport={"width": s.viewport_width, "height": s.viewport_height},
                java_script_enabled=True,
                accept_downloads=False,
            )
            self._context.set_default_timeout(s.default_timeout_ms)
            self._context.set_default_navigation_timeout(s.navigation_timeout_ms)
            self._context.on("request", self._on_request)
            self._context.on("response", self._on_response)
            self._page = await self._context.new_page()
        except async_api.Error as exc:
            await self.close()
            raise errors.ScanExecutionError(
                f"Browser launch failed: {exc.message}", "Browser could not be started for scanning"
            ) from exc
        log.debug("Browser launched")

    async def close(self) -> None:
        """Release the context, then the browser, then Playwright.

        Failures are logged and swallowed so cleanup never masks the
        error that ended the scan.
        """
        if self._context is not None:
            try:
                for page in self._context.pages:
                    if not page.is_closed():
                        await page.close()
                await self._context.close()
            except Exception as exc:
                log.warn("Error closing context", {"error": errors.get_error_message(exc)[:200]})
            self._context = None
            self._page = None

        if self._browser is not None:
            try:
                if self._browser.is_connected():
                    await self._browser.close()
            except Exception as exc:
                log.warn("Error closing browser", {"error": errors.get_error_message(exc)[:200]})
            self._browser = None

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.warn("Error stopping Playwright", {"error": errors.get_error_message(exc)[:200]})
            self._playwright = None

        log.debug("Browser session closed")

    # ==========================================================================
    # Network Listeners
    # ==========================================================================

    def _on_request(self, request: async_api.Request) -> None:
        """Count tracking-beacon requests."""
        if tracking.is_tracking_request(request.url):
            self.tracking_requests += 1
            if self._tracker is not None:
                self._tracker.tracking_requests += 1

    async def _on_response(self, response: async_api.Response) -> None:
        """Buffer cookies from ``Set-Cookie`` headers of every response."""
        self.responses_seen += 1
        if self._tracker is not None:
            self._tracker.responses_seen += 1
        try:
            header = await response.header_value("set-cookie")
        except Exception:
            log.debug("Could not read response headers", {"url": response.url[:120]})
            return
        if not header:
            return
        if len(self._pending_header_cookies) >= MAX_PENDING_HEADER_COOKIES:
            log.debug("Header cookie buffer full", {"limit": MAX_PENDING_HEADER_COOKIES})
            return
        self._pending_header_cookies.extend(cookie_capture.parse_set_cookie_header(header, response.url))

    def drain_header_cookies(self) -> list[cookie_capture.ObservedCookie]:
        """Return and clear the cookies observed in response headers so far."""
        drained = self._pending_header_cookies
        self._pending_header_cookies = []
        return drained

    # ==========================================================================
    # Navigation
    # ==========================================================================

    async def navigate_with_fallback(self, url: str) -> async_api.Response | None:
        """Navigate to *url*, relaxing the wait condition on timeout.

        Tries ``networkidle``, then ``domcontentloaded``, then
        ``load``, each with a shorter timeout.

        Returns:
            The main response, or ``None`` if every tier timed out,
            there was no response, or the response was not OK.
        """
        response: async_api.Response | None = None
        for index, (wait_until, timeout) in enumerate(NAVIGATION_TIERS):
            try:
                log.debug("Navigating", {"url": url, "waitUntil": wait_until, "timeout": timeout})
                response = await self.page.goto(url, wait_until=wait_until, timeout=timeout)
                break
            except async_api.TimeoutError:
                if index + 1 < len(NAVIGATION_TIERS):
                    log.warn(
                        "Navigation timed out, relaxing wait condition",
                        {"url": url, "waitUntil": wait_until, "next": NAVIGATION_TIERS[index + 1][0]},
                    )
                else:
                    log.warn("Navigation timed out on every wait condition", {"url": url})
                    return None

        if response is None or not response.ok:
            log.warn("Failed to load target", {"url": url, "status": response.status if response else None})
            return None
        return response

    async def settle_after_load(self) -> None:
        """Give late scripts time to run after navigation."""
        page = self.page
        await page.wait_for_timeout(500)
        if await page.evaluate(_HAS_EMBEDDED_CONTENT_JS):
            log.debug("Embedded content detected, extending wait")
            await page.wait_for_timeout(1500)
        try:
            await page.wait_for_load_state("networkidle")
        except async_api.TimeoutError:
            log.debug("Network did not go idle, continuing")
        await page.wait_for_timeout(2000)

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    # ==========================================================================
    # Interaction
    # ==========================================================================

    async def simulate_interaction(self) -> None:
        """Scroll through the page and fire scroll/resize events to wake lazy trackers."""
        page = self.page
        await page.evaluate(_SCROLL_TO_JS, 0.3)
        await page.wait_for_timeout(1000)
        await page.evaluate(_SCROLL_TO_JS, 0.7)
        await page.wait_for_timeout(1000)
        await page.evaluate(_DISPATCH_EVENTS_JS)
        await page.wait_for_timeout(1500)
        # Cookie-sync chains often fire a few seconds after interaction.
        await page.wait_for_timeout(4000)

    # ==========================================================================
    # Cookies & Frames
    # ==========================================================================

    async def get_context_cookies(self, urls: list[str] | None = None) -> list[Mapping[str, object]]:
        """Read the context cookie jar, optionally scoped to *urls*."""
        if urls:
            return list(await self.context.cookies(urls))
        return list(await self.context.cookies())

    def child_frame_urls(self) -> list[str]:
        """Distinct http(s) URLs of the page's child frames, in document order."""
        page = self.page
        seen: set[str] = set()
        urls: list[str] = []
        for frame in page.frames:
            if frame == page.main_frame:
                continue
            frame_url = (frame.url or "").strip()
            if not frame_url or frame_url == "about:blank" or frame_url in seen:
                continue
            if not frame_url.startswith(("http://", "https://")):
                continue
            seen.add(frame_url)
            urls.append(frame_url)
        return urls
