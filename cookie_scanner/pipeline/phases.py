"""
Per-target scan phases.

Each public function performs one focused step against the shared
:class:`ScanContext`.  The orchestrator runs them in order for every
target: navigate, settle, dismiss consent, interact, capture, frames.

Every capture pass merges newly seen cookies into the scan-wide
collector, categorizes that batch with a single upstream call and
flushes it to the repository.  Categorization and flush problems are
logged and never stop the scan.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from cookie_scanner.capture import cookies as cookie_capture
from cookie_scanner.categorization import client as categorization_client
from cookie_scanner.models import scan
from cookie_scanner.storage import repository as repository_mod
from cookie_scanner.utils import errors, logger, metrics, validation
from cookie_scanner.utils import url as url_mod

log = logger.create_logger("ScanPhases")

# Waits (ms) between phases.
CONSENT_SETTLE_MS = 2500
FINAL_CAPTURE_WAIT_MS = 1000

DismissBanner = Callable[[Any, int], Awaitable[bool]]


class ScanSession(Protocol):
    """The browser operations the scan phases rely on."""

    @property
    def page(self) -> Any: ...

    async def navigate_with_fallback(self, url: str) -> Any: ...

    async def settle_after_load(self) -> None: ...

    async def wait(self, ms: int) -> None: ...

    async def simulate_interaction(self) -> None: ...

    async def get_context_cookies(self, urls: list[str] | None = None) -> list[Mapping[str, object]]: ...

    def drain_header_cookies(self) -> list[cookie_capture.ObservedCookie]: ...

    def child_frame_urls(self) -> list[str]: ...


@dataclasses.dataclass
class ScanContext:
    """Mutable state shared across the phases of one scan."""

    transaction_id: str
    url: str
    session: ScanSession
    collector: cookie_capture.CookieCollector
    categorizer: categorization_client.CategorizationClient
    repository: repository_mod.ScanRepository
    tracker: metrics.ScanPhaseTracker
    dismiss_banner: DismissBanner
    consent_timeout_ms: int = 5000
    flush_failures: int = 0


# ====================================================================
# Targets
# ====================================================================


def build_targets(url: str, subdomains: list[str] | None) -> list[scan.ScanTarget]:
    """Return the root target labelled ``main`` followed by each subdomain.

    Subdomains keep their declared order; repeats are dropped.
    """
    root = url_mod.get_base_domain(url)
    targets = [scan.ScanTarget(url=url, subdomain_name=scan.MAIN_SUBDOMAIN)]
    seen = {url}
    for subdomain_url in subdomains or []:
        if subdomain_url in seen:
            continue
        seen.add(subdomain_url)
        targets.append(
            scan.ScanTarget(url=subdomain_url, subdomain_name=validation.extract_subdomain_name(subdomain_url, root))
        )
    return targets


# ====================================================================
# Capture, categorize, persist
# ====================================================================


async def categorize_batch(ctx: ScanContext, batch: list[scan.CookieRecord]) -> None:
    """Enrich *batch* in place with one categorization call for its unique names."""
    if not batch:
        return
    names = {cookie.name for cookie in batch}
    log.debug("Categorizing batch", {"cookies": len(batch), "uniqueNames": len(names)})
    try:
        results = await ctx.categorizer.categorize(names)
    except Exception as exc:
        log.warn("Categorization raised, saving uncategorized", {"error": errors.get_error_message(exc)[:200]})
        return

    for cookie in batch:
        found = results.get(cookie.name)
        if found is None:
            continue
        cookie.category = found.category
        cookie.description = found.description
        cookie.provider = found.provider


def persist_batch(ctx: ScanContext, batch: list[scan.CookieRecord]) -> int:
    """Append *batch* to the stored result; return how many cookies were added.

    Re-reads the stored result, skips cookies whose ``(name, domain)``
    already exists in their subdomain bucket, and saves once.  A
    failure is logged and counted; the scan carries on.
    """
    if not batch:
        return 0
    try:
        result = ctx.repository.find_by_transaction_id(ctx.transaction_id)
        if result is None:
            log.warn("Scan record missing during flush", {"cookies": len(batch)})
            ctx.flush_failures += 1
            return 0

        added = merge_into_result(result, batch)
        if added:
            result.updated_at = datetime.now(UTC)
            ctx.repository.save(result)
        log.debug("Flushed cookies", {"added": added, "skipped": len(batch) - added})
        return added
    except Exception as exc:
        ctx.flush_failures += 1
        log.warn("Incremental flush failed", {"cookies": len(batch), "error": errors.get_error_message(exc)[:200]})
        return 0


def merge_into_result(result: scan.ScanResult, cookies: list[scan.CookieRecord]) -> int:
    """Append cookies not yet present (by name and domain) in their bucket."""
    added = 0
    for cookie in cookies:
        bucket = result.cookies_by_subdomain.setdefault(cookie.subdomain_name or scan.MAIN_SUBDOMAIN, [])
        if any(c.name == cookie.name and c.domain.lower() == cookie.domain.lower() for c in bucket):
            continue
        bucket.append(cookie.model_copy())
        added += 1
    return added


def _record_discoveries(ctx: ScanContext, batch: list[scan.CookieRecord]) -> None:
    for cookie in batch:
        ctx.tracker.record_cookie(cookie.source)
        metrics.service_metrics.record_cookie_discovered(cookie.source)


async def capture_pass(ctx: ScanContext, target: scan.ScanTarget, reason: str) -> list[scan.CookieRecord]:
    """Merge header-observed then jar cookies for *target*, categorize and flush.

    Header observations were made during navigation, before the jar
    is read, so they are merged first.
    """
    header_batch = ctx.collector.add_all(
        ctx.session.drain_header_cookies(),
        subdomain_name=target.subdomain_name,
        page_url=target.url,
    )
    jar_batch = ctx.collector.add_browser_cookies(
        await ctx.session.get_context_cookies(),
        subdomain_name=target.subdomain_name,
        page_url=target.url,
    )
    batch = header_batch + jar_batch
    _record_discoveries(ctx, batch)

    log.info(
        "Captured cookies",
        {
            "reason": reason,
            "subdomain": target.subdomain_name,
            "new": len(batch),
            "fromHeaders": len(header_batch),
            "total": len(ctx.collector),
        },
    )
    await categorize_batch(ctx, batch)
    persist_batch(ctx, batch)
    return batch


async def capture_frames(ctx: ScanContext, target: scan.ScanTarget) -> list[scan.CookieRecord]:
    """Capture cookies belonging to each child frame's own root domain.

    Frame cookies are filed under *target*'s subdomain label; their
    first/third-party source is still judged against the scanned site.
    """
    batch: list[scan.CookieRecord] = []
    for frame_url in ctx.session.child_frame_urls():
        frame_root = url_mod.get_base_domain(frame_url)
        if not frame_root:
            continue
        try:
            frame_cookies = await ctx.session.get_context_cookies([frame_url])
        except Exception as exc:
            log.debug("Frame cookie read failed", {"frame": frame_url[:120], "error": errors.get_error_message(exc)[:100]})
            continue
        scoped = [c for c in frame_cookies if url_mod.get_base_domain(str(c.get("domain") or "")) == frame_root]
        batch.extend(
            ctx.collector.add_browser_cookies(scoped, subdomain_name=target.subdomain_name, page_url=frame_url)
        )
        ctx.tracker.iframes_processed += 1

    _record_discoveries(ctx, batch)
    if batch:
        log.info("Captured frame cookies", {"subdomain": target.subdomain_name, "new": len(batch)})
        await categorize_batch(ctx, batch)
        persist_batch(ctx, batch)
    return batch


# ====================================================================
# Target processing
# ====================================================================


async def handle_consent(ctx: ScanContext, target: scan.ScanTarget) -> bool:
    """Try the consent-dismiss collaborator; capture right after a success."""
    start = time.monotonic()
    try:
        handled = await ctx.dismiss_banner(ctx.session.page, ctx.consent_timeout_ms)
    except Exception as exc:
        log.warn("Consent dismissal raised", {"error": errors.get_error_message(exc)[:200]})
        handled = False
    duration_ms = (time.monotonic() - start) * 1000
    ctx.tracker.record_consent(handled, duration_ms)

    if not handled:
        log.info("Consent banner not handled", {"subdomain": target.subdomain_name})
        return False

    metrics.service_metrics.record_consent_handled(duration_ms)
    await ctx.session.wait(CONSENT_SETTLE_MS)
    await capture_pass(ctx, target, "after-consent")
    return True


async def process_target(ctx: ScanContext, target: scan.ScanTarget, index: int, total: int) -> bool:
    """Run every phase for one target.

    Returns:
        ``False`` when the target could not be loaded and was skipped.
    """
    label = target.subdomain_name.upper()
    log.subsection(f"Target {index}/{total}: {target.url} ({target.subdomain_name})")

    ctx.tracker.set_phase(f"LOADING_PAGE_{label}")
    log.start_timer(f"target-{index}")
    response = await ctx.session.navigate_with_fallback(target.url)
    if response is None:
        ctx.tracker.targets_skipped += 1
        log.end_timer(f"target-{index}", f"Skipped {target.subdomain_name}")
        return False
    await ctx.session.settle_after_load()

    ctx.tracker.set_phase(f"HANDLING_CONSENT_{label}")
    await handle_consent(ctx, target)

    ctx.tracker.set_phase(f"USER_INTERACTIONS_{label}")
    await ctx.session.simulate_interaction()
    await capture_pass(ctx, target, "after-interaction")

    ctx.tracker.set_phase(f"IFRAME_DETECTION_{label}")
    await capture_frames(ctx, target)

    ctx.tracker.targets_scanned += 1
    log.end_timer(f"target-{index}", f"Scanned {target.subdomain_name}")
    return True
