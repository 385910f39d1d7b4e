"""
Scan orchestration.

``start_scan`` validates the request, stores a PENDING record and
launches the scan as a background ``asyncio`` task, returning the
transaction id immediately.  The task moves the record to RUNNING,
drives one browser session through every target, and writes the
terminal COMPLETED or FAILED status.

A failure while processing one target is logged and the next target
is tried.  Only failures of the browser session itself, or of the
status writes, fail the whole scan.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from cookie_scanner import config
from cookie_scanner.browser import session as browser_session
from cookie_scanner.capture import cookies as cookie_capture
from cookie_scanner.categorization import categories as categories_mod
from cookie_scanner.categorization import client as categorization_client
from cookie_scanner.consent import dismiss
from cookie_scanner.models import categorization, scan
from cookie_scanner.pipeline import phases
from cookie_scanner.storage import repository as repository_mod
from cookie_scanner.utils import errors, logger, metrics, validation
from cookie_scanner.utils import url as url_mod

log = logger.create_logger("Orchestrator")

SessionFactory = Callable[[config.BrowserSettings, metrics.ScanPhaseTracker], phases.ScanSession]


class ScanOrchestrator:
    """Owns scan lifecycle, target sequencing and terminal status writes.

    Args:
        repository: Persistence collaborator for scan results.
        categorizer: Shared categorization client.
        browser_settings: Browser launch and timeout settings.
        session_factory: Builds one browser session per scan.
        dismiss_banner: Consent-banner collaborator.
        categories: Category registry for cookie updates and additions.
    """

    def __init__(
        self,
        repository: repository_mod.ScanRepository,
        categorizer: categorization_client.CategorizationClient,
        browser_settings: config.BrowserSettings | None = None,
        *,
        session_factory: SessionFactory = browser_session.BrowserSession,
        dismiss_banner: phases.DismissBanner = dismiss.dismiss_banner,
        categories: categories_mod.CategoryRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._categorizer = categorizer
        self._browser_settings = browser_settings or config.BrowserSettings()
        self._session_factory = session_factory
        self._dismiss_banner = dismiss_banner
        self._categories = categories or categories_mod.CategoryRegistry()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def active_scans(self) -> int:
        return len(self._tasks)

    # ==========================================================================
    # Start
    # ==========================================================================

    def start_scan(self, url: str, subdomains: list[str] | None = None) -> str:
        """Validate, persist a PENDING record and launch the scan.

        Must be called from a running event loop.

        Raises:
            UrlValidationError: If the URL or any subdomain is rejected.
            DataAccessError: If the PENDING record cannot be stored.
        """
        url_result = validation.validate_url_for_scanning(url)
        if not url_result.valid or url_result.normalized_url is None:
            raise errors.UrlValidationError(f"Invalid scan URL: {url_result.error_message}", url_result.error_message)
        normalized = url_result.normalized_url

        sub_result = validation.validate_subdomains(normalized, subdomains)
        if not sub_result.valid:
            raise errors.UrlValidationError(
                f"Invalid subdomains: {sub_result.error_message}", sub_result.error_message
            )

        transaction_id = str(uuid.uuid4())
        self._repository.save(scan.ScanResult(transaction_id=transaction_id, url=normalized, status="PENDING"))
        log.info(
            "Scan accepted",
            {"transactionId": transaction_id, "url": normalized, "subdomains": len(sub_result.subdomains)},
        )

        task = asyncio.create_task(
            self.run_scan(transaction_id, normalized, sub_result.subdomains),
            name=f"scan-{transaction_id[:8]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return transaction_id

    async def wait_for_scans(self) -> None:
        """Wait until every in-flight scan task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight scans (used on server shutdown)."""
        if not self._tasks:
            return
        log.warn("Cancelling in-flight scans", {"count": len(self._tasks)})
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ==========================================================================
    # Run
    # ==========================================================================

    async def run_scan(self, transaction_id: str, url: str, subdomains: list[str] | None) -> None:
        """Execute one scan to its terminal status. Never raises."""
        logger.begin_scan_context(transaction_id)
        logger.start_log_file(transaction_id, url)
        tracker = metrics.ScanPhaseTracker()
        collector = cookie_capture.CookieCollector(url_mod.get_base_domain(url))
        metrics.service_metrics.record_scan_started()

        log.section(f"Scanning: {url}")
        log.start_timer("scan")

        try:
            targets = phases.build_targets(url, subdomains)
            self._mark_running(transaction_id, targets)
            await self._scan_targets(transaction_id, url, targets, tracker, collector)
        except Exception as exc:
            message = errors.sanitize_error_message(exc)
            log.error("Scan failed", {"error": errors.get_error_message(exc)[:300]})
            tracker.mark_failed(message)
            self._write_terminal(transaction_id, url, "FAILED", collector, message)
            metrics.service_metrics.record_scan_failed(tracker.duration_ms)
        else:
            tracker.mark_completed()
            self._write_terminal(transaction_id, url, "COMPLETED", collector)
            metrics.service_metrics.record_scan_completed(tracker.duration_ms)
            log.success("Scan completed", {"cookies": len(collector)})
        finally:
            log.end_timer("scan", "Scan finished")
            tracker.log_summary(transaction_id)
            logger.end_log_file()

    async def _scan_targets(
        self,
        transaction_id: str,
        url: str,
        targets: list[scan.ScanTarget],
        tracker: metrics.ScanPhaseTracker,
        collector: cookie_capture.CookieCollector,
    ) -> None:
        log.info("Scan targets", {"total": len(targets), "subdomains": len(targets) - 1})

        tracker.set_phase("INITIALIZING_BROWSER")
        session = self._session_factory(self._browser_settings, tracker)
        async with session:
            ctx = phases.ScanContext(
                transaction_id=transaction_id,
                url=url,
                session=session,
                collector=collector,
                categorizer=self._categorizer,
                repository=self._repository,
                tracker=tracker,
                dismiss_banner=self._dismiss_banner,
                consent_timeout_ms=self._browser_settings.consent_timeout_ms,
            )

            last_target = targets[0]
            for index, target in enumerate(targets, start=1):
                try:
                    if await phases.process_target(ctx, target, index, len(targets)):
                        last_target = target
                except Exception as exc:
                    tracker.targets_skipped += 1
                    log.warn(
                        "Target failed, continuing with next",
                        {"url": target.url, "error": errors.get_error_message(exc)[:200]},
                    )

            # Late asynchronous cookies land on whatever page is still open.
            tracker.set_phase("FINAL_CAPTURE")
            await session.wait(phases.FINAL_CAPTURE_WAIT_MS)
            await phases.capture_pass(ctx, last_target, "final")

            if ctx.flush_failures:
                log.warn("Some incremental flushes failed", {"failures": ctx.flush_failures})

    # ==========================================================================
    # Status writes
    # ==========================================================================

    def _mark_running(self, transaction_id: str, targets: list[scan.ScanTarget]) -> None:
        """Write RUNNING with an empty bucket for every target."""
        result = self._repository.find_by_transaction_id(transaction_id)
        if result is None:
            raise errors.TransactionNotFoundError(transaction_id)
        for target in targets:
            result.cookies_by_subdomain.setdefault(target.subdomain_name, [])
        result.status = "RUNNING"
        result.updated_at = datetime.now(UTC)
        self._repository.save(result)
        log.info("Scan status updated", {"status": "RUNNING", "buckets": len(result.cookies_by_subdomain)})

    def _write_terminal(
        self,
        transaction_id: str,
        url: str,
        status: scan.ScanStatus,
        collector: cookie_capture.CookieCollector,
        error_message: str | None = None,
    ) -> None:
        """Best-effort terminal write.

        Cookies the collector holds but earlier flushes missed are
        merged in.  If the stored record cannot be read, it is rebuilt
        from the collector.  A failing save is logged, not raised.
        """
        try:
            result = self._repository.find_by_transaction_id(transaction_id)
        except Exception as exc:
            log.warn("Could not re-read scan for final write", {"error": errors.get_error_message(exc)[:200]})
            result = None
        if result is None:
            result = scan.ScanResult(transaction_id=transaction_id, url=url)

        missed = phases.merge_into_result(result, collector.records())
        if missed:
            log.info("Recovered cookies missed by incremental flushes", {"count": missed})

        result.status = status
        result.error_message = error_message if status == "FAILED" else None
        result.updated_at = datetime.now(UTC)
        try:
            self._repository.save(result)
            log.info("Scan status updated", {"status": status})
        except Exception as exc:
            log.error("Final status write failed", {"status": status, "error": errors.get_error_message(exc)[:200]})

    # ==========================================================================
    # Queries & updates
    # ==========================================================================

    def get_scan(self, transaction_id: str) -> scan.ScanResult:
        """Return the stored result.

        Raises:
            TransactionNotFoundError: If no scan has this id.
        """
        result = self._repository.find_by_transaction_id(transaction_id)
        if result is None:
            raise errors.TransactionNotFoundError(transaction_id)
        return result

    def update_cookie(self, transaction_id: str, request: scan.CookieUpdateRequest) -> list[scan.CookieRecord]:
        """Update enrichment fields of a cookie in a completed scan.

        Every record with the given name is updated, limited to one
        subdomain bucket when ``subdomain_name`` is set.

        Raises:
            UrlValidationError: On a blank name or unknown category.
            TransactionNotFoundError: If the scan does not exist.
            InvalidStateError: If the scan is not COMPLETED.
            CookieNotFoundError: If no matching cookie exists.
        """
        name = request.name.strip()
        if not name:
            raise errors.UrlValidationError("Cookie name is blank", "Cookie name must not be blank")
        category = self._require_category(request.category)

        result = self.get_scan(transaction_id)
        if result.status != "COMPLETED":
            raise errors.InvalidStateError(
                f"Cannot update cookies while scan is {result.status}",
                "Cookies can only be updated once the scan has completed",
            )

        buckets = (
            [result.cookies_by_subdomain.get(request.subdomain_name, [])]
            if request.subdomain_name
            else list(result.cookies_by_subdomain.values())
        )
        updated: list[scan.CookieRecord] = []
        for bucket in buckets:
            for cookie in bucket:
                if cookie.name != name:
                    continue
                cookie.category = category
                cookie.description = request.description
                if request.provider is not None:
                    cookie.provider = request.provider
                updated.append(cookie)

        if not updated:
            raise errors.CookieNotFoundError(name, transaction_id)

        result.updated_at = datetime.now(UTC)
        self._repository.save(result)
        log.info("Cookie updated", {"transactionId": transaction_id, "cookie": name, "records": len(updated)})
        return updated

    def add_cookie(self, transaction_id: str, request: scan.CookieAddRequest) -> scan.CookieRecord:
        """Manually add a cookie to a scan that has not failed.

        The cookie must belong to the scanned site's registrable domain.
        Its bucket is derived from the cookie domain and must be one of
        the scan's targets.

        Raises:
            UrlValidationError: On a blank name, a foreign or malformed
                domain, a subdomain outside the scan, or an unknown category.
            TransactionNotFoundError: If the scan does not exist.
            InvalidStateError: If the scan FAILED.
            DuplicateCookieError: If the bucket already has this name and domain.
        """
        name = request.name.strip()
        domain = request.domain.strip().lower()
        if not name or not domain.strip("."):
            raise errors.UrlValidationError("Cookie name or domain is blank", "Cookie name and domain are required")
        category = self._require_category(request.category) if request.category else None

        result = self.get_scan(transaction_id)
        if result.status == "FAILED":
            raise errors.InvalidStateError(
                f"Cannot add cookies to FAILED scan {transaction_id}", "Cannot add cookies to a failed scan"
            )

        site_root = url_mod.get_base_domain(result.url)
        if cookie_capture.determine_source(domain, site_root) != "FIRST_PARTY":
            raise errors.UrlValidationError(
                f"Cookie domain {domain!r} outside {site_root!r}",
                "Cookie domain must belong to the same root domain as the scanned URL",
            )

        subdomain_name = validation.extract_subdomain_name(domain.removeprefix("."), site_root)
        bucket = result.cookies_by_subdomain.get(subdomain_name)
        if bucket is None:
            raise errors.UrlValidationError(
                f"Subdomain {subdomain_name!r} was not scanned in {transaction_id}",
                "Subdomain was not part of the original scan",
            )
        if any(c.name == name and c.domain.lower() == domain for c in bucket):
            raise errors.DuplicateCookieError(name, subdomain_name)

        record = scan.CookieRecord(
            name=name,
            domain=domain,
            path=request.path or "/",
            page_url=url_mod.build_subdomain_url(result.url, subdomain_name),
            expires_at=request.expires_at,
            secure=request.secure,
            http_only=request.http_only,
            same_site=request.same_site,
            source="FIRST_PARTY",
            category=category,
            description=request.description,
            provider=request.provider,
            subdomain_name=subdomain_name,
        )
        bucket.append(record)
        result.updated_at = datetime.now(UTC)
        self._repository.save(result)
        log.info("Cookie added", {"transactionId": transaction_id, "cookie": name, "subdomain": subdomain_name})
        return record

    def _require_category(self, value: str | None) -> str:
        category = self._categories.match(value)
        if category is None:
            raise errors.UrlValidationError(
                f"Unknown category {value!r}",
                "Category must be one of: " + ", ".join(self._categories.names()),
            )
        return category


# ============================================================================
# Status response
# ============================================================================


def _subdomain_sort_key(name: str) -> tuple[int, str]:
    return (0 if name == scan.MAIN_SUBDOMAIN else 1, name)


def build_status_response(result: scan.ScanResult) -> scan.ScanStatusResponse:
    """Shape a stored result for ``GET /api/scan/{transactionId}``.

    Subdomain buckets are ordered ``main`` first then alphabetically,
    and a summary counts cookies by source and by category.
    """
    ordered = {
        name: result.cookies_by_subdomain[name]
        for name in sorted(result.cookies_by_subdomain, key=_subdomain_sort_key)
    }

    by_source: dict[str, int] = {}
    by_category: dict[str, int] = {}
    total = 0
    for cookies in ordered.values():
        for cookie in cookies:
            total += 1
            by_source[cookie.source] = by_source.get(cookie.source, 0) + 1
            category = cookie.category or categorization.UNCATEGORIZED
            by_category[category] = by_category.get(category, 0) + 1

    groups = [
        scan.SubdomainCookieGroup(
            subdomain_name=name,
            url=url_mod.build_subdomain_url(result.url, name),
            cookie_count=len(cookies),
        )
        for name, cookies in ordered.items()
    ]

    return scan.ScanStatusResponse(
        transaction_id=result.transaction_id,
        url=result.url,
        status=result.status,
        error_message=result.error_message,
        cookies_by_subdomain=ordered,
        subdomains=groups,
        summary=scan.ScanSummary(
            total_cookies=total,
            subdomain_count=len(ordered),
            by_source=by_source,
            by_category=by_category,
        ),
        created_at=result.created_at,
        updated_at=result.updated_at,
    )
