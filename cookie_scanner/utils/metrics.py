"""Scan counters and phase-duration tracking.

Two layers:

- :class:`ServiceMetrics`: process-wide totals shared by every scan.
  A single module-level instance, :data:`service_metrics`, backs
  ``GET /api/metrics``.
- :class:`ScanPhaseTracker`: per-scan accumulator owned by one
  orchestrator run.  Records the current phase label and how long
  each phase took, and logs a summary when the scan ends.

Both are observability only; nothing reads them to make decisions.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from typing import Literal

from cookie_scanner.utils import logger

log = logger.create_logger("Metrics")

CookieSourceLabel = Literal["FIRST_PARTY", "THIRD_PARTY", "UNKNOWN"]


@dataclasses.dataclass
class _DurationStat:
    """Count, total and last value for a timed operation (ms)."""

    count: int = 0
    total_ms: float = 0.0
    last_ms: float = 0.0

    def add(self, ms: float) -> None:
        self.count += 1
        self.total_ms += ms
        self.last_ms = ms

    def as_dict(self) -> dict[str, float]:
        avg = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "totalMs": round(self.total_ms, 1),
            "lastMs": round(self.last_ms, 1),
            "avgMs": round(avg, 1),
        }


class ServiceMetrics:
    """Process-wide scan and categorization counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Zero every counter (used by tests)."""
        with self._lock:
            self.scans_started = 0
            self.scans_completed = 0
            self.scans_failed = 0
            self.active_scans = 0
            self.cookies_discovered = 0
            self.first_party_cookies = 0
            self.third_party_cookies = 0
            self.consent_banners_handled = 0
            self.categorization_calls = 0
            self.categorization_cache_hits = 0
            self.categorization_failures = 0
            self.scan_duration = _DurationStat()
            self.consent_duration = _DurationStat()
            self.categorization_duration = _DurationStat()

    def record_scan_started(self) -> None:
        with self._lock:
            self.scans_started += 1
            self.active_scans += 1

    def record_scan_completed(self, duration_ms: float) -> None:
        with self._lock:
            self.scans_completed += 1
            self.active_scans = max(self.active_scans - 1, 0)
            self.scan_duration.add(duration_ms)

    def record_scan_failed(self, duration_ms: float) -> None:
        with self._lock:
            self.scans_failed += 1
            self.active_scans = max(self.active_scans - 1, 0)
            self.scan_duration.add(duration_ms)

    def record_cookie_discovered(self, source: CookieSourceLabel) -> None:
        with self._lock:
            self.cookies_discovered += 1
            if source == "FIRST_PARTY":
                self.first_party_cookies += 1
            elif source == "THIRD_PARTY":
                self.third_party_cookies += 1

    def record_consent_handled(self, duration_ms: float) -> None:
        with self._lock:
            self.consent_banners_handled += 1
            self.consent_duration.add(duration_ms)

    def record_categorization(self, duration_ms: float, *, cache_hits: int, failed: bool) -> None:
        with self._lock:
            self.categorization_calls += 1
            self.categorization_cache_hits += cache_hits
            if failed:
                self.categorization_failures += 1
            self.categorization_duration.add(duration_ms)

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-ready copy of every counter."""
        with self._lock:
            return {
                "scans": {
                    "started": self.scans_started,
                    "completed": self.scans_completed,
                    "failed": self.scans_failed,
                    "active": self.active_scans,
                    "duration": self.scan_duration.as_dict(),
                },
                "cookies": {
                    "discovered": self.cookies_discovered,
                    "firstParty": self.first_party_cookies,
                    "thirdParty": self.third_party_cookies,
                },
                "consent": {
                    "bannersHandled": self.consent_banners_handled,
                    "duration": self.consent_duration.as_dict(),
                },
                "categorization": {
                    "calls": self.categorization_calls,
                    "cacheHits": self.categorization_cache_hits,
                    "failures": self.categorization_failures,
                    "duration": self.categorization_duration.as_dict(),
                },
            }


service_metrics = ServiceMetrics()


@dataclasses.dataclass
class ScanPhaseTracker:
    """Per-scan phase and counter accumulator."""

    phase: str = "INITIALIZING"
    cookies_found: int = 0
    first_party_cookies: int = 0
    third_party_cookies: int = 0
    consent_handled: bool = False
    consent_ms: float = 0.0
    iframes_processed: int = 0
    responses_seen: int = 0
    tracking_requests: int = 0
    targets_scanned: int = 0
    targets_skipped: int = 0
    error_message: str | None = None
    phase_durations_ms: dict[str, float] = dataclasses.field(default_factory=dict)
    _started: float = dataclasses.field(default_factory=time.monotonic)
    _phase_started: float = dataclasses.field(default_factory=time.monotonic)
    _ended: float | None = None

    def set_phase(self, phase: str) -> None:
        """Close the current phase timing and move to *phase*."""
        now = time.monotonic()
        elapsed = (now - self._phase_started) * 1000
        self.phase_durations_ms[self.phase] = self.phase_durations_ms.get(self.phase, 0.0) + elapsed
        self.phase = phase
        self._phase_started = now
        log.debug("Scan phase changed", {"phase": phase})

    def record_cookie(self, source: CookieSourceLabel) -> None:
        self.cookies_found += 1
        if source == "FIRST_PARTY":
            self.first_party_cookies += 1
        elif source == "THIRD_PARTY":
            self.third_party_cookies += 1

    def record_consent(self, handled: bool, duration_ms: float) -> None:
        self.consent_handled = self.consent_handled or handled
        self.consent_ms += duration_ms

    def mark_completed(self) -> None:
        self.set_phase("COMPLETED")
        self._ended = time.monotonic()

    def mark_failed(self, message: str) -> None:
        self.set_phase("FAILED")
        self.error_message = message
        self._ended = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self._ended if self._ended is not None else time.monotonic()
        return (end - self._started) * 1000

    def log_summary(self, transaction_id: str) -> None:
        """Log a one-shot summary of the scan."""
        slowest = sorted(self.phase_durations_ms.items(), key=lambda kv: kv[1], reverse=True)[:3]
        log.info(
            "Scan summary",
            {
                "transactionId": transaction_id,
                "duration": logger.format_duration(self.duration_ms),
                "phase": self.phase,
                "cookies": self.cookies_found,
                "firstParty": self.first_party_cookies,
                "thirdParty": self.third_party_cookies,
                "consentHandled": self.consent_handled,
                "iframes": self.iframes_processed,
                "responses": self.responses_seen,
                "trackingRequests": self.tracking_requests,
                "targetsScanned": self.targets_scanned,
                "targetsSkipped": self.targets_skipped,
                "slowestPhases": ", ".join(f"{name}={logger.format_duration(ms)}" for name, ms in slowest),
                "status": f"FAILED - {self.error_message}" if self.error_message else "SUCCESS",
            },
        )
