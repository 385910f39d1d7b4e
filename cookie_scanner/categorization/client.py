"""
Cookie categorization client.

Looks up the purpose (category, description, provider) of cookie
names.  Each batch goes through the shared look-aside cache first;
only the uncached names are sent upstream.  The upstream call is
wrapped in a bounded exponential-backoff retry, and every attempt
passes through a process-wide circuit breaker.

``categorize`` never raises: when the upstream is unreachable, the
breaker is open or the retry budget is spent, the uncached names are
simply missing from the result and callers treat them as
uncategorized.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence

import aiohttp
import pydantic

from cookie_scanner import config
from cookie_scanner.categorization import cache as cache_mod
from cookie_scanner.categorization import categories as categories_mod
from cookie_scanner.models import categorization
from cookie_scanner.utils import circuit_breaker, errors, logger, metrics, retry

log = logger.create_logger("Categorization")

_REQUEST_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def parse_upstream_response(body: str) -> dict[str, categorization.CookieCategory]:
    """Parse an upstream response body into a name-keyed map.

    The body must be a JSON array of ``{name, category, description,
    provider}`` objects.  Entries without a name are skipped and the
    first entry wins when a name repeats.

    Raises:
        CategorizationError: When the body is empty or not a JSON array.
    """
    if not body or not body.strip():
        raise errors.CategorizationError("Empty response from categorization API")
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise errors.CategorizationError(f"Unparsable categorization response: {exc.msg}") from exc
    if not isinstance(payload, list):
        raise errors.CategorizationError("Categorization response is not a JSON array")

    results: dict[str, categorization.CookieCategory] = {}
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            parsed = categorization.CookieCategory.model_validate(item)
        except pydantic.ValidationError:
            log.debug("Skipping malformed categorization entry")
            continue
        if parsed.name and parsed.name not in results:
            results[parsed.name] = parsed
    return results


class CategorizationClient:
    """Cache-first, retry- and breaker-guarded categorization lookups.

    Args:
        settings: Upstream endpoint plus cache/retry/breaker tuning.
        cache: Shared cache; one is built from *settings* when omitted.
        breaker: Shared breaker; one is built from *settings* when omitted.
        categories: Category registry used by :meth:`validate_category`.
        http_session: Optional session to reuse; otherwise a session is
            created on first use and closed by :meth:`close`.
        sleep: Backoff sleeper, replaceable in tests.
    """

    def __init__(
        self,
        settings: config.CategorizationSettings,
        *,
        cache: cache_mod.CategorizationCache | None = None,
        breaker: circuit_breaker.CircuitBreaker | None = None,
        categories: categories_mod.CategoryRegistry | None = None,
        http_session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._policy = settings.retry_policy()
        self.cache = cache or cache_mod.CategorizationCache(
            settings.cache_ttl_minutes * 60, enabled=settings.cache_enabled
        )
        self.breaker = breaker or circuit_breaker.CircuitBreaker("cookie-categorization", settings.breaker_config())
        self.categories = categories or categories_mod.CategoryRegistry()
        self._http_session = http_session
        self._owns_session = http_session is None
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self.settings.validate_config()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def categorize(self, names: Iterable[str]) -> dict[str, categorization.CookieCategory]:
        """Return categories for as many of *names* as can be resolved.

        Blank names are ignored.  Names the upstream could not
        resolve are absent from the result.
        """
        requested = {name for name in names if name and name.strip()}
        if not requested:
            return {}

        start = time.monotonic()
        hits, uncached = self.cache.lookup(requested)
        if not uncached:
            metrics.service_metrics.record_categorization(
                (time.monotonic() - start) * 1000, cache_hits=len(hits), failed=False
            )
            return hits

        if not self.configured:
            log.debug("Categorization API not configured, skipping upstream", {"uncached": len(uncached)})
            return hits

        batch = sorted(uncached)
        failed = False
        fresh: dict[str, categorization.CookieCategory] = {}
        try:
            fetched = await retry.with_retry(
                lambda: self.breaker.call(lambda: self._fetch_upstream(batch)),
                policy=self._policy,
                context="cookie-categorization",
                sleep=self._sleep,
            )
            fresh = {name: value for name, value in fetched.items() if name in uncached}
            self.cache.put_many(fresh)
        except errors.CircuitOpenError as exc:
            failed = True
            log.warn(
                "Categorization skipped, circuit open",
                {"names": len(batch), "retryAfterSeconds": round(exc.retry_after_seconds, 1)},
            )
        except Exception as exc:
            failed = True
            log.warn(
                "Categorization failed, continuing uncategorized",
                {"names": len(batch), "error": errors.get_error_message(exc)[:200]},
            )

        duration_ms = (time.monotonic() - start) * 1000
        metrics.service_metrics.record_categorization(duration_ms, cache_hits=len(hits), failed=failed)
        log.info(
            "Cookies categorized",
            {
                "requested": len(requested),
                "cacheHits": len(hits),
                "fetched": len(fresh),
                "missing": len(uncached) - len(fresh),
                "duration": logger.format_duration(duration_ms),
            },
        )
        return {**hits, **fresh}

    async def categorize_single(self, name: str) -> categorization.CookieCategory | None:
        """Categorize one cookie name.

        Raises:
            UrlValidationError: If *name* is blank.
        """
        if not name or not name.strip():
            raise errors.UrlValidationError("Cookie name is required", "Cookie name must not be blank")
        key = name.strip()
        return (await self.categorize([key])).get(key)

    def validate_category(self, predicted: str | None, known: Sequence[str] | None = None) -> str:
        """Map *predicted* onto a known category, case-insensitively.

        *known* defaults to the registered categories.  Falls back to
        the configured default category when there is no match.
        """
        if known is None:
            matched = self.categories.match(predicted)
        else:
            wanted = (predicted or "").strip().lower()
            matched = next((c for c in known if wanted and c.lower() == wanted), None)
        if matched is not None:
            return matched
        log.debug("Unknown category, using default", {"predicted": predicted, "default": self.settings.default_category})
        return self.settings.default_category

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
                headers=_REQUEST_HEADERS,
            )
            self._owns_session = True
        return self._http_session

    async def _fetch_upstream(self, names: list[str]) -> dict[str, categorization.CookieCategory]:
        """Make one upstream attempt for *names*.

        Raises:
            CategorizationError: On a non-2xx status or unusable body.
            aiohttp.ClientError: On transport failures.
            TimeoutError: When the attempt exceeds the configured timeout.
        """
        session = self._get_session()
        log.debug("Calling categorization API", {"names": len(names)})
        async with asyncio.timeout(self.settings.timeout_seconds):
            async with session.post(self.settings.api_url, json={"names": names}) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    raise errors.CategorizationError(
                        f"Categorization API returned HTTP {response.status}", status=response.status
                    )
        return parse_upstream_response(body)
