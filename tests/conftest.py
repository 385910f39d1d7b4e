"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

import pytest

from cookie_scanner import config
from cookie_scanner.capture import cookies as cookie_capture
from cookie_scanner.categorization import categories as categories_mod
from cookie_scanner.models import categorization, scan
from cookie_scanner.pipeline import orchestrator as orchestrator_mod
from cookie_scanner.pipeline import phases
from cookie_scanner.storage import repository as repository_mod
from cookie_scanner.utils import metrics

# ── Factories ───────────────────────────────────────────────────


def jar_cookie(name: str, domain: str, **overrides: object) -> dict[str, object]:
    """A cookie-jar entry shaped like Playwright's ``context.cookies()`` output."""
    cookie: dict[str, object] = {
        "name": name,
        "value": "v",
        "domain": domain,
        "path": "/",
        "expires": -1,
        "httpOnly": False,
        "secure": True,
        "sameSite": "Lax",
    }
    cookie.update(overrides)
    return cookie


def make_cookie(name: str = "session", domain: str = "example.com", **overrides: object) -> scan.CookieRecord:
    fields: dict[str, object] = {
        "name": name,
        "domain": domain,
        "page_url": "https://example.com",
        "source": "FIRST_PARTY",
        "subdomain_name": scan.MAIN_SUBDOMAIN,
    }
    fields.update(overrides)
    return scan.CookieRecord(**fields)


def make_result(
    transaction_id: str = "11111111-2222-3333-4444-555555555555",
    status: scan.ScanStatus = "COMPLETED",
    cookies: Iterable[scan.CookieRecord] = (),
) -> scan.ScanResult:
    result = scan.ScanResult(
        transaction_id=transaction_id,
        url="https://example.com",
        status=status,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
        updated_at=datetime(2026, 1, 1, tzinfo=UTC),
    )
    for cookie in cookies:
        result.cookies_by_subdomain.setdefault(cookie.subdomain_name, []).append(cookie)
    return result


def categorization_settings(**overrides: object) -> config.CategorizationSettings:
    """Settings with a configured endpoint and instant retries."""
    values: dict[str, object] = {
        "COOKIE_CATEGORIZATION_API_URL": "http://categorizer.invalid/api/categorize",
        "COOKIE_CATEGORIZATION_RETRY_MAX_ATTEMPTS": 3,
        "COOKIE_CATEGORIZATION_RETRY_DELAY_MS": 0,
        "COOKIE_CATEGORIZATION_BREAKER_MINIMUM_CALLS": 5,
        "COOKIE_CATEGORIZATION_BREAKER_WINDOW_SIZE": 10,
    }
    values.update(overrides)
    return config.CategorizationSettings(**values)


# ── Fake browser session ────────────────────────────────────────


@dataclasses.dataclass
class PageScript:
    """What a fake page does when visited."""

    ok: bool = True
    raises: Exception | None = None
    jar: list[dict[str, object]] = dataclasses.field(default_factory=list)
    headers: list[cookie_capture.ObservedCookie] = dataclasses.field(default_factory=list)
    banner: bool = False
    consent_jar: list[dict[str, object]] = dataclasses.field(default_factory=list)
    interaction_jar: list[dict[str, object]] = dataclasses.field(default_factory=list)
    frames: dict[str, list[dict[str, object]]] = dataclasses.field(default_factory=dict)


class FakeBrowserSession:
    """In-memory stand-in for :class:`BrowserSession`, scripted per URL."""

    def __init__(
        self,
        scripts: dict[str, PageScript] | None = None,
        *,
        launch_error: Exception | None = None,
        late_jar: list[dict[str, object]] | None = None,
    ) -> None:
        self.scripts = scripts or {}
        self.launch_error = launch_error
        self.late_jar = list(late_jar or [])
        self.jar: list[dict[str, object]] = []
        self.visited: list[str] = []
        self.waits: list[int] = []
        self.entered = False
        self.closed = False
        self._headers: list[cookie_capture.ObservedCookie] = []
        self._current: PageScript | None = None

    async def __aenter__(self) -> FakeBrowserSession:
        if self.launch_error is not None:
            raise self.launch_error
        self.entered = True
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed = True

    @property
    def page(self) -> FakeBrowserSession:
        return self

    async def navigate_with_fallback(self, url: str) -> object | None:
        self.visited.append(url)
        script = self.scripts.get(url, PageScript(ok=False))
        if script.raises is not None:
            raise script.raises
        if not script.ok:
            return None
        self._current = script
        self.jar.extend(script.jar)
        self._headers.extend(script.headers)
        return object()

    async def settle_after_load(self) -> None:
        return None

    async def wait(self, ms: int) -> None:
        self.waits.append(ms)
        if ms == phases.FINAL_CAPTURE_WAIT_MS and self.late_jar:
            self.jar.extend(self.late_jar)
            self.late_jar = []

    async def accept_consent(self) -> bool:
        if self._current is None or not self._current.banner:
            return False
        self.jar.extend(self._current.consent_jar)
        return True

    async def simulate_interaction(self) -> None:
        if self._current is not None:
            self.jar.extend(self._current.interaction_jar)

    async def get_context_cookies(self, urls: list[str] | None = None) -> list[dict[str, object]]:
        if urls:
            frames = self._current.frames if self._current else {}
            return [cookie for u in urls for cookie in frames.get(u, [])]
        return list(self.jar)

    def drain_header_cookies(self) -> list[cookie_capture.ObservedCookie]:
        drained, self._headers = self._headers, []
        return drained

    def child_frame_urls(self) -> list[str]:
        return list(self._current.frames) if self._current else []


async def fake_dismiss(page: FakeBrowserSession, timeout_ms: int) -> bool:
    return await page.accept_consent()


class FakeCategorizer:
    """Categorizer returning fixed answers for known names."""

    def __init__(self, known: dict[str, str] | None = None) -> None:
        self.known = known or {}
        self.calls: list[list[str]] = []

    async def categorize(self, names: Iterable[str]) -> dict[str, categorization.CookieCategory]:
        batch = sorted(set(names))
        self.calls.append(batch)
        return {
            name: categorization.CookieCategory(
                name=name, category=self.known[name], description=f"{name} cookie", provider="Acme"
            )
            for name in batch
            if name in self.known
        }


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_service_metrics() -> None:
    metrics.service_metrics.reset()


@pytest.fixture()
def repository() -> repository_mod.InMemoryScanRepository:
    return repository_mod.InMemoryScanRepository()


@pytest.fixture()
def fake_categorizer() -> FakeCategorizer:
    return FakeCategorizer({"session": "Necessary", "_ga": "Analytics", "IDE": "Advertisement"})


@pytest.fixture()
def make_orchestrator(
    repository: repository_mod.InMemoryScanRepository, fake_categorizer: FakeCategorizer
) -> Callable[..., orchestrator_mod.ScanOrchestrator]:
    """Build an orchestrator whose every scan uses *session*."""

    def _make(
        session: FakeBrowserSession,
        categorizer: object | None = None,
        categories: categories_mod.CategoryRegistry | None = None,
    ) -> orchestrator_mod.ScanOrchestrator:
        return orchestrator_mod.ScanOrchestrator(
            repository,
            categorizer or fake_categorizer,  # type: ignore[arg-type]
            config.BrowserSettings(),
            session_factory=lambda _settings, _tracker: session,
            dismiss_banner=fake_dismiss,
            categories=categories,
        )

    return _make
