"""Tests for cookie_scanner.capture.cookies: header parsing, attribution and dedup."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from conftest import jar_cookie

from cookie_scanner.capture import cookies

# ── parse_set_cookie_header ─────────────────────────────────────


class TestParseSetCookieHeader:
    """Tests for parse_set_cookie_header()."""

    def test_defaults_from_response(self) -> None:
        [cookie] = cookies.parse_set_cookie_header("session=abc", "https://www.example.com/login")
        assert cookie.name == "session"
        assert cookie.domain == "www.example.com"
        assert cookie.path == "/"
        assert cookie.secure is False
        assert cookie.http_only is False
        assert cookie.same_site == "UNSPECIFIED"
        assert cookie.expires_at is None

    def test_attributes(self) -> None:
        header = "id=1; Domain=.example.com; Path=/app; Secure; HttpOnly; SameSite=Strict"
        [cookie] = cookies.parse_set_cookie_header(header, "https://example.com")
        assert cookie.domain == ".example.com"
        assert cookie.path == "/app"
        assert cookie.secure is True
        assert cookie.http_only is True
        assert cookie.same_site == "STRICT"

    @pytest.mark.parametrize("attribute", ["Domain=example.com", "Domain=.Example.com", "domain=example.com"])
    def test_domain_attribute_stored_with_leading_dot(self, attribute: str) -> None:
        [cookie] = cookies.parse_set_cookie_header(f"id=1; {attribute}", "https://www.example.com/")
        assert cookie.domain == ".example.com"

    def test_empty_domain_attribute_keeps_host(self) -> None:
        [cookie] = cookies.parse_set_cookie_header("id=1; Domain=", "https://www.example.com/")
        assert cookie.domain == "www.example.com"

    def test_multiple_lines(self) -> None:
        header = "a=1; Path=/\nb=2; SameSite=None; Secure\n\n"
        parsed = cookies.parse_set_cookie_header(header, "https://example.com")
        assert [c.name for c in parsed] == ["a", "b"]
        assert parsed[1].same_site == "NONE"

    def test_expires(self) -> None:
        [cookie] = cookies.parse_set_cookie_header(
            "a=1; Expires=Wed, 21 Oct 2037 07:28:00 GMT", "https://example.com"
        )
        assert cookie.expires_at == datetime(2037, 10, 21, 7, 28, tzinfo=UTC)

    def test_max_age_wins_over_expires(self) -> None:
        before = datetime.now(UTC)
        [cookie] = cookies.parse_set_cookie_header(
            "a=1; Expires=Wed, 21 Oct 2037 07:28:00 GMT; Max-Age=60", "https://example.com"
        )
        assert cookie.expires_at is not None
        assert before + timedelta(seconds=59) <= cookie.expires_at <= datetime.now(UTC) + timedelta(seconds=61)

    def test_bad_expires_and_max_age_ignored(self) -> None:
        [cookie] = cookies.parse_set_cookie_header("a=1; Expires=soon; Max-Age=abc", "https://example.com")
        assert cookie.expires_at is None

    def test_out_of_range_max_age_keeps_other_lines(self) -> None:
        parsed = cookies.parse_set_cookie_header("a=1; Max-Age=999999999999\nb=2; Path=/", "https://example.com")
        assert [c.name for c in parsed] == ["a", "b"]
        assert parsed[0].expires_at is None

    def test_unparseable_lines_dropped(self) -> None:
        parsed = cookies.parse_set_cookie_header("garbage\n=novalue\nok=1", "https://example.com")
        assert [c.name for c in parsed] == ["ok"]

    @pytest.mark.parametrize("header", [None, ""])
    def test_empty_header(self, header: str | None) -> None:
        assert cookies.parse_set_cookie_header(header, "https://example.com") == []


# ── Attribute helpers ───────────────────────────────────────────


class TestParseSameSite:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "UNSPECIFIED"),
            ("", "UNSPECIFIED"),
            ("Strict", "STRICT"),
            ("lax", "LAX"),
            ("None", "NONE"),
            ("weird", "LAX"),
        ],
    )
    def test_values(self, value: str | None, expected: str) -> None:
        assert cookies.parse_same_site(value) == expected


class TestExpiryFromEpoch:
    def test_session_cookie(self) -> None:
        assert cookies.expiry_from_epoch(-1) is None

    def test_epoch_seconds(self) -> None:
        assert cookies.expiry_from_epoch(1893456000) == datetime(2030, 1, 1, tzinfo=UTC)

    def test_non_number(self) -> None:
        assert cookies.expiry_from_epoch("tomorrow") is None
        assert cookies.expiry_from_epoch(True) is None


class TestDetermineSource:
    """Tests for determine_source()."""

    @pytest.mark.parametrize("domain", ["example.com", ".example.com", "shop.example.com", "EXAMPLE.com"])
    def test_first_party(self, domain: str) -> None:
        assert cookies.determine_source(domain, "example.com") == "FIRST_PARTY"

    def test_third_party(self) -> None:
        assert cookies.determine_source(".doubleclick.net", "example.com") == "THIRD_PARTY"

    def test_multi_part_suffix(self) -> None:
        assert cookies.determine_source(".shop.example.co.uk", "www.example.co.uk") == "FIRST_PARTY"
        assert cookies.determine_source(".other.co.uk", "example.co.uk") == "THIRD_PARTY"

    @pytest.mark.parametrize("domain", [None, "", ".", "bad domain!", "---"])
    def test_unknown(self, domain: str | None) -> None:
        assert cookies.determine_source(domain, "example.com") == "UNKNOWN"

    def test_missing_site_root(self) -> None:
        assert cookies.determine_source("example.com", "") == "UNKNOWN"


class TestObservedFromBrowser:
    def test_maps_playwright_keys(self) -> None:
        observed = cookies.observed_from_browser(
            jar_cookie("_ga", ".example.com", httpOnly=True, sameSite="None", expires=1893456000)
        )
        assert observed.http_only is True
        assert observed.same_site == "NONE"
        assert observed.expires_at == datetime(2030, 1, 1, tzinfo=UTC)


# ── CookieCollector ─────────────────────────────────────────────


class TestCookieCollector:
    """Tests for CookieCollector first-seen-wins merging."""

    def test_header_then_jar_yields_one_record(self) -> None:
        collector = cookies.CookieCollector("example.com")
        header_batch = collector.add_all(
            cookies.parse_set_cookie_header("session=abc; HttpOnly", "https://example.com"),
            subdomain_name="main",
            page_url="https://example.com",
        )
        jar_batch = collector.add_browser_cookies(
            [jar_cookie("session", "example.com", httpOnly=False)],
            subdomain_name="main",
            page_url="https://example.com",
        )

        assert len(header_batch) == 1
        assert jar_batch == []
        assert len(collector) == 1
        assert collector.records()[0].http_only is True

    def test_header_domain_attribute_matches_jar_entry(self) -> None:
        collector = cookies.CookieCollector("example.com")
        header_batch = collector.add_all(
            cookies.parse_set_cookie_header("session=abc; Domain=example.com", "https://www.example.com/"),
            subdomain_name="main",
            page_url="https://www.example.com",
        )
        jar_batch = collector.add_browser_cookies(
            [jar_cookie("session", ".example.com")], subdomain_name="main", page_url="https://www.example.com"
        )

        assert len(header_batch) == 1
        assert jar_batch == []
        assert [(c.name, c.domain) for c in collector.records()] == [("session", ".example.com")]

    def test_domain_case_ignored(self) -> None:
        collector = cookies.CookieCollector("example.com")
        collector.add_browser_cookies([jar_cookie("a", "Example.com")], subdomain_name="main", page_url="u")
        assert collector.add_browser_cookies([jar_cookie("a", "example.com")], subdomain_name="main", page_url="u") == []

    def test_distinct_domains_kept(self) -> None:
        collector = cookies.CookieCollector("example.com")
        batch = collector.add_browser_cookies(
            [jar_cookie("a", "example.com"), jar_cookie("a", ".doubleclick.net")], subdomain_name="main", page_url="u"
        )
        assert [c.source for c in batch] == ["FIRST_PARTY", "THIRD_PARTY"]

    def test_distinct_subdomains_kept(self) -> None:
        collector = cookies.CookieCollector("example.com")
        collector.add_browser_cookies([jar_cookie("a", ".example.com")], subdomain_name="main", page_url="u")
        batch = collector.add_browser_cookies([jar_cookie("a", ".example.com")], subdomain_name="shop", page_url="u")
        assert len(batch) == 1
        assert ("a", ".example.com", "shop") in collector

    def test_nameless_cookie_skipped(self) -> None:
        collector = cookies.CookieCollector("example.com")
        assert collector.add(cookies.ObservedCookie(name="", domain="example.com"), subdomain_name="main", page_url="u") is None
        assert len(collector) == 0

    def test_record_fields(self) -> None:
        collector = cookies.CookieCollector("example.com")
        [record] = collector.add_browser_cookies(
            [jar_cookie("_ga", ".example.com")], subdomain_name="shop", page_url="https://shop.example.com"
        )
        assert record.subdomain_name == "shop"
        assert record.page_url == "https://shop.example.com"
        assert record.category is None
        assert record.key() == ("_ga", ".example.com", "shop")
