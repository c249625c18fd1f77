"""Tests for the breadth-first crawler and the fetch pipeline."""

from __future__ import annotations

import socket
import urllib.request
from unittest.mock import patch

import pytest

from meeseeks.errors import FetchError, SsrfError
from meeseeks.kb.crawler import (
    CrawlOptions,
    CrawlProgress,
    CrawlState,
    FetchResponse,
    _check_ssrf,
    _LimitedRedirectHandler,
    crawl,
    fetch_html,
    fetch_url,
)

ROOT = "https://docs.example.com/"
A = "https://docs.example.com/a"
B = "https://docs.example.com/b"
C = "https://docs.example.com/c"


def _no_sleep(seconds):
    pass


@pytest.fixture
def cyclic_site(make_site, page_html):
    return make_site({
        A: page_html("A", "/b"),
        B: page_html("B", "/c"),
        C: page_html("C", "/a"),
    })


# ------------------------------------------------------------------
# Frontier / limits
# ------------------------------------------------------------------


def test_cycle_fetches_each_page_once(cyclic_site):
    result = crawl(A, CrawlOptions(max_depth=3, delay=0), fetch=cyclic_site)

    assert cyclic_site.calls == [A, B, C]
    assert [p.url for p in result.pages] == [A, B, C]
    assert result.errors == []


def test_max_depth_zero_fetches_only_seed(cyclic_site):
    result = crawl(A, CrawlOptions(max_depth=0, delay=0), fetch=cyclic_site)
    assert cyclic_site.calls == [A]
    assert len(result.pages) == 1


def test_max_depth_one_fetches_direct_links(cyclic_site):
    crawl(A, CrawlOptions(max_depth=1, delay=0), fetch=cyclic_site)
    assert cyclic_site.calls == [A, B]


def test_breadth_first_order(make_site, page_html):
    site = make_site({
        ROOT: page_html("Root", "/a", "/b"),
        A: page_html("A", "/c"),
        B: page_html("B"),
        C: page_html("C"),
    })
    crawl(ROOT, CrawlOptions(max_depth=2, delay=0), fetch=site)
    assert site.calls == [ROOT, A, B, C]


def test_max_pages_caps_harvest(make_site, page_html):
    links = [f"/p{i}" for i in range(10)]
    pages = {ROOT: page_html("Root", *links)}
    pages.update({f"https://docs.example.com/p{i}": page_html(f"P{i}") for i in range(10)})
    site = make_site(pages)

    result = crawl(ROOT, CrawlOptions(max_depth=2, max_pages=3, delay=0), fetch=site)

    assert len(result.pages) == 3
    assert len(site.calls) == 3


def test_external_links_are_not_followed(make_site, page_html):
    site = make_site({
        ROOT: page_html("Root", "https://elsewhere.example.org/x", "https://api.docs.example.com/y"),
    })
    crawl(ROOT, CrawlOptions(delay=0), fetch=site)
    assert site.calls == [ROOT]


def test_duplicate_link_forms_collapse(make_site, page_html):
    site = make_site({
        ROOT: page_html("Root", "/a", "/a#top", "HTTPS://DOCS.EXAMPLE.COM:443/a"),
        A: page_html("A"),
    })
    crawl(ROOT, CrawlOptions(delay=0), fetch=site)
    assert site.calls == [ROOT, A]


def test_redirect_resolves_links_against_served_url(make_site, page_html):
    docs, docs_dir = ROOT + "docs", ROOT + "docs/"
    site = make_site(
        {docs_dir: page_html("Docs", "intro"), docs_dir + "intro": page_html("Intro")},
        redirects={docs: docs_dir},
    )

    result = crawl(docs, CrawlOptions(delay=0), fetch=site)

    assert [p.url for p in result.pages] == [docs_dir, docs_dir + "intro"]
    assert result.errors == []


def test_offsite_redirect_is_recorded_as_error(make_site, page_html):
    moved = ROOT + "moved"
    site = make_site(
        {ROOT: page_html("Root", "/moved"), "https://other.example.net/": page_html("Other")},
        redirects={moved: "https://other.example.net/"},
    )

    result = crawl(ROOT, CrawlOptions(delay=0), fetch=site)

    assert [p.url for p in result.pages] == [ROOT]
    assert result.errors[0].url == moved
    assert "off-site" in result.errors[0].error


def test_redirect_target_is_fetched_once(make_site, page_html):
    old = ROOT + "old"
    site = make_site(
        {ROOT: page_html("Root", "/old", "/a", "/back"), A: page_html("A")},
        redirects={old: A, ROOT + "back": ROOT},
    )

    result = crawl(ROOT, CrawlOptions(delay=0), fetch=site)

    assert [p.url for p in result.pages] == [ROOT, A]
    assert site.calls == [ROOT, old, ROOT + "back"]
    assert result.errors == []

def test_invalid_seed_raises():
    with pytest.raises(ValueError, match="absolute http"):
        crawl("not a url", CrawlOptions(delay=0), fetch=lambda url, timeout: "")


def test_crawl_options_validation():
    with pytest.raises(ValueError):
        CrawlOptions(max_depth=-1)
    with pytest.raises(ValueError):
        CrawlOptions(max_pages=0)
    with pytest.raises(ValueError):
        CrawlOptions(timeout=0)
    with pytest.raises(ValueError):
        CrawlOptions(delay=-1)


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


def test_missing_page_is_recorded_not_raised(make_site, page_html):
    site = make_site({ROOT: page_html("Root", "/missing", "/a"), A: page_html("A")})

    result = crawl(ROOT, CrawlOptions(delay=0), fetch=site)

    assert [p.url for p in result.pages] == [ROOT, A]
    assert len(result.errors) == 1
    assert result.errors[0].url == "https://docs.example.com/missing"
    assert result.errors[0].error == "HTTP 404: Not Found"


def test_unexpected_exception_is_recorded(make_site, page_html):
    def flaky(url, timeout):
        if url == A:
            raise ConnectionResetError()
        return FetchResponse(url=url, status=200, headers={}, body=page_html("Root", "/a"))

    result = crawl(ROOT, CrawlOptions(delay=0), fetch=flaky)

    assert len(result.pages) == 1
    assert result.errors[0].url == A
    assert result.errors[0].error == "ConnectionResetError"


def test_seed_failure_yields_empty_result(make_site):
    result = crawl(ROOT, CrawlOptions(delay=0), fetch=make_site({}))
    assert result.pages == []
    assert len(result.errors) == 1


# ------------------------------------------------------------------
# Progress + politeness
# ------------------------------------------------------------------


def test_progress_events(cyclic_site):
    events: list[CrawlProgress] = []
    crawl(A, CrawlOptions(max_depth=3, delay=0), events.append, fetch=cyclic_site)

    assert events[0] == CrawlProgress(crawled=0, total=1, current_url=A)
    assert [e.current_url for e in events[:-1]] == [A, B, C]
    assert events[-1] == CrawlProgress(crawled=3, total=3, current_url="")


def test_progress_total_never_exceeds_max_pages(make_site, page_html):
    links = [f"/p{i}" for i in range(10)]
    site = make_site({ROOT: page_html("Root", *links)})
    events: list[CrawlProgress] = []

    crawl(ROOT, CrawlOptions(max_pages=4, delay=0), events.append, fetch=site)

    assert all(e.total <= 4 for e in events)


def test_delay_follows_every_fetch(make_site, page_html):
    site = make_site({ROOT: page_html("Root", "/a", "/missing"), A: page_html("A")})
    sleeps: list[float] = []

    crawl(ROOT, CrawlOptions(delay=0.25), fetch=site, sleep=sleeps.append)

    assert sleeps == [0.25, 0.25, 0.25]


def test_zero_delay_never_sleeps(cyclic_site):
    sleeps: list[float] = []
    crawl(A, CrawlOptions(delay=0), fetch=cyclic_site, sleep=sleeps.append)
    assert sleeps == []


def test_default_fetcher_is_fetch_html(make_site, page_html):
    site = make_site({ROOT: page_html("Root")})
    with patch("meeseeks.kb.crawler.fetch_html", side_effect=site) as mock_fetch:
        crawl(ROOT, CrawlOptions(delay=0, timeout=3))
    mock_fetch.assert_called_once_with(ROOT, 3, allow_private_hosts=False)


def test_crawl_state_update():
    state = CrawlState(kb_id="kb_1", source_id="src_1")
    state.update(CrawlProgress(crawled=2, total=5, current_url=A))
    assert (state.is_active, state.progress, state.total, state.current_url) == (True, 2, 5, A)

    state.update(CrawlProgress(crawled=5, total=5, current_url=""))
    assert state.is_active is False


# ------------------------------------------------------------------
# Fetch pipeline
# ------------------------------------------------------------------


def _response(status=200, content_type="text/html; charset=utf-8", body="<html></html>", reason="OK"):
    return FetchResponse(url=ROOT, status=status, headers={"Content-Type": content_type}, body=body, reason=reason)


def test_fetch_html_returns_body():
    with patch("meeseeks.kb.crawler.fetch_url", return_value=_response(body="<p>hi</p>")):
        assert fetch_html(ROOT, 5).body == "<p>hi</p>"


def test_fetch_html_accepts_xhtml():
    with patch("meeseeks.kb.crawler.fetch_url", return_value=_response(content_type="application/xhtml+xml")):
        assert fetch_html(ROOT, 5).body == "<html></html>"


def test_fetch_html_rejects_error_status():
    with patch("meeseeks.kb.crawler.fetch_url", return_value=_response(status=404, reason="Not Found")):
        with pytest.raises(FetchError, match="HTTP 404: Not Found"):
            fetch_html(ROOT, 5)


def test_fetch_html_rejects_non_html():
    with patch("meeseeks.kb.crawler.fetch_url", return_value=_response(content_type="application/pdf")):
        with pytest.raises(FetchError, match="Invalid content type: application/pdf"):
            fetch_html(ROOT, 5)


def test_fetch_url_rejects_unsupported_scheme():
    with pytest.raises(FetchError, match="Unsupported URL scheme 'ftp'"):
        fetch_url("ftp://docs.example.com/file", 5)


def _addrinfo(ip: str):
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, 0))]


@pytest.mark.parametrize("ip", ["127.0.0.1", "10.0.0.5", "192.168.1.1", "169.254.169.254"])
def test_ssrf_guard_blocks_private_addresses(ip):
    with patch("meeseeks.kb.crawler.socket.getaddrinfo", return_value=_addrinfo(ip)):
        with pytest.raises(SsrfError, match="private address"):
            _check_ssrf("http://internal.example.com/")


def test_ssrf_guard_allows_public_address():
    with patch("meeseeks.kb.crawler.socket.getaddrinfo", return_value=_addrinfo("93.184.216.34")):
        _check_ssrf("https://docs.example.com/")


def test_ssrf_guard_dns_failure():
    with patch("meeseeks.kb.crawler.socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
        with pytest.raises(FetchError, match="DNS resolution failed"):
            _check_ssrf("https://nowhere.example.com/")


def test_fetch_url_skips_ssrf_check_when_private_hosts_allowed():
    with patch("meeseeks.kb.crawler._check_ssrf") as mock_check, \
         patch("meeseeks.kb.crawler.urllib.request.build_opener") as mock_build:
        mock_build.return_value.open.side_effect = OSError("refused")
        with pytest.raises(FetchError, match="Failed to fetch URL"):
            fetch_url("http://localhost:8000/", 5, allow_private_hosts=True)
    mock_check.assert_not_called()


def test_redirect_hop_is_checked_against_ssrf_guard():
    handler = _LimitedRedirectHandler(3)
    request = urllib.request.Request(ROOT)
    with patch("meeseeks.kb.crawler.socket.getaddrinfo", return_value=_addrinfo("10.0.0.5")):
        with pytest.raises(SsrfError):
            handler.redirect_request(request, None, 302, "Found", {}, "http://internal.example.com/")


def test_redirect_hop_allowed_for_private_hosts():
    handler = _LimitedRedirectHandler(3, allow_private_hosts=True)
    request = urllib.request.Request(ROOT)
    with patch("meeseeks.kb.crawler._check_ssrf") as mock_check:
        new_request = handler.redirect_request(request, None, 302, "Found", {}, "http://localhost:8000/")
    assert new_request.full_url == "http://localhost:8000/"
    mock_check.assert_not_called()


def test_fetch_html_returns_served_url():
    response = FetchResponse(url=ROOT + "docs/", status=200, headers={"Content-Type": "text/html"}, body="")
    with patch("meeseeks.kb.crawler.fetch_url", return_value=response):
        assert fetch_html(ROOT + "docs", 5).url == ROOT + "docs/"
