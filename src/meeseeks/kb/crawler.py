"""Domain-scoped breadth-first web crawler.

The frontier is an explicit FIFO queue of (url, depth) plus visited/queued
sets keyed by normalized URL. Exactly one fetch is in flight at a time and
a fixed politeness delay follows every fetch. A failing URL is recorded in
``CrawlResult.errors`` and never aborts the crawl.

HTTP fetch requirements:
- Allowed URL schemes: https:// and http:// only.
- Optional SSRF guard: private/loopback/link-local/reserved addresses refused.
- Content-Type for pages: text/html or application/xhtml+xml.
- Max response body: 5 MB.
- Max redirects: 3.
"""

from __future__ import annotations

import functools
import ipaddress
import logging
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import Message

from meeseeks.db.models import Page
from meeseeks.errors import FetchError, SsrfError
from meeseeks.kb.extractor import extract_content, is_same_domain, normalize_url

logger = logging.getLogger(__name__)

_USER_AGENT = "meeseeks/0.1 (Knowledge Base Crawler)"
_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_MAX_REDIRECTS = 3
_HTML_CONTENT_TYPES = ("text/html", "application/xhtml")


@dataclass
class CrawlOptions:
    max_depth: int = 2
    max_pages: int = 50
    timeout: float = 10.0  # seconds, per fetch
    delay: float = 0.5  # seconds between fetches
    allow_private_hosts: bool = False

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")


@dataclass(frozen=True)
class CrawlProgress:
    crawled: int
    total: int
    current_url: str


@dataclass(frozen=True)
class CrawlError:
    url: str
    error: str


@dataclass
class CrawlResult:
    pages: list[Page] = field(default_factory=list)
    errors: list[CrawlError] = field(default_factory=list)


@dataclass
class CrawlState:
    """Live view of one in-flight crawl, suitable for a progress display."""

    is_active: bool = False
    kb_id: str | None = None
    source_id: str | None = None
    progress: int = 0
    total: int = 0
    current_url: str = ""

    def update(self, progress: CrawlProgress) -> None:
        self.progress = progress.crawled
        self.total = progress.total
        self.current_url = progress.current_url
        self.is_active = bool(progress.current_url)


@dataclass(frozen=True)
class FetchResponse:
    url: str
    status: int
    headers: dict[str, str]
    body: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


Fetcher = Callable[[str, float], FetchResponse]


# ------------------------------------------------------------------
# Crawl loop
# ------------------------------------------------------------------


def crawl(
    seed_url: str,
    options: CrawlOptions | None = None,
    on_progress: Callable[[CrawlProgress], None] | None = None,
    *,
    fetch: Fetcher | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CrawlResult:
    """Crawl the site under *seed_url* breadth-first.

    Args:
        seed_url: Absolute http(s) URL to start from.
        options: Depth, page, timeout and delay limits.
        on_progress: Called before each fetch and once more at the end with
            ``current_url=""``.
        fetch: ``(url, timeout) -> FetchResponse`` for a usable HTML page,
            with ``url`` set to the address it was served from after
            redirects; raises on any per-URL failure.
            Defaults to :func:`fetch_html` (with the SSRF guard unless
            ``options.allow_private_hosts``).
        sleep: Delay function, injectable for tests.

    Returns:
        CrawlResult with harvested pages (``len(pages) <= max_pages``) and
        per-URL errors.

    Raises:
        ValueError: If *seed_url* is not an absolute http(s) URL.
    """
    opts = options or CrawlOptions()
    seed = normalize_url(seed_url)
    if seed is None:
        raise ValueError(f"Seed URL must be an absolute http(s) URL: '{seed_url}'")
    if fetch is None:
        fetch = functools.partial(fetch_html, allow_private_hosts=opts.allow_private_hosts)

    frontier: deque[tuple[str, int]] = deque([(seed, 0)])
    queued: set[str] = {seed}
    visited: set[str] = set()
    result = CrawlResult()

    while frontier and len(result.pages) < opts.max_pages:
        url, depth = frontier.popleft()
        queued.discard(url)
        if url in visited:
            continue
        visited.add(url)

        if on_progress is not None:
            on_progress(
                CrawlProgress(
                    crawled=len(result.pages),
                    total=min(len(result.pages) + len(frontier) + 1, opts.max_pages),
                    current_url=url,
                )
            )
        logger.debug("Fetching %s (depth %d)", url, depth)

        try:
            page = _fetch_page(fetch, url, seed, visited, opts.timeout)
        except Exception as exc:  # per-URL failure: record and keep crawling
            logger.warning("Failed to crawl %s: %s", url, exc)
            result.errors.append(CrawlError(url=url, error=str(exc) or type(exc).__name__))
        else:
            if page is not None:
                result.pages.append(page)
                if depth < opts.max_depth:
                    for link in page.links:
                        if not is_same_domain(link, seed):
                            continue
                        if link in visited or link in queued:
                            continue
                        frontier.append((link, depth + 1))
                        queued.add(link)

        if opts.delay:
            sleep(opts.delay)

    if on_progress is not None:
        on_progress(
            CrawlProgress(crawled=len(result.pages), total=len(result.pages), current_url="")
        )
    logger.info(
        "Crawl of %s finished: %d page(s), %d error(s)",
        seed, len(result.pages), len(result.errors),
    )
    return result


def _fetch_page(
    fetch: Fetcher, url: str, seed: str, visited: set[str], timeout: float
) -> Page | None:
    """Fetch and extract *url*, keyed by the address it was served from.

    Returns None when a redirect lands on a page this crawl already has.
    """
    response = fetch(url, timeout)
    final_url = normalize_url(response.url) or url
    if final_url != url:
        if not is_same_domain(final_url, seed):
            raise FetchError(f"Redirected off-site to '{response.url}'")
        if final_url in visited:
            logger.debug("Skipping %s: redirects to already crawled %s", url, final_url)
            return None
        visited.add(final_url)
    return extract_content(response.body, final_url)


# ------------------------------------------------------------------
# Fetch pipeline
# ------------------------------------------------------------------


def fetch_html(url: str, timeout: float, *, allow_private_hosts: bool = False) -> FetchResponse:
    """Fetch *url*, requiring a 2xx HTML response.

    The returned ``FetchResponse.url`` is the address after redirects.

    Raises:
        FetchError: On network failure, non-2xx status, or non-HTML content.
        SsrfError: If the host resolves to a private address.
    """
    response = fetch_url(url, timeout, allow_private_hosts=allow_private_hosts)
    if not response.ok:
        raise FetchError(f"HTTP {response.status}: {response.reason}")
    content_type = response.content_type.lower()
    if not any(ct in content_type for ct in _HTML_CONTENT_TYPES):
        raise FetchError(f"Invalid content type: {response.content_type}")
    return response


def fetch_url(url: str, timeout: float, *, allow_private_hosts: bool = False) -> FetchResponse:
    """Fetch *url* with timeout, redirect limit and size cap.

    HTTP error statuses are returned as a FetchResponse, not raised.

    Raises:
        FetchError: On invalid scheme, DNS/network failure, timeout, or an
            oversized body.
        SsrfError: If the host resolves to a private address.
    """
    _validate_scheme(url)
    if not allow_private_hosts:
        _check_ssrf(url)

    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT, "Accept": _ACCEPT})
    opener = urllib.request.build_opener(
        _LimitedRedirectHandler(_MAX_REDIRECTS, allow_private_hosts)
    )

    try:
        with opener.open(request, timeout=timeout) as response:
            body = response.read(_MAX_BYTES + 1)
            status = response.status
            reason = response.reason
            headers = _headers_dict(response.headers)
            final_url = response.geturl()
    except urllib.error.HTTPError as exc:
        headers = _headers_dict(exc.headers) if exc.headers else {}
        return FetchResponse(url=url, status=exc.code, headers=headers, body="", reason=str(exc.reason))
    except OSError as exc:  # URLError, timeouts, connection resets
        reason = getattr(exc, "reason", exc)
        raise FetchError(f"Failed to fetch URL '{url}': {reason}") from exc

    if len(body) > _MAX_BYTES:
        raise FetchError(
            f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
        )
    charset = _charset(headers) or "utf-8"
    return FetchResponse(
        url=final_url,
        status=status,
        headers=headers,
        body=body.decode(charset, errors="replace"),
        reason=reason,
    )


def _validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise FetchError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )


def _check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges."""
    hostname = urllib.parse.urlparse(url).hostname
    if not hostname:
        raise FetchError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise FetchError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        try:
            ip = ipaddress.ip_address(addrinfo[4][0])
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Set crawl.allow_private_hosts to crawl internal hosts."
            )


def _headers_dict(headers: Message) -> dict[str, str]:
    return {k: v for k, v in headers.items()}


def _charset(headers: dict[str, str]) -> str | None:
    msg = Message()
    for key, value in headers.items():
        if key.lower() == "content-type":
            msg["Content-Type"] = value
    charset = msg.get_content_charset()
    if charset:
        try:
            "".encode(charset)
        except LookupError:
            return None
    return charset


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Cap the redirect chain and re-check every hop against the SSRF guard."""

    def __init__(self, max_redirects: int, allow_private_hosts: bool = False) -> None:
        self._max_redirects = max_redirects
        self._allow_private_hosts = allow_private_hosts
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        _validate_scheme(newurl)
        if not self._allow_private_hosts:
            _check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
