"""Content extraction: HTML → title, plain text, and in-domain outbound links.

Links are collected from the whole document before any noise is stripped,
so navigation menus still feed the crawl frontier even though their text
never reaches the index.
"""

from __future__ import annotations

import urllib.parse

import html2text
from bs4 import BeautifulSoup

from meeseeks.db.models import Page

_ALLOWED_SCHEMES = {"http", "https"}
_DISCARDED_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "img", "svg", "head"]

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


def extract_content(html: str, url: str) -> Page:
    """Extract title, plain text, and same-host links from *html* fetched at *url*."""
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text().strip() if title_tag else ""

    links = extract_links(soup, url)

    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()
    text = _h2t.handle(str(soup)).strip()

    return Page(url=url, title=title, text=text, links=links)


def extract_links(soup: BeautifulSoup, page_url: str) -> list[str]:
    """Return normalized, deduplicated links from ``<a href>`` on the page's host."""
    found: dict[str, None] = {}
    for anchor in soup.find_all("a", href=True):
        normalized = normalize_url(anchor["href"], page_url)
        if normalized and is_same_domain(normalized, page_url):
            found.setdefault(normalized, None)
    return list(found)


def normalize_url(url: str, base_url: str | None = None) -> str | None:
    """Resolve *url* against *base_url* and canonicalize it for deduplication.

    Returns None for ``javascript:``, ``mailto:``, ``tel:``, ``data:`` and
    pure-fragment links, for non-http(s) schemes, and for unparseable input.
    The fragment is always dropped; the query string is kept.
    """
    candidate = url.strip()
    if not candidate or candidate.startswith("#"):
        return None
    if candidate.lower().startswith(_DISCARDED_PREFIXES):
        return None

    try:
        resolved = urllib.parse.urljoin(base_url, candidate) if base_url else candidate
        parts = urllib.parse.urlsplit(resolved)
        scheme = parts.scheme.lower()
        if scheme not in _ALLOWED_SCHEMES or not parts.hostname:
            return None
        port = parts.port
    except ValueError:
        return None

    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None or port == _DEFAULT_PORTS[scheme] else f"{host}:{port}"
    if parts.username or parts.password:
        userinfo = parts.username or ""
        if parts.password:
            userinfo += f":{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parts.path or "/"
    return urllib.parse.urlunsplit((scheme, netloc, path, parts.query, ""))


def is_same_domain(url: str, base_url: str) -> bool:
    """True if both URLs have exactly the same hostname (subdomains differ)."""
    try:
        host = urllib.parse.urlsplit(url).hostname
        base_host = urllib.parse.urlsplit(base_url).hostname
    except ValueError:
        return False
    return host is not None and host == base_host


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a hostname."""
    try:
        parts = urllib.parse.urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in _ALLOWED_SCHEMES and bool(parts.hostname)
