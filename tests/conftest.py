"""Shared pytest fixtures."""

from __future__ import annotations

import re

import pytest

from meeseeks.db.connection import Database
from meeseeks.db.repository import Repository
from meeseeks.db.schema import initialize
from meeseeks.errors import FetchError
from meeseeks.kb.crawler import FetchResponse


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "knowledge.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from ~/.meeseeks/config.yaml and MEESEEKS_* env vars."""
    monkeypatch.setattr("meeseeks.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    for var in ("MEESEEKS_DB", "MEESEEKS_EMBEDDING_MODEL", "MEESEEKS_MODEL"):
        monkeypatch.delenv(var, raising=False)


# ------------------------------------------------------------------
# Fake tokenizer: one token per word (trailing whitespace included)
# ------------------------------------------------------------------


class WordTokenizer:
    """Deterministic offline tokenizer: ``"a b  c"`` → ``["a ", "b  ", "c"]``."""

    _PIECE = re.compile(r"\S+\s*|\s+")

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._pieces: list[str] = []

    def encode(self, text: str) -> list[int]:
        ids = []
        for piece in self._PIECE.findall(text):
            if piece not in self._ids:
                self._ids[piece] = len(self._pieces)
                self._pieces.append(piece)
            ids.append(self._ids[piece])
        return ids

    def decode(self, tokens: list[int]) -> str:
        return "".join(self._pieces[t] for t in tokens)


@pytest.fixture
def tokenizer():
    return WordTokenizer()


# ------------------------------------------------------------------
# Fake web site: replaces the HTTP fetch primitive
# ------------------------------------------------------------------


def html_page(title: str, *links: str, body: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a> ' for href in links)
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<nav>{anchors}</nav><p>{body or title + ' content.'}</p>"
        "</body></html>"
    )


class FakeSite:
    """Callable ``(url, timeout, **kwargs) -> FetchResponse`` over an in-memory page map.

    *redirects* maps a requested URL to the URL that actually serves it.
    """

    def __init__(self, pages: dict[str, str], redirects: dict[str, str] | None = None) -> None:
        self.pages = pages
        self.redirects = redirects or {}
        self.calls: list[str] = []

    def __call__(self, url: str, timeout: float, **kwargs) -> FetchResponse:
        self.calls.append(url)
        served = self.redirects.get(url, url)
        if served not in self.pages:
            raise FetchError("HTTP 404: Not Found")
        return FetchResponse(
            url=served, status=200, headers={"Content-Type": "text/html"}, body=self.pages[served]
        )


@pytest.fixture
def make_site():
    return FakeSite


@pytest.fixture
def page_html():
    return html_page
