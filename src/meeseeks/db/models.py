"""Domain models for the meeseeks database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

SOURCE_STATUSES = ("pending", "crawling", "complete", "error")


@dataclass
class Source:
    id: str
    kb_id: str
    url: str
    added_at: str | None = None
    last_crawled_at: str | None = None
    page_count: int = 0
    status: str = "pending"  # pending | crawling | complete | error
    error: str | None = None


@dataclass
class KnowledgeBase:
    id: str
    name: str
    crawl_depth: int
    created_at: str | None = None
    sources: list[Source] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return sum(s.page_count for s in self.sources)


@dataclass
class Page:
    """A fetched and extracted web page."""

    url: str
    title: str
    text: str
    links: list[str] = field(default_factory=list)


@dataclass
class StoredPage:
    """A page persisted for a source, ready to be indexed."""

    source_id: str
    url: str
    title: str
    text: str
    content_hash: str
    links: str = field(default_factory=lambda: "[]")
    saved_at: str | None = None

    @property
    def links_list(self) -> list[str]:
        return json.loads(self.links)

    def to_page(self) -> Page:
        return Page(url=self.url, title=self.title, text=self.text, links=self.links_list)


@dataclass(frozen=True)
class Chunk:
    """A bounded span of a page's text; ``text == page_text[start_idx:end_idx]``."""

    id: int
    page_hash: str
    page_url: str
    page_title: str
    text: str
    start_idx: int
    end_idx: int


@dataclass
class IndexMeta:
    kb_id: str
    embedding_model: str
    dimensions: int
    chunk_count: int
    embedder_state: str = field(default_factory=lambda: "{}")
    indexed_at: str | None = None

    @property
    def embedder_state_dict(self) -> dict:
        return json.loads(self.embedder_state)
