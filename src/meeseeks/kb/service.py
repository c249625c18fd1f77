"""Knowledge base service: lifecycle of knowledge bases and their sources.

Orchestrates the pipeline for one knowledge base:

  add_source → crawl_source (pages persisted per source) → index → search

``build_context`` is what prompt builders call: retrieved chunks when the
knowledge base is indexed, the raw page content otherwise.
"""

from __future__ import annotations

import functools
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from meeseeks.config import MeeseeksConfig
from meeseeks.db.models import IndexMeta, KnowledgeBase, Source, StoredPage
from meeseeks.db.repository import Repository
from meeseeks.errors import (
    DuplicateSourceError,
    InvalidStatusTransition,
    KnowledgeBaseNotFound,
    SourceNotFound,
)
from meeseeks.kb import retriever
from meeseeks.kb.chunker import PageChunker, page_hash
from meeseeks.kb.crawler import CrawlOptions, CrawlProgress, CrawlResult, CrawlState, Fetcher, crawl
from meeseeks.kb.embedder import create_embedder
from meeseeks.kb.extractor import normalize_url
from meeseeks.kb.indexer import Indexer, IndexProgress, IndexState
from meeseeks.kb.retriever import SearchResult, format_results_as_context

logger = logging.getLogger(__name__)

MIN_CRAWL_DEPTH = 1
MAX_CRAWL_DEPTH = 3
MAX_CONTENT_CHARS = 100 * 1024
_TRUNCATION_MARKER = "\n\n[Content truncated due to size limit]"

_SOURCE_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"crawling"}),
    "crawling": frozenset({"complete", "error"}),
    "complete": frozenset({"crawling"}),
    "error": frozenset({"crawling"}),
}


@dataclass
class IndexStats:
    indexed: bool
    chunk_count: int = 0
    indexed_at: str | None = None
    mode: str | None = None  # embedding model the index was built with


def _set_status(source: Source, status: str) -> None:
    if status not in _SOURCE_TRANSITIONS.get(source.status, frozenset()):
        raise InvalidStatusTransition(
            f"Source '{source.id}' cannot move from '{source.status}' to '{status}'."
        )
    source.status = status


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class KnowledgeBaseService:
    """High-level operations on knowledge bases.

    Args:
        repo: Open Repository.
        config: Loaded configuration (defaults when omitted).
        sleep: Politeness-delay function passed to the crawler.
    """

    def __init__(
        self,
        repo: Repository,
        config: MeeseeksConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repo = repo
        self._config = config or MeeseeksConfig()
        self._sleep = sleep
        self._indexer = Indexer(
            repo,
            functools.partial(create_embedder, self._config.embedding.model),
            PageChunker(self._config.chunking.max_chars),
            batch_size=self._config.embedding.batch_size,
        )
        self.crawl_state = CrawlState()

    @property
    def index_state(self) -> IndexState:
        return self._indexer.state

    # ------------------------------------------------------------------
    # Knowledge bases
    # ------------------------------------------------------------------

    def create_knowledge_base(self, name: str, crawl_depth: int | None = None) -> KnowledgeBase:
        """Create an empty knowledge base. *crawl_depth* is clamped to 1..3."""
        name = name.strip()
        if not name:
            raise ValueError("Knowledge base name must not be empty.")
        depth = self._config.crawl.max_depth if crawl_depth is None else crawl_depth
        depth = max(MIN_CRAWL_DEPTH, min(MAX_CRAWL_DEPTH, depth))

        kb_id = f"kb_{uuid.uuid4().hex[:12]}"
        self._repo.add_knowledge_base(KnowledgeBase(id=kb_id, name=name, crawl_depth=depth))
        logger.info("Created knowledge base %s (%s)", kb_id, name)
        return self.get_knowledge_base(kb_id)

    def list_knowledge_bases(self) -> list[KnowledgeBase]:
        return self._repo.list_knowledge_bases()

    def get_knowledge_base(self, kb_id: str) -> KnowledgeBase:
        kb = self._repo.get_knowledge_base(kb_id)
        if kb is None:
            raise KnowledgeBaseNotFound(kb_id)
        return kb

    def delete_knowledge_base(self, kb_id: str) -> None:
        """Delete a knowledge base with its sources, pages and index."""
        if not self._repo.delete_knowledge_base(kb_id):
            raise KnowledgeBaseNotFound(kb_id)
        logger.info("Deleted knowledge base %s", kb_id)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, kb_id: str, url: str) -> Source:
        """Register *url* as a crawl seed of *kb_id*.

        Raises:
            ValueError: If *url* is not an absolute http(s) URL.
            DuplicateSourceError: If the (normalized) URL is already a source.
        """
        self.get_knowledge_base(kb_id)
        normalized = normalize_url(url)
        if normalized is None:
            raise ValueError(f"Invalid URL: '{url}'. Use an absolute http:// or https:// URL.")
        if self._repo.get_source_by_url(kb_id, normalized) is not None:
            raise DuplicateSourceError(f"Source '{normalized}' already exists in '{kb_id}'.")

        source = Source(id=f"src_{uuid.uuid4().hex[:12]}", kb_id=kb_id, url=normalized)
        self._repo.add_source(source)
        return self._get_source(kb_id, source.id)

    def remove_source(self, kb_id: str, source_id: str) -> None:
        """Remove a source and its crawled pages."""
        self._get_source(kb_id, source_id)
        self._repo.delete_source(source_id)

    def _get_source(self, kb_id: str, source_id: str) -> Source:
        source = self._repo.get_source(source_id)
        if source is None or source.kb_id != kb_id:
            raise SourceNotFound(kb_id, source_id)
        return source

    def crawl_source(
        self,
        kb_id: str,
        source_id: str,
        on_progress: Callable[[CrawlProgress], None] | None = None,
        *,
        fetch: Fetcher | None = None,
    ) -> CrawlResult:
        """Crawl a source and replace its stored pages with the result.

        Per-URL failures do not fail the crawl; they are counted into
        ``source.error``. Any other failure, including an interrupt, marks the
        source ``error`` and is re-raised. A source still marked ``crawling``
        while no crawl is running here is treated as left over from an
        interrupted run.
        """
        kb = self.get_knowledge_base(kb_id)
        source = self._get_source(kb_id, source_id)
        if source.status == "crawling" and not self.crawl_state.is_active:
            logger.warning("Source %s was left crawling by an interrupted run", source.id)
            _set_status(source, "error")

        _set_status(source, "crawling")
        source.error = None
        self._repo.update_source(source)

        options = CrawlOptions(
            max_depth=kb.crawl_depth,
            max_pages=self._config.crawl.max_pages,
            timeout=self._config.crawl.timeout,
            delay=self._config.crawl.delay,
            allow_private_hosts=self._config.crawl.allow_private_hosts,
        )
        self.crawl_state = CrawlState(is_active=True, kb_id=kb_id, source_id=source_id)

        def progress(update: CrawlProgress) -> None:
            self.crawl_state.update(update)
            if on_progress is not None:
                on_progress(update)

        try:
            result = crawl(source.url, options, progress, fetch=fetch, sleep=self._sleep)
            self._repo.replace_pages(
                source.id,
                [
                    StoredPage(
                        source_id=source.id,
                        url=page.url,
                        title=page.title,
                        text=page.text,
                        content_hash=page_hash(page.text),
                        links=json.dumps(page.links),
                    )
                    for page in result.pages
                ],
            )
        except BaseException as exc:
            _set_status(source, "error")
            if isinstance(exc, KeyboardInterrupt):
                source.error = "Crawl interrupted"
            else:
                source.error = str(exc) or "Crawl failed"
            self._repo.update_source(source)
            raise
        finally:
            self.crawl_state.is_active = False

        _set_status(source, "complete")
        source.page_count = len(result.pages)
        source.last_crawled_at = _now()
        source.error = f"{len(result.errors)} page(s) failed to crawl" if result.errors else None
        self._repo.update_source(source)
        return result

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def load_content(self, kb_id: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
        """Concatenate the stored pages of *kb_id*, cut off at *max_chars*."""
        self.get_knowledge_base(kb_id)
        parts: list[str] = []
        total = 0
        for page in self._repo.list_pages(kb_id):
            part = f"## {page.title or page.url}\nSource: {page.url}\n\n{page.text}\n"
            if total + len(part) > max_chars:
                parts.append(part[: max_chars - total] + _TRUNCATION_MARKER)
                break
            parts.append(part)
            total += len(part)
        return "\n---\n".join(parts)

    def build_context(self, kb_id: str, query: str, top_k: int | None = None) -> tuple[str, bool]:
        """Return ``(context, used_retrieval)`` for a prompt about *query*.

        Falls back to the raw page content when the knowledge base is not indexed.
        """
        results = self.search(kb_id, query, top_k)
        if results is None:
            return self.load_content(kb_id), False
        return format_results_as_context(results), True

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def index(
        self,
        kb_id: str,
        on_progress: Callable[[IndexProgress], None] | None = None,
    ) -> IndexMeta:
        self.get_knowledge_base(kb_id)
        return self._indexer.build(kb_id, on_progress)

    def search(self, kb_id: str, query: str, top_k: int | None = None) -> list[SearchResult] | None:
        """Retrieve chunks for *query*; None when *kb_id* is not indexed."""
        self.get_knowledge_base(kb_id)
        k = top_k if top_k is not None else self._config.retrieval.top_k
        return retriever.search(self._repo, kb_id, query, k)

    def index_stats(self, kb_id: str) -> IndexStats:
        self.get_knowledge_base(kb_id)
        meta = self._repo.get_index_meta(kb_id)
        if meta is None:
            return IndexStats(indexed=False)
        return IndexStats(
            indexed=True,
            chunk_count=meta.chunk_count,
            indexed_at=meta.indexed_at,
            mode=meta.embedding_model,
        )

    def clear_index(self, kb_id: str) -> None:
        self.get_knowledge_base(kb_id)
        self._repo.clear_index(kb_id)
