"""Knowledge base pipeline: crawl → chunk → embed → index → retrieve."""

from meeseeks.kb.crawler import CrawlOptions, CrawlProgress, CrawlResult, crawl
from meeseeks.kb.indexer import IndexPhase, IndexProgress
from meeseeks.kb.retriever import SearchResult, format_results_as_context, search
from meeseeks.kb.service import IndexStats, KnowledgeBaseService

__all__ = [
    "CrawlOptions",
    "CrawlProgress",
    "CrawlResult",
    "crawl",
    "IndexPhase",
    "IndexProgress",
    "SearchResult",
    "format_results_as_context",
    "search",
    "IndexStats",
    "KnowledgeBaseService",
]
