"""Fixtures for knowledge base pipeline tests."""

from __future__ import annotations

import json

import pytest

from meeseeks.db.models import KnowledgeBase, Source, StoredPage
from meeseeks.kb.chunker import page_hash


@pytest.fixture
def seed_pages(repo):
    """Create kb_test with one source holding the given ``(url, title, text)`` pages."""

    def _seed(pages, kb_id: str = "kb_test", source_id: str = "src_test") -> str:
        if repo.get_knowledge_base(kb_id) is None:
            repo.add_knowledge_base(KnowledgeBase(id=kb_id, name="Test KB", crawl_depth=2))
        if repo.get_source(source_id) is None:
            repo.add_source(Source(id=source_id, kb_id=kb_id, url="https://docs.example.com/"))
        repo.replace_pages(
            source_id,
            [
                StoredPage(
                    source_id=source_id,
                    url=url,
                    title=title,
                    text=text,
                    content_hash=page_hash(text),
                    links=json.dumps([]),
                )
                for url, title, text in pages
            ],
        )
        return kb_id

    return _seed


DOCS = [
    ("https://docs.example.com/install", "Install", "Install the python package with pip. Python versions are supported."),
    ("https://docs.example.com/garden", "Garden", "Garden snakes live among the flowers and vegetables."),
    ("https://docs.example.com/wiring", "Wiring", "Connect the controller wiring to the terminal block."),
]


@pytest.fixture
def docs():
    return list(DOCS)
