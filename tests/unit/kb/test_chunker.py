"""Tests for PageChunker span selection."""

from __future__ import annotations

import pytest

from meeseeks.db.models import Page
from meeseeks.kb.chunker import PageChunker, page_hash


def _page(text: str, title: str = "Guide") -> Page:
    return Page(url="https://docs.example.com/guide", title=title, text=text)


def test_short_text_is_one_chunk():
    chunks = PageChunker(100).chunk_page(_page("Hello world."))
    assert len(chunks) == 1
    assert chunks[0].text == "Hello world."
    assert (chunks[0].start_idx, chunks[0].end_idx) == (0, 12)


def test_empty_page_has_no_chunks():
    assert PageChunker(100).chunk_page(_page("")) == []
    assert PageChunker(100).chunk_page(_page("   \n\n  ")) == []


def test_cuts_at_paragraph_break():
    text = "A" * 60 + "\n\n" + "B" * 60
    chunks = PageChunker(100).chunk_page(_page(text))
    assert [c.text for c in chunks] == ["A" * 60 + "\n\n", "B" * 60]


def test_cuts_at_sentence_end_when_no_paragraph():
    text = "Alpha beta gamma. " * 10
    chunks = PageChunker(50).chunk_page(_page(text))
    assert chunks[0].text == "Alpha beta gamma. Alpha beta gamma. "
    assert all(len(c.text) <= 50 for c in chunks)


def test_cuts_at_whitespace_when_no_sentence():
    text = " ".join(["word"] * 40)
    chunks = PageChunker(50).chunk_page(_page(text))
    assert all(len(c.text) <= 50 for c in chunks)
    assert all(c.text.endswith(" ") for c in chunks[:-1])


def test_hard_cut_without_whitespace():
    chunks = PageChunker(100).chunk_page(_page("x" * 250))
    assert [(c.start_idx, c.end_idx) for c in chunks] == [(0, 100), (100, 200), (200, 250)]


def test_whitespace_only_spans_are_dropped():
    text = "abc" + " " * 300 + "def"
    chunks = PageChunker(100).chunk_page(_page(text))
    assert len(chunks) == 2
    assert chunks[0].text.startswith("abc")
    assert chunks[1].text.endswith("def")


def test_chunks_are_contiguous_and_addressable():
    text = ("Paragraph one has some sentences. It goes on.\n\n" * 8) + "Tail without break " * 20
    chunks = PageChunker(120).chunk_page(_page(text))

    assert chunks[0].start_idx == 0
    assert chunks[-1].end_idx == len(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.end_idx == nxt.start_idx
    for chunk in chunks:
        assert chunk.text == text[chunk.start_idx:chunk.end_idx]
        assert len(chunk.text) <= 120


def test_ids_are_sequential_from_first_id():
    chunks = PageChunker(10).chunk_page(_page("x" * 35), first_id=7)
    assert [c.id for c in chunks] == [7, 8, 9, 10]


def test_chunks_carry_page_identity():
    page = _page("Some text here.")
    chunk = PageChunker(100).chunk_page(page)[0]
    assert chunk.page_url == page.url
    assert chunk.page_title == "Guide"
    assert chunk.page_hash == page_hash(page.text)


def test_precomputed_hash_is_used():
    chunk = PageChunker(100).chunk_page(_page("Some text."), content_hash="abc123")[0]
    assert chunk.page_hash == "abc123"


def test_title_falls_back_to_url():
    chunk = PageChunker(100).chunk_page(_page("Some text.", title=""))[0]
    assert chunk.page_title == "https://docs.example.com/guide"


def test_page_hash_is_stable():
    assert page_hash("abc") == page_hash("abc")
    assert page_hash("abc") != page_hash("abd")
    assert len(page_hash("abc")) == 64


def test_max_chars_must_be_positive():
    with pytest.raises(ValueError):
        PageChunker(0)
