"""Page chunker: contiguous, offset-addressable spans of bounded length.

Each span is cut at the last paragraph break inside the window, else the
last sentence end, else the last whitespace, else hard at ``max_chars``.
Spans never overlap: ``chunks[i].end_idx == chunks[i + 1].start_idx``
except where a whitespace-only span was dropped.
"""

from __future__ import annotations

import hashlib
import re

from meeseeks.db.models import Chunk, Page

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_END = re.compile(r"[.!?][\"')\]]*\s+")
_WHITESPACE = re.compile(r"\s+")


def page_hash(text: str) -> str:
    """SHA-256 fingerprint of page text, used for change detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class PageChunker:
    """Split page text into chunks of at most ``max_chars`` characters.

    Args:
        max_chars: Upper bound on a chunk's length in characters.
    """

    def __init__(self, max_chars: int = 500) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        self.max_chars = max_chars

    def chunk_page(self, page: Page, content_hash: str | None = None, first_id: int = 0) -> list[Chunk]:
        """Chunk *page*, numbering chunks from *first_id*.

        Args:
            page: Extracted page; ``page.text`` is the offset space.
            content_hash: Precomputed page hash (computed if omitted).
            first_id: Id of the first chunk; ids are sequential.

        Returns:
            Chunks in text order. Empty for blank pages.
        """
        text = page.text
        digest = content_hash or page_hash(text)
        title = page.title or page.url

        chunks: list[Chunk] = []
        for start, end in self.split_spans(text):
            chunks.append(
                Chunk(
                    id=first_id + len(chunks),
                    page_hash=digest,
                    page_url=page.url,
                    page_title=title,
                    text=text[start:end],
                    start_idx=start,
                    end_idx=end,
                )
            )
        return chunks

    def split_spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` spans covering *text*, whitespace-only spans omitted."""
        spans: list[tuple[int, int]] = []
        pos = 0
        length = len(text)
        while pos < length:
            if length - pos <= self.max_chars:
                end = length
            else:
                end = pos + self._cut(text[pos:pos + self.max_chars])
            if text[pos:end].strip():
                spans.append((pos, end))
            pos = end
        return spans

    def _cut(self, window: str) -> int:
        """Offset inside *window* at which to end the chunk (always >= 1)."""
        floor = max(1, self.max_chars // 4)
        for pattern in (_PARAGRAPH_BREAK, _SENTENCE_END, _WHITESPACE):
            cut = 0
            for match in pattern.finditer(window):
                cut = match.end()
            if cut >= floor:
                return cut
        return len(window)
