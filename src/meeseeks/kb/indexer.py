"""Index builder: stored pages → chunks → embeddings → persisted index.

A build walks the phase machine ``idle → chunking → embedding → saving → idle``.
The saving phase replaces the knowledge base's index inside one SQLite
transaction; any failure discards whatever was built and leaves the
knowledge base reading as "not indexed".
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from meeseeks.db.models import Chunk, IndexMeta
from meeseeks.db.repository import Repository
from meeseeks.errors import IndexBuildError, InvalidPhaseTransition
from meeseeks.kb.chunker import PageChunker
from meeseeks.kb.embedder import Embedder

logger = logging.getLogger(__name__)


class IndexPhase(str, Enum):
    IDLE = "idle"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    SAVING = "saving"


_TRANSITIONS: dict[IndexPhase, frozenset[IndexPhase]] = {
    IndexPhase.IDLE: frozenset({IndexPhase.CHUNKING}),
    IndexPhase.CHUNKING: frozenset({IndexPhase.EMBEDDING}),
    IndexPhase.EMBEDDING: frozenset({IndexPhase.SAVING}),
    IndexPhase.SAVING: frozenset({IndexPhase.IDLE}),
}


@dataclass(frozen=True)
class IndexProgress:
    phase: IndexPhase
    current: int
    total: int


@dataclass
class IndexState:
    """Observable state of the index build, one phase at a time."""

    is_active: bool = False
    kb_id: str | None = None
    phase: IndexPhase = IndexPhase.IDLE
    progress: int = 0
    total: int = 0

    def advance(self, phase: IndexPhase, total: int = 0) -> None:
        """Move to *phase*, resetting progress.

        Raises:
            InvalidPhaseTransition: If *phase* does not follow the current phase.
        """
        if phase not in _TRANSITIONS[self.phase]:
            raise InvalidPhaseTransition(
                f"Cannot move index build from '{self.phase.value}' to '{phase.value}'."
            )
        self.phase = phase
        self.progress = 0
        self.total = total
        self.is_active = phase is not IndexPhase.IDLE
        if not self.is_active:
            self.kb_id = None

    def reset(self) -> None:
        """Return to idle after a failed build."""
        self.is_active = False
        self.kb_id = None
        self.phase = IndexPhase.IDLE
        self.progress = 0
        self.total = 0

    def snapshot(self) -> IndexProgress:
        return IndexProgress(phase=self.phase, current=self.progress, total=self.total)


class Indexer:
    """Build the retrieval index of a knowledge base from its stored pages.

    Args:
        repo: Open Repository.
        embedder_factory: Returns a fresh, unfitted Embedder for each build.
        chunker: Page chunker (defaults to 500-character chunks).
        batch_size: Number of chunk texts per embedding call.
    """

    def __init__(
        self,
        repo: Repository,
        embedder_factory: Callable[[], Embedder],
        chunker: PageChunker | None = None,
        batch_size: int = 32,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._repo = repo
        self._embedder_factory = embedder_factory
        self._chunker = chunker or PageChunker()
        self._batch_size = batch_size
        self.state = IndexState()

    def build(
        self,
        kb_id: str,
        on_progress: Callable[[IndexProgress], None] | None = None,
    ) -> IndexMeta:
        """Rebuild the index of *kb_id* from scratch.

        Returns:
            The metadata of the stored index.

        Raises:
            IndexBuildError: If there is nothing to index or any phase fails.
                The knowledge base is left without an index.
        """
        if self.state.is_active:
            raise IndexBuildError(f"An index build for '{self.state.kb_id}' is already running.")

        def report() -> None:
            if on_progress is not None:
                on_progress(self.state.snapshot())

        self.state.kb_id = kb_id
        try:
            pages = self._repo.list_pages(kb_id)
            if not pages:
                raise IndexBuildError("No pages to index")

            # Phase 1: chunking
            self.state.advance(IndexPhase.CHUNKING, total=len(pages))
            logger.info("Chunking %d page(s) of %s", len(pages), kb_id)
            report()
            chunks: list[Chunk] = []
            for n, page in enumerate(pages, start=1):
                chunks.extend(
                    self._chunker.chunk_page(page.to_page(), page.content_hash, first_id=len(chunks))
                )
                self.state.progress = n
                report()
            if not chunks:
                raise IndexBuildError("No chunks created")

            # Phase 2: embedding
            self.state.advance(IndexPhase.EMBEDDING, total=len(chunks))
            logger.info("Embedding %d chunk(s) of %s", len(chunks), kb_id)
            report()
            embedder = self._embedder_factory()
            texts = [c.text for c in chunks]
            embedder.fit(texts)
            vectors: list[list[float]] = []
            for start in range(0, len(texts), self._batch_size):
                vectors.extend(embedder.embed_batch(texts[start:start + self._batch_size]))
                self.state.progress = len(vectors)
                report()
            dimensions = embedder.dimensions
            if any(len(v) != dimensions for v in vectors):
                raise IndexBuildError(
                    f"Embedding model '{embedder.model}' returned vectors of inconsistent length."
                )

            # Phase 3: saving
            self.state.advance(IndexPhase.SAVING, total=len(chunks))
            logger.info("Saving index of %s", kb_id)
            report()
            meta = IndexMeta(
                kb_id=kb_id,
                embedding_model=embedder.model,
                dimensions=dimensions,
                chunk_count=len(chunks),
                embedder_state=json.dumps(embedder.state()),
            )

            def saved(count: int) -> None:
                self.state.progress = count
                report()

            self._repo.replace_index(meta, chunks, vectors, on_saved=saved)
            self.state.advance(IndexPhase.IDLE)
        except IndexBuildError:
            self._discard(kb_id)
            raise
        except Exception as exc:
            self._discard(kb_id)
            raise IndexBuildError(f"Index build failed: {exc}") from exc

        logger.info("Indexed %s: %d chunk(s), %d dimension(s)", kb_id, len(chunks), dimensions)
        return self._repo.get_index_meta(kb_id) or meta

    def _discard(self, kb_id: str) -> None:
        logger.warning("Index build for %s failed; discarding partial index", kb_id)
        self.state.reset()
        self._repo.clear_index(kb_id)
