"""Dense retriever over a knowledge base index.

The query is embedded with the same embedder the index was built with
(rebuilt from its persisted state) and every chunk is scored by cosine
similarity, computed in SQLite by sqlite-vec:

  score = 1 - vec_distance_cosine(chunk_vector, query_vector)

Zero vectors (empty query, chunk with no in-vocabulary words) score 0.0.
Ranking is by score descending, ties broken by ascending chunk id.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from meeseeks.db.models import Chunk
from meeseeks.db.repository import Repository
from meeseeks.errors import IndexMismatchError
from meeseeks.kb.embedder import embedder_from_state

DEFAULT_TOP_K = 5


@dataclass(frozen=True)
class SearchResult:
    chunk: Chunk
    score: float


def search(
    repo: Repository,
    kb_id: str,
    query: str,
    top_k: int = DEFAULT_TOP_K,
) -> list[SearchResult] | None:
    """Return the *top_k* chunks of *kb_id* most similar to *query*.

    Returns:
        Results best-first, or None when the knowledge base is not indexed.

    Raises:
        ValueError: If *top_k* < 1.
        IndexMismatchError: If the query embedding length differs from the index.
    """
    if top_k < 1:
        raise ValueError("top_k must be >= 1")

    meta = repo.get_index_meta(kb_id)
    if meta is None:
        return None

    embedder = embedder_from_state(meta.embedding_model, meta.embedder_state_dict)
    query_vector = embedder.embed(query)
    if len(query_vector) != meta.dimensions:
        raise IndexMismatchError(
            f"Query embedding has {len(query_vector)} dimension(s) but the index of "
            f"'{kb_id}' has {meta.dimensions}. Re-index the knowledge base."
        )

    if any(query_vector):
        scores = [(cid, _similarity(d)) for cid, d in repo.cosine_distances(kb_id, query_vector)]
    else:
        scores = [(c.id, 0.0) for c in repo.get_chunks(kb_id)]

    ranked = sorted(scores, key=lambda s: (-s[1], s[0]))[:top_k]
    chunks = {c.id: c for c in repo.get_chunks(kb_id, [cid for cid, _ in ranked])}
    return [SearchResult(chunk=chunks[cid], score=score) for cid, score in ranked]


def _similarity(distance: float | None) -> float:
    if distance is None or math.isnan(distance):
        return 0.0
    return 1.0 - distance


def format_results_as_context(results: list[SearchResult]) -> str:
    """Render results as markdown blocks for inclusion in a prompt."""
    return "\n\n---\n\n".join(
        f"## {r.chunk.page_title}\nSource: {r.chunk.page_url}\n\n{r.chunk.text}"
        for r in results
    )
