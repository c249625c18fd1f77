"""Repository pattern for all knowledge base database operations.

Single interface for: knowledge bases, sources, crawled pages, the chunk
index and its embeddings. Index replacement is atomic: a build either
lands completely or leaves no index behind.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence

import sqlite_vec

from meeseeks.db.models import Chunk, IndexMeta, KnowledgeBase, Source, StoredPage

_SOURCE_COLUMNS = "id, kb_id, url, added_at, last_crawled_at, page_count, status, error"
_CHUNK_COLUMNS = "chunk_id, page_hash, page_url, page_title, text, start_idx, end_idx"
_SAVE_BATCH = 100


class Repository:
    """Data access layer for all knowledge base entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see meeseeks.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Knowledge bases
    # ------------------------------------------------------------------

    def add_knowledge_base(self, kb: KnowledgeBase) -> None:
        """Insert a new knowledge base record."""
        self._conn.execute(
            "INSERT INTO knowledge_bases (id, name, crawl_depth) VALUES (?, ?, ?)",
            (kb.id, kb.name, kb.crawl_depth),
        )
        self._conn.commit()

    def get_knowledge_base(self, kb_id: str) -> KnowledgeBase | None:
        """Return a knowledge base with its sources, or None if not found."""
        row = self._conn.execute(
            "SELECT id, name, crawl_depth, created_at FROM knowledge_bases WHERE id = ?",
            (kb_id,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_kb(row, self.list_sources(kb_id))

    def list_knowledge_bases(self) -> list[KnowledgeBase]:
        """Return all knowledge bases, newest first."""
        rows = self._conn.execute(
            "SELECT id, name, crawl_depth, created_at FROM knowledge_bases "
            "ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
        return [_row_to_kb(r, self.list_sources(r["id"])) for r in rows]

    def delete_knowledge_base(self, kb_id: str) -> bool:
        """Delete a knowledge base and everything it owns. Returns False if missing."""
        cur = self._conn.execute("DELETE FROM knowledge_bases WHERE id = ?", (kb_id,))
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record."""
        self._conn.execute(
            "INSERT INTO sources (id, kb_id, url, page_count, status) VALUES (?, ?, ?, ?, ?)",
            (source.id, source.kb_id, source.url, source.page_count, source.status),
        )
        self._conn.commit()

    def get_source(self, source_id: str) -> Source | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def get_source_by_url(self, kb_id: str, url: str) -> Source | None:
        """Return the source registered for *url* in *kb_id*, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE kb_id = ? AND url = ?",
            (kb_id, url),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, kb_id: str) -> list[Source]:
        """Return the sources of *kb_id* in the order they were added."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE kb_id = ? ORDER BY added_at, rowid",
            (kb_id,),
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def update_source(self, source: Source) -> None:
        """Persist the mutable fields of *source* (status, counts, timestamps, error)."""
        self._conn.execute(
            """
            UPDATE sources
            SET last_crawled_at = ?, page_count = ?, status = ?, error = ?
            WHERE id = ?
            """,
            (source.last_crawled_at, source.page_count, source.status, source.error, source.id),
        )
        self._conn.commit()

    def delete_source(self, source_id: str) -> bool:
        """Delete a source and its pages. Returns False if missing."""
        cur = self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def replace_pages(self, source_id: str, pages: Sequence[StoredPage]) -> None:
        """Atomically replace every stored page of *source_id* with *pages*."""
        with self._conn:
            self._conn.execute("DELETE FROM pages WHERE source_id = ?", (source_id,))
            self._conn.executemany(
                """
                INSERT OR REPLACE INTO pages (source_id, url, title, text, links, content_hash)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (source_id, p.url, p.title, p.text, p.links, p.content_hash)
                    for p in pages
                ],
            )

    def list_pages(self, kb_id: str) -> list[StoredPage]:
        """Return every stored page of *kb_id* in crawl order."""
        rows = self._conn.execute(
            """
            SELECT p.source_id, p.url, p.title, p.text, p.links, p.content_hash, p.saved_at
            FROM pages p JOIN sources s ON s.id = p.source_id
            WHERE s.kb_id = ?
            ORDER BY s.added_at, s.rowid, p.rowid
            """,
            (kb_id,),
        ).fetchall()
        return [_row_to_page(r) for r in rows]

    def count_pages(self, kb_id: str) -> int:
        """Return the number of stored pages in *kb_id*."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM pages p JOIN sources s ON s.id = p.source_id WHERE s.kb_id = ?",
            (kb_id,),
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def replace_index(
        self,
        meta: IndexMeta,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        on_saved: Callable[[int], None] | None = None,
    ) -> None:
        """Discard the old index of ``meta.kb_id`` and store the new one in one transaction.

        *on_saved* receives the running count of saved chunk records. Any
        exception rolls the whole replacement back.
        """
        if len(chunks) != len(vectors):
            raise ValueError(
                f"chunks and vectors differ in length ({len(chunks)} != {len(vectors)})"
            )
        kb_id = meta.kb_id
        with self._conn:
            self._delete_index(kb_id)
            self._conn.execute(
                """
                INSERT INTO index_meta (kb_id, embedding_model, dimensions, chunk_count, embedder_state)
                VALUES (?, ?, ?, ?, ?)
                """,
                (kb_id, meta.embedding_model, meta.dimensions, meta.chunk_count, meta.embedder_state),
            )
            for start in range(0, len(chunks), _SAVE_BATCH):
                batch = list(zip(chunks[start:start + _SAVE_BATCH], vectors[start:start + _SAVE_BATCH]))
                self._conn.executemany(
                    f"INSERT INTO chunks (kb_id, {_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (kb_id, c.id, c.page_hash, c.page_url, c.page_title, c.text, c.start_idx, c.end_idx)
                        for c, _ in batch
                    ],
                )
                self._conn.executemany(
                    "INSERT INTO embeddings (kb_id, chunk_id, vector) VALUES (?, ?, ?)",
                    [(kb_id, c.id, sqlite_vec.serialize_float32(list(v))) for c, v in batch],
                )
                if on_saved is not None:
                    on_saved(start + len(batch))

    def clear_index(self, kb_id: str) -> None:
        """Remove the index (meta, chunks, embeddings) of *kb_id*."""
        with self._conn:
            self._delete_index(kb_id)

    def _delete_index(self, kb_id: str) -> None:
        self._conn.execute("DELETE FROM embeddings WHERE kb_id = ?", (kb_id,))
        self._conn.execute("DELETE FROM chunks WHERE kb_id = ?", (kb_id,))
        self._conn.execute("DELETE FROM index_meta WHERE kb_id = ?", (kb_id,))

    def get_index_meta(self, kb_id: str) -> IndexMeta | None:
        """Return the index metadata of *kb_id*, or None if it is not indexed."""
        row = self._conn.execute(
            """
            SELECT kb_id, embedding_model, dimensions, chunk_count, embedder_state, indexed_at
            FROM index_meta WHERE kb_id = ?
            """,
            (kb_id,),
        ).fetchone()
        if row is None:
            return None
        return IndexMeta(
            kb_id=row["kb_id"],
            embedding_model=row["embedding_model"],
            dimensions=row["dimensions"],
            chunk_count=row["chunk_count"],
            embedder_state=row["embedder_state"],
            indexed_at=row["indexed_at"],
        )

    def get_chunks(self, kb_id: str, chunk_ids: Sequence[int] | None = None) -> list[Chunk]:
        """Return chunks of *kb_id* ordered by id, optionally restricted to *chunk_ids*."""
        if chunk_ids is None:
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE kb_id = ? ORDER BY chunk_id",
                (kb_id,),
            ).fetchall()
        else:
            if not chunk_ids:
                return []
            placeholders = ",".join("?" * len(chunk_ids))
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks "
                f"WHERE kb_id = ? AND chunk_id IN ({placeholders}) ORDER BY chunk_id",
                (kb_id, *chunk_ids),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, kb_id: str) -> int:
        """Return the number of indexed chunks in *kb_id*."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE kb_id = ?", (kb_id,)
        ).fetchone()[0]

    def cosine_distances(
        self, kb_id: str, query_vector: Sequence[float]
    ) -> list[tuple[int, float | None]]:
        """Cosine distance from *query_vector* to every indexed chunk of *kb_id*.

        Returns (chunk_id, distance) ordered by chunk id. The distance is None
        where it is undefined (a zero-length chunk vector).
        """
        rows = self._conn.execute(
            """
            SELECT chunk_id, vec_distance_cosine(vector, ?) AS distance
            FROM embeddings WHERE kb_id = ? ORDER BY chunk_id
            """,
            (sqlite_vec.serialize_float32(list(query_vector)), kb_id),
        ).fetchall()
        return [(r["chunk_id"], r["distance"]) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_kb(row: sqlite3.Row, sources: list[Source]) -> KnowledgeBase:
    return KnowledgeBase(
        id=row["id"],
        name=row["name"],
        crawl_depth=row["crawl_depth"],
        created_at=row["created_at"],
        sources=sources,
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        kb_id=row["kb_id"],
        url=row["url"],
        added_at=row["added_at"],
        last_crawled_at=row["last_crawled_at"],
        page_count=row["page_count"],
        status=row["status"],
        error=row["error"],
    )


def _row_to_page(row: sqlite3.Row) -> StoredPage:
    return StoredPage(
        source_id=row["source_id"],
        url=row["url"],
        title=row["title"],
        text=row["text"],
        links=row["links"],
        content_hash=row["content_hash"],
        saved_at=row["saved_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["chunk_id"],
        page_hash=row["page_hash"],
        page_url=row["page_url"],
        page_title=row["page_title"],
        text=row["text"],
        start_idx=row["start_idx"],
        end_idx=row["end_idx"],
    )
