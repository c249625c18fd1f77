"""Forward-only migration runner for the knowledge base schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS knowledge_bases (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    crawl_depth     INTEGER NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    kb_id           TEXT NOT NULL REFERENCES knowledge_bases(id) ON DELETE CASCADE,
    url             TEXT NOT NULL,
    added_at        DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    last_crawled_at DATETIME,
    page_count      INTEGER NOT NULL DEFAULT 0,
    status          TEXT NOT NULL DEFAULT 'pending',
    error           TEXT,
    UNIQUE (kb_id, url)
);

CREATE TABLE IF NOT EXISTS pages (
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    url             TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    text            TEXT NOT NULL,
    links           TEXT NOT NULL DEFAULT '[]',
    content_hash    TEXT NOT NULL,
    saved_at        DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (source_id, url)
);

CREATE TABLE IF NOT EXISTS index_meta (
    kb_id           TEXT PRIMARY KEY REFERENCES knowledge_bases(id) ON DELETE CASCADE,
    embedding_model TEXT NOT NULL,
    dimensions      INTEGER NOT NULL,
    chunk_count     INTEGER NOT NULL,
    embedder_state  TEXT NOT NULL DEFAULT '{}',
    indexed_at      DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS chunks (
    kb_id           TEXT NOT NULL REFERENCES knowledge_bases(id) ON DELETE CASCADE,
    chunk_id        INTEGER NOT NULL,
    page_hash       TEXT NOT NULL,
    page_url        TEXT NOT NULL,
    page_title      TEXT NOT NULL,
    text            TEXT NOT NULL,
    start_idx       INTEGER NOT NULL,
    end_idx         INTEGER NOT NULL,
    PRIMARY KEY (kb_id, chunk_id)
);

CREATE TABLE IF NOT EXISTS embeddings (
    kb_id           TEXT NOT NULL REFERENCES knowledge_bases(id) ON DELETE CASCADE,
    chunk_id        INTEGER NOT NULL,
    vector          BLOB NOT NULL,
    PRIMARY KEY (kb_id, chunk_id)
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
