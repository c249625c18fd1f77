"""Opening the knowledge base store.

Every connection comes back ready for the repository: sqlite-vec's
``vec_*`` functions registered, rows addressable by column name, cascading
deletes enforced, and WAL journaling so a long crawl or index write does
not lock out readers.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

# Applied in order on every new connection
_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA busy_timeout = 5000",
)


class Database:
    """Location of a knowledge base store; hands out configured connections.

    Usable as ``Database(path).connect()`` when the caller manages the
    connection, or as a context manager that closes it on exit.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def connect(self) -> sqlite3.Connection:
        """Return a new connection, creating the store's directory on first use."""
        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        _load_vector_functions(conn)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def _load_vector_functions(conn: sqlite3.Connection) -> None:
    conn.enable_load_extension(True)
    try:
        sqlite_vec.load(conn)
    finally:
        conn.enable_load_extension(False)
