"""Meeseeks database layer."""

from meeseeks.db.connection import Database
from meeseeks.db.migrations import MIGRATIONS, run_migrations
from meeseeks.db.repository import Repository
from meeseeks.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
