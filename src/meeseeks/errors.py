"""Exception hierarchy for the knowledge base pipeline.

Library code raises these; the CLI maps them to actionable messages
(see ``meeseeks.cli.errors``).
"""

from __future__ import annotations


class MeeseeksError(Exception):
    """Base class for all meeseeks errors."""


class KnowledgeBaseNotFound(MeeseeksError, LookupError):
    """Raised when a knowledge base id does not exist."""

    def __init__(self, kb_id: str) -> None:
        super().__init__(f"Knowledge base '{kb_id}' not found.")
        self.kb_id = kb_id


class SourceNotFound(MeeseeksError, LookupError):
    """Raised when a source id does not exist in the knowledge base."""

    def __init__(self, kb_id: str, source_id: str) -> None:
        super().__init__(f"Source '{source_id}' not found in knowledge base '{kb_id}'.")
        self.kb_id = kb_id
        self.source_id = source_id


class DuplicateSourceError(MeeseeksError, ValueError):
    """Raised when a URL is already registered as a source."""


class InvalidStatusTransition(MeeseeksError, ValueError):
    """Raised when a source status change is not allowed."""


class InvalidPhaseTransition(MeeseeksError, ValueError):
    """Raised when the index build state machine is advanced out of order."""


class FetchError(MeeseeksError):
    """Raised when a single URL cannot be fetched or is not usable HTML."""


class SsrfError(FetchError, ValueError):
    """Raised when a URL resolves to a private or reserved address."""


class IndexBuildError(MeeseeksError, RuntimeError):
    """Raised when an index build fails; the partial index has been discarded."""


class IndexMismatchError(MeeseeksError, RuntimeError):
    """Raised when a query embedding does not match the stored index."""
