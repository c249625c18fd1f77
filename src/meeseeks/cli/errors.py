"""Meeseeks rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from meeseeks.cli.errors import err_kb_not_found
    console.print(err_kb_not_found("kb_123"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from meeseeks.config import ConfigError
from meeseeks.errors import (
    DuplicateSourceError,
    FetchError,
    IndexBuildError,
    IndexMismatchError,
    InvalidStatusTransition,
    KnowledgeBaseNotFound,
    SourceNotFound,
    SsrfError,
)


def err_kb_not_found(kb_id: str) -> str:
    """Knowledge base id does not exist."""
    return (
        f"[red]Error:[/] Knowledge base '{kb_id}' not found.\n"
        "  Run:  meeseeks kb list  to see all knowledge bases."
    )


def err_source_not_found(kb_id: str, source_id: str) -> str:
    return (
        f"[red]Error:[/] Source '{source_id}' is not part of knowledge base '{kb_id}'.\n"
        f"  Run:  meeseeks kb show {kb_id}  to see its sources."
    )


def err_duplicate_source(message: str) -> str:
    return f"[yellow]Already added:[/] {message}"


def err_invalid_url(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Example:  meeseeks kb add-source <kb-id> https://docs.example.com/"
    )


def err_not_indexed(kb_id: str) -> str:
    """Search on a knowledge base without an index."""
    return (
        f"[yellow]Knowledge base '{kb_id}' is not indexed.[/]\n"
        f"  Run:  meeseeks kb index {kb_id}"
    )


def err_index_build(message: str, kb_id: str | None = None) -> str:
    hint = (
        f"  Crawl its sources first:  meeseeks kb crawl {kb_id}"
        if kb_id and "No pages" in message
        else "  The previous index was discarded; fix the cause and re-run  meeseeks kb index."
    )
    return f"[red]Error:[/] Index build failed: {message}\n{hint}"


def err_index_mismatch(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  The embedding model changed since indexing. Re-index with the configured model."
    )


def err_ssrf_blocked(message: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Use a publicly reachable URL, or set crawl.allow_private_hosts: true in meeseeks.yaml."
    )


def err_no_api_key(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Or use the local embedder:  embedding.model: tfidf"
    )


def err_config(message: str) -> str:
    return f"[red]Config error:[/] {message}"


def err_file_not_found(path: str) -> str:
    return f"[red]Error:[/] File not found: '{path}'"


def describe_error(exc: Exception, kb_id: str | None = None) -> str:
    """Map a library exception to its actionable message."""
    message = escape(str(exc))
    if isinstance(exc, KnowledgeBaseNotFound):
        return err_kb_not_found(exc.kb_id)
    if isinstance(exc, SourceNotFound):
        return err_source_not_found(exc.kb_id, exc.source_id)
    if isinstance(exc, DuplicateSourceError):
        return err_duplicate_source(message)
    if isinstance(exc, IndexBuildError):
        return err_index_build(message, kb_id)
    if isinstance(exc, IndexMismatchError):
        return err_index_mismatch(message)
    if isinstance(exc, SsrfError):
        return err_ssrf_blocked(message)
    if isinstance(exc, ConfigError):
        return err_config(message)
    if isinstance(exc, (InvalidStatusTransition, FetchError)):
        return f"[red]Error:[/] {message}"
    if isinstance(exc, EnvironmentError):
        return err_no_api_key(message)
    if isinstance(exc, ValueError) and "URL" in message:
        return err_invalid_url(message)
    return f"[red]Error:[/] {message}"
