"""meeseeks kb CLI commands.

Commands:
  meeseeks kb create NAME             : create an empty knowledge base
  meeseeks kb list                    : list knowledge bases, newest first
  meeseeks kb show KB_ID              : sources, pages and index status
  meeseeks kb delete KB_ID            : delete a knowledge base and its data
  meeseeks kb add-source KB_ID URL    : register a seed URL
  meeseeks kb remove-source KB_ID SID : drop a source and its pages
  meeseeks kb crawl KB_ID             : crawl all (or one) sources
  meeseeks kb index KB_ID             : build the retrieval index
  meeseeks kb search KB_ID QUERY      : top-k chunks for a query
  meeseeks kb context KB_ID QUERY     : prompt context (retrieval or raw fallback)
  meeseeks kb clear-index KB_ID       : drop the retrieval index
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from meeseeks.cli.errors import describe_error, err_not_indexed
from meeseeks.config import ConfigError, MeeseeksConfig, load_config
from meeseeks.db.connection import Database
from meeseeks.db.repository import Repository
from meeseeks.db.schema import initialize
from meeseeks.errors import MeeseeksError, SourceNotFound
from meeseeks.kb.crawler import CrawlProgress
from meeseeks.kb.indexer import IndexProgress
from meeseeks.kb.service import KnowledgeBaseService

console = Console()
err_console = Console(stderr=True)

kb_app = typer.Typer(
    name="kb",
    help="Manage knowledge bases (create, crawl, index, search).",
    add_completion=False,
)

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the knowledge base database (default: ~/.meeseeks/knowledge.db)."),
]

_STATUS_STYLE = {
    "pending": "[dim]pending[/]",
    "crawling": "[cyan]crawling[/]",
    "complete": "[green]✓ complete[/]",
    "error": "[red]✗ error[/]",
}


# ------------------------------------------------------------------
# Session helper
# ------------------------------------------------------------------


def _load_config() -> MeeseeksConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(describe_error(exc))
        raise typer.Exit(1)


@contextmanager
def _session(db: Path | None, kb_id: str | None = None) -> Iterator[KnowledgeBaseService]:
    """Open the database and yield a service; library errors become exit code 1."""
    cfg = _load_config()
    conn = Database(db or cfg.db_path).connect()
    try:
        initialize(conn)
        yield KnowledgeBaseService(Repository(conn), cfg)
    except (MeeseeksError, ValueError, EnvironmentError) as exc:
        console.print(describe_error(exc, kb_id))
        raise typer.Exit(1)
    finally:
        conn.close()


# ------------------------------------------------------------------
# Knowledge bases
# ------------------------------------------------------------------


@kb_app.command("create")
def kb_create_cmd(
    name: Annotated[str, typer.Argument(help="Human-readable name.")],
    depth: Annotated[
        int | None,
        typer.Option("--depth", "-d", help="Crawl depth in link hops (clamped to 1-3)."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Create an empty knowledge base."""
    with _session(db) as service:
        kb = service.create_knowledge_base(name, depth)
    console.print(f"[green]✓[/] Created knowledge base [bold]{escape(kb.name)}[/] ({kb.id})")
    console.print(f"  Next:  meeseeks kb add-source {kb.id} <url>")


@kb_app.command("list")
def kb_list_cmd(db: DbOption = None) -> None:
    """List knowledge bases, newest first."""
    with _session(db) as service:
        kbs = service.list_knowledge_bases()
        indexed = {kb.id: service.index_stats(kb.id).indexed for kb in kbs}

    if not kbs:
        console.print(
            "[yellow]No knowledge bases yet.[/]\n"
            "  Run:  meeseeks kb create <name>"
        )
        raise typer.Exit(0)

    table = Table(title="Knowledge Bases", show_header=True, header_style="bold")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Name")
    table.add_column("Depth", justify="right")
    table.add_column("Sources", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Indexed")
    for kb in kbs:
        table.add_row(
            kb.id,
            escape(kb.name),
            str(kb.crawl_depth),
            str(len(kb.sources)),
            f"{kb.total_pages:,}",
            "[green]✓[/]" if indexed[kb.id] else "[dim]—[/]",
        )
    console.print(table)


@kb_app.command("show")
def kb_show_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    db: DbOption = None,
) -> None:
    """Show a knowledge base: sources, pages and index status."""
    with _session(db, kb_id) as service:
        kb = service.get_knowledge_base(kb_id)
        stats = service.index_stats(kb_id)

    console.print(f"[bold]{escape(kb.name)}[/] ({kb.id})")
    console.print(f"  Created:      {kb.created_at}")
    console.print(f"  Crawl depth:  {kb.crawl_depth}")
    console.print(f"  Pages:        {kb.total_pages:,}")
    if stats.indexed:
        console.print(
            f"  Index:        [green]✓[/] {stats.chunk_count:,} chunks "
            f"({stats.mode}, {stats.indexed_at})"
        )
    else:
        console.print("  Index:        [dim]not indexed[/]")

    if not kb.sources:
        console.print(f"\n  [yellow]No sources.[/]  Run:  meeseeks kb add-source {kb.id} <url>")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Source", no_wrap=True)
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Pages", justify="right")
    table.add_column("Last crawled")
    table.add_column("Error")
    for source in kb.sources:
        table.add_row(
            source.id,
            source.url,
            _STATUS_STYLE.get(source.status, source.status),
            str(source.page_count),
            source.last_crawled_at or "",
            escape(source.error or ""),
        )
    console.print(table)


@kb_app.command("delete")
def kb_delete_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    db: DbOption = None,
) -> None:
    """Delete a knowledge base with its sources, pages and index."""
    with _session(db, kb_id) as service:
        kb = service.get_knowledge_base(kb_id)
        if not yes and not typer.confirm(
            f"Delete knowledge base '{kb.name}' ({kb.total_pages} pages)?", default=False
        ):
            console.print("[dim]Aborted.[/]")
            raise typer.Exit(0)
        service.delete_knowledge_base(kb_id)
    console.print(f"[green]✓[/] Deleted {kb_id}")


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------


@kb_app.command("add-source")
def kb_add_source_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    url: Annotated[str, typer.Argument(help="Seed URL (http:// or https://).")],
    db: DbOption = None,
) -> None:
    """Register a seed URL with a knowledge base."""
    with _session(db, kb_id) as service:
        source = service.add_source(kb_id, url)
    console.print(f"[green]✓[/] Added source {source.id}: {source.url}")
    console.print(f"  Next:  meeseeks kb crawl {kb_id}")


@kb_app.command("remove-source")
def kb_remove_source_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    source_id: Annotated[str, typer.Argument(help="Source id (see meeseeks kb show).")],
    db: DbOption = None,
) -> None:
    """Remove a source and its crawled pages."""
    with _session(db, kb_id) as service:
        service.remove_source(kb_id, source_id)
    console.print(f"[green]✓[/] Removed source {source_id}")
    console.print("  [yellow]⚠[/] Re-index to drop its chunks from search results.")


@kb_app.command("crawl")
def kb_crawl_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    source_id: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Crawl only this source."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Crawl the knowledge base's sources and store their pages."""
    with _session(db, kb_id) as service:
        kb = service.get_knowledge_base(kb_id)
        sources = [s for s in kb.sources if source_id is None or s.id == source_id]
        if source_id is not None and not sources:
            raise SourceNotFound(kb_id, source_id)
        if not sources:
            console.print(
                "[yellow]No sources to crawl.[/]\n"
                f"  Run:  meeseeks kb add-source {kb_id} <url>"
            )
            raise typer.Exit(0)

        for source in sources:
            console.print(f"\n[bold]→ {source.url}[/]")
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                transient=True,
                console=console,
            ) as prog:
                task = prog.add_task("Crawling…", total=None)

                def _on_progress(update: CrawlProgress) -> None:
                    prog.update(
                        task,
                        completed=update.crawled,
                        total=update.total,
                        description=escape(update.current_url or "Done"),
                    )

                result = service.crawl_source(kb_id, source.id, _on_progress)

            console.print(f"  [green]✓[/] {len(result.pages)} page(s)")
            if result.errors:
                console.print(f"  [yellow]⚠ {len(result.errors)} page(s) failed to crawl[/]")
                for error in result.errors:
                    console.print(f"    [dim]{escape(error.url)}: {escape(error.error)}[/]")

    console.print(f"\n  Next:  meeseeks kb index {kb_id}")


# ------------------------------------------------------------------
# Index + retrieval
# ------------------------------------------------------------------


@kb_app.command("index")
def kb_index_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    db: DbOption = None,
) -> None:
    """Build (or rebuild) the retrieval index from crawled pages."""
    with _session(db, kb_id) as service:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Indexing…", total=None)

            def _on_progress(update: IndexProgress) -> None:
                prog.update(
                    task,
                    description=f"{update.phase.value.capitalize()}…",
                    completed=update.current,
                    total=update.total or None,
                )

            meta = service.index(kb_id, _on_progress)
    console.print(
        f"[green]✓[/] Indexed {meta.chunk_count:,} chunks "
        f"({meta.embedding_model}, {meta.dimensions} dimensions)"
    )


@kb_app.command("search")
def kb_search_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    query: Annotated[str, typer.Argument(help="Search query.")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Number of results (default: retrieval.top_k)."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    db: DbOption = None,
) -> None:
    """Semantic search over an indexed knowledge base."""
    with _session(db, kb_id) as service:
        results = service.search(kb_id, query, top_k)

    if results is None:
        console.print(err_not_indexed(kb_id))
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([{"score": r.score, **asdict(r.chunk)} for r in results], indent=2))
        return

    if not results:
        console.print("[yellow]No results.[/]")
        return

    for rank, r in enumerate(results, start=1):
        console.print(
            f"\n[bold]{rank}. {escape(r.chunk.page_title)}[/]  [dim]score {r.score:.3f}[/]\n"
            f"   [dim]{escape(r.chunk.page_url)}[/]"
        )
        snippet = " ".join(r.chunk.text.split())
        console.print(f"   {escape(snippet[:300])}{'…' if len(snippet) > 300 else ''}")


@kb_app.command("context")
def kb_context_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    query: Annotated[str, typer.Argument(help="Query the context is built for.")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Number of retrieved chunks."),
    ] = None,
    db: DbOption = None,
) -> None:
    """Print prompt-ready knowledge base context for a query.

    Uses retrieved chunks when the knowledge base is indexed, else raw page content.
    """
    with _session(db, kb_id) as service:
        text, used_retrieval = service.build_context(kb_id, query, top_k)
    if not used_retrieval:
        err_console.print("[yellow]Not indexed: using raw page content.[/]")
    typer.echo(text)


@kb_app.command("clear-index")
def kb_clear_index_cmd(
    kb_id: Annotated[str, typer.Argument(help="Knowledge base id.")],
    db: DbOption = None,
) -> None:
    """Drop the retrieval index; crawled pages are kept."""
    with _session(db, kb_id) as service:
        service.clear_index(kb_id)
    console.print(f"[green]✓[/] Cleared index of {kb_id}")
