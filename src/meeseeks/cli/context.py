"""meeseeks context CLI commands.

Commands:
  meeseeks context fit    : condense a system + user prompt to a model's budget
  meeseeks context limits : show the model token limit table
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from meeseeks.cli.errors import describe_error, err_file_not_found
from meeseeks.config import ConfigError, ContextCfg, load_config
from meeseeks.context.condense import CondenseSettings, analyze_context, condense_context
from meeseeks.context.limits import DEFAULT_TOKEN_LIMIT, MODEL_TOKEN_LIMITS
from meeseeks.context.tokenizer import default_tokenizer

console = Console()

context_app = typer.Typer(
    name="context",
    help="Fit prompts into a model's context window.",
    add_completion=False,
)


def settings_from_config(cfg: ContextCfg) -> CondenseSettings:
    return CondenseSettings(
        per_message_overhead=cfg.per_message_overhead,
        kb_floor=cfg.kb_floor,
        diff_reserve=cfg.diff_reserve,
        diff_floor=cfg.diff_floor,
        model_limits=dict(cfg.model_limits),
    )


def _load_context_cfg() -> ContextCfg:
    try:
        return load_config().context
    except ConfigError as exc:
        console.print(describe_error(exc))
        raise typer.Exit(1)


def _read(path: Path | None) -> str | None:
    if path is None:
        return None
    if not path.is_file():
        console.print(err_file_not_found(str(path)))
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8", errors="replace")


@context_app.command("fit")
def context_fit_cmd(
    system: Annotated[Path, typer.Option("--system", help="File with the system prompt.")],
    user: Annotated[Path, typer.Option("--user", help="File with the user prompt.")],
    model: Annotated[
        str | None,
        typer.Option("--model", "-m", help="Target model id (default: context.model)."),
    ] = None,
    kb: Annotated[
        Path | None,
        typer.Option("--kb", help="File with the knowledge base text embedded in the system prompt."),
    ] = None,
    diff: Annotated[
        Path | None,
        typer.Option("--diff", help="File with the git diff embedded in the user prompt."),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Write system.txt and user.txt here."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full result as JSON.")] = False,
) -> None:
    """Condense a prompt so it fits the model's input budget."""
    cfg = _load_context_cfg()
    model_id = model or cfg.model
    settings = settings_from_config(cfg)
    tokenizer = default_tokenizer()

    system_prompt = _read(system) or ""
    user_prompt = _read(user) or ""
    result = condense_context(
        model_id,
        system_prompt,
        user_prompt,
        kb_content=_read(kb),
        diff_text=_read(diff),
        tokenizer=tokenizer,
        settings=settings,
    )

    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "system.txt").write_text(result.system_prompt, encoding="utf-8")
        (output_dir / "user.txt").write_text(result.user_prompt, encoding="utf-8")

    if as_json:
        typer.echo(json.dumps({"model": model_id, **asdict(result)}, indent=2))
        return

    analysis = analyze_context(
        [
            {"role": "system", "content": result.system_prompt},
            {"role": "user", "content": result.user_prompt},
        ],
        model_id,
        tokenizer=tokenizer,
        settings=settings,
    )
    table = Table(title=f"Context budget: {escape(model_id)}", show_header=False)
    table.add_column("", style="bold")
    table.add_column("", justify="right")
    table.add_row("Available", f"{analysis.available_tokens:,}")
    table.add_row("Original", f"{result.original_tokens:,}")
    table.add_row("Final", f"{result.final_tokens:,}")
    table.add_row("System", f"{analysis.system_tokens:,}")
    table.add_row("User", f"{analysis.user_tokens:,}")
    table.add_row("Strategy", result.strategy)
    console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]⚠[/] {escape(warning)}")
    if not result.condensed:
        console.print("[green]✓[/] Fits without changes.")
    elif output_dir is not None:
        console.print(f"[green]✓[/] Condensed prompts written to {output_dir}")


@context_app.command("limits")
def context_limits_cmd() -> None:
    """Show token limits per model (config overrides included)."""
    cfg = _load_context_cfg()
    limits = {**MODEL_TOKEN_LIMITS, **cfg.model_limits}

    table = Table(title="Model token limits", show_header=True, header_style="bold")
    table.add_column("Model", style="bold")
    table.add_column("Context", justify="right")
    table.add_column("Max output", justify="right")
    table.add_column("Available for input", justify="right")
    for model_id, lim in sorted(limits.items()):
        table.add_row(
            model_id,
            f"{lim.context_window:,}",
            f"{lim.max_output_tokens:,}",
            f"{lim.available_for_input:,}",
        )
    d = DEFAULT_TOKEN_LIMIT
    table.add_row(
        "[dim](other)[/]",
        f"{d.context_window:,}",
        f"{d.max_output_tokens:,}",
        f"{d.available_for_input:,}",
    )
    console.print(table)
