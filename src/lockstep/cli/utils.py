"""
CLI utility helpers: pipeline loading and output formatting.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from lockstep.core.errors import LockstepError
from lockstep.core.settings import BackendKind
from lockstep.orchestration.loader import LoadedPipeline, load_pipeline

console = Console()
err_console = Console(stderr=True)


# ── Loading ──────────────────────────────────────────────────────────────


def open_pipeline(path: Path, backend: BackendKind | None = None) -> LoadedPipeline:
    """Load *path*, exiting with status 1 on any configuration error."""
    overrides: dict[str, Any] = {}
    if backend is not None:
        overrides["backend"] = backend
    try:
        return load_pipeline(path, **overrides)
    except LockstepError as exc:
        fail(exc)


def fail(error: LockstepError) -> NoReturn:
    """Print *error* (with its output tail) and exit 1."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error}")
    for line in error.context.log_tail:
        err_console.print(f"  [dim]{line}[/dim]", highlight=False)
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


_STATUS_STYLES = {
    "succeeded": "green",
    "complete": "green",
    "skipped": "cyan",
    "failed": "red",
    "timed_out": "red",
    "started": "yellow",
    "not_run": "dim",
    "new": "dim",
}


def styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def print_rows(rows: list[dict[str, Any]], *, title: str = "", as_json: bool = False) -> None:
    """Render rows as a Rich table, or as JSON with ``--json``."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(styled(v) if k == "status" else str(v) for k, v in row.items()))
    console.print(table)
